"""Logging setup for the agent host and commands."""

from __future__ import annotations

import logging
import sys
import traceback
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ROOT_LOGGER_NAME = "cloudbackup"


def setup_logging(log_directory: Path | str, component: str, level: int = logging.INFO) -> Path:
    """Configure logging to output to both file and stdout.

    Calling this again for the same log file does not add duplicate
    handlers.

    Args:
        log_directory: Directory that receives the log file.
        component: Component name, used as the log file name.
        level: Log level for the cloudbackup logger.

    Returns:
        Path of the log file.
    """
    log_path = Path(log_directory) / f"{component}.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    has_stdout = any(
        type(h) is logging.StreamHandler and h.stream is sys.stdout
        for h in root_logger.handlers
    )
    if not has_stdout:
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(formatter)
        root_logger.addHandler(stdout_handler)

    resolved = str(log_path.resolve())
    has_file = any(
        isinstance(h, logging.FileHandler) and h.baseFilename == resolved
        for h in root_logger.handlers
    )
    if not has_file:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return log_path


def format_exception_chain(exc: BaseException) -> str:
    """Render an exception with its full chain of causes and tracebacks."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
