"""Bootstrap settings for cloudbackup.

Bootstrap settings are the minimum needed to launch the agent: where the
index lives and where logs go. They are read from environment variables.
Everything else (sources, providers, credentials) lives in the index.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from cloudbackup.core.exceptions import ConfigurationError

DATABASE_SETTING = "CLOUDBACKUP_DATABASE"
LOG_DIRECTORY_SETTING = "CLOUDBACKUP_LOG_DIRECTORY"
SCAN_INTERVAL_SETTING = "CLOUDBACKUP_SCAN_INTERVAL"
BACKUP_IDLE_INTERVAL_SETTING = "CLOUDBACKUP_BACKUP_IDLE_INTERVAL"
MAX_BLOCK_RETRIES_SETTING = "CLOUDBACKUP_MAX_BLOCK_RETRIES"

DEFAULT_SCAN_INTERVAL = 3600.0  # seconds
DEFAULT_BACKUP_IDLE_INTERVAL = 30.0  # seconds
DEFAULT_MAX_BLOCK_RETRIES = 3


def get_required_setting(name: str, environ: Mapping[str, str] | None = None) -> str:
    """Return a required setting value.

    Args:
        name: Environment variable name.
        environ: Mapping to read from (defaults to os.environ).

    Raises:
        ConfigurationError: If the setting is missing or blank.
    """
    env = os.environ if environ is None else environ
    value = env.get(name, "")
    if not value.strip():
        raise ConfigurationError(f"Required setting {name} is not set")
    return value


def _get_number(
    name: str,
    default: float,
    environ: Mapping[str, str],
    cast: type = float,
) -> float:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"Setting {name} must be a number, got {raw!r}") from None


@dataclass
class CoreSettings:
    """Settings needed to run the agent.

    Attributes:
        database_path: Path of the SQLite index file.
        log_directory: Directory for per-component log files.
        scan_interval: Seconds between two passes of the scan loop.
        backup_idle_interval: Seconds the backup loop sleeps when idle.
        max_block_retries: Retries for a single block upload.
    """

    database_path: Path
    log_directory: Path
    scan_interval: float = DEFAULT_SCAN_INTERVAL
    backup_idle_interval: float = DEFAULT_BACKUP_IDLE_INTERVAL
    max_block_retries: int = DEFAULT_MAX_BLOCK_RETRIES

    def __post_init__(self) -> None:
        """Normalize paths."""
        self.database_path = Path(self.database_path).expanduser()
        self.log_directory = Path(self.log_directory).expanduser()

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> CoreSettings:
        """Load settings from environment variables.

        Raises:
            ConfigurationError: If a required setting is missing or a
                numeric setting cannot be parsed.
        """
        env = os.environ if environ is None else environ
        return cls(
            database_path=Path(get_required_setting(DATABASE_SETTING, env)),
            log_directory=Path(get_required_setting(LOG_DIRECTORY_SETTING, env)),
            scan_interval=_get_number(SCAN_INTERVAL_SETTING, DEFAULT_SCAN_INTERVAL, env),
            backup_idle_interval=_get_number(
                BACKUP_IDLE_INTERVAL_SETTING, DEFAULT_BACKUP_IDLE_INTERVAL, env
            ),
            max_block_retries=int(
                _get_number(MAX_BLOCK_RETRIES_SETTING, DEFAULT_MAX_BLOCK_RETRIES, env, int)
            ),
        )
