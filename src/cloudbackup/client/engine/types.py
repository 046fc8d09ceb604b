"""Types shared by the scan and backup engines."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum, auto


class EngineState(IntEnum):
    """Lifecycle state of an engine."""

    STOPPED = auto()
    STARTING = auto()
    RUNNING = auto()
    STOP_REQUESTED = auto()
    FAILED = auto()


class EngineStoppedReason(str, Enum):
    """Why an engine loop exited."""

    STOP_REQUESTED = "stop_requested"
    FAILED = "failed"


@dataclass
class EngineStoppedResult:
    """The single notification produced when an engine loop exits.

    Attributes:
        engine: Name of the engine that stopped.
        reason: Clean stop or failure.
        exception: The failure, if the loop failed.
        trace: Full causal-chain trace of the failure.
    """

    engine: str
    reason: EngineStoppedReason
    exception: BaseException | None = None
    trace: str | None = None

    @property
    def failed(self) -> bool:
        """Check if the loop exited because of a failure."""
        return self.reason == EngineStoppedReason.FAILED


@dataclass
class ScanResult:
    """Outcome of scanning one source location."""

    source_id: int
    added: int = 0
    changed: int = 0
    unchanged: int = 0
    removed: int = 0
    skipped: int = 0
    completed: bool = False
