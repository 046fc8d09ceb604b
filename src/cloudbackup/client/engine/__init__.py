"""Engine orchestration - the scan loop and the backup loop."""

from cloudbackup.client.engine.backup import BackupEngine
from cloudbackup.client.engine.base import BaseEngine
from cloudbackup.client.engine.retry import retry_with_backoff
from cloudbackup.client.engine.scan import ScanEngine
from cloudbackup.client.engine.types import (
    EngineState,
    EngineStoppedReason,
    EngineStoppedResult,
    ScanResult,
)

__all__ = [
    "BackupEngine",
    "BaseEngine",
    "EngineState",
    "EngineStoppedReason",
    "EngineStoppedResult",
    "ScanEngine",
    "ScanResult",
    "retry_with_backoff",
]
