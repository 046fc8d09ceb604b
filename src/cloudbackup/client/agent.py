"""Client agent host.

The agent is the process-level owner of the two engines. It prepares the
index, starts the scan engine and the backup engine (each with its own
database handle), logs their stopped notifications and joins them on
shutdown.
"""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import TYPE_CHECKING

from cloudbackup.client.database import ClientDatabase
from cloudbackup.client.engine import BackupEngine, ScanEngine
from cloudbackup.client.logs import setup_logging
from cloudbackup.client.providers import create_provider

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Future

    from cloudbackup.client.engine import EngineStoppedResult
    from cloudbackup.client.models import Provider
    from cloudbackup.client.providers import ProviderFileOperations
    from cloudbackup.client.secrets import SecretStore
    from cloudbackup.core.config import CoreSettings

logger = logging.getLogger(__name__)

LOG_COMPONENT = "clientagent"
DEFAULT_SHUTDOWN_TIMEOUT = 30.0  # seconds


class ClientAgent:
    """Hosts the scan and backup engines.

    Usage:
        agent = ClientAgent(CoreSettings.from_environment(), KeyringSecretStore())
        agent.start()
        agent.wait()
        agent.shutdown()
    """

    def __init__(
        self,
        settings: CoreSettings,
        secrets: SecretStore,
        stop_all_on_failure: bool = False,
        provider_factory: Callable[[Provider], ProviderFileOperations] | None = None,
        configure_logging: bool = True,
    ) -> None:
        """Initialize the agent.

        Args:
            settings: Core settings (index path, log directory, intervals).
            secrets: Secret store for provider credentials.
            stop_all_on_failure: Stop the scan engine when the backup engine fails.
            provider_factory: Override for building provider transports.
            configure_logging: Attach the agent's log handlers on start.
        """
        self._settings = settings
        self._stop_all_on_failure = stop_all_on_failure
        self._configure_logging = configure_logging
        self._provider_factory = provider_factory or partial(create_provider, secrets=secrets)
        self._lock = threading.Lock()
        self._finished = threading.Event()
        self._results: dict[str, EngineStoppedResult] = {}
        self.scan: ScanEngine | None = None
        self.backup: BackupEngine | None = None

    @property
    def results(self) -> dict[str, EngineStoppedResult]:
        """Stopped results received so far, by engine name."""
        with self._lock:
            return dict(self._results)

    def _open_database(self) -> ClientDatabase:
        return ClientDatabase(self._settings.database_path)

    def start(self) -> None:
        """Prepare the index and start both engines."""
        if self._configure_logging:
            setup_logging(self._settings.log_directory, LOG_COMPONENT)

        logger.info("Starting the cloudbackup client agent.")

        # Create the schema once before the engines open their own handles
        self._open_database().close()
        self._finished.clear()
        self._results.clear()

        self.scan = ScanEngine(
            self._open_database,
            scan_interval=self._settings.scan_interval,
            error_interval=self._settings.backup_idle_interval,
        )
        self.backup = BackupEngine(
            self._open_database,
            self._provider_factory,
            idle_interval=self._settings.backup_idle_interval,
            max_block_retries=self._settings.max_block_retries,
        )

        self.scan.begin_start().add_done_callback(self._on_engine_stopped)
        self.backup.begin_start().add_done_callback(self._on_engine_stopped)

        logger.info("Successfully started the cloudbackup client agent.")

    def _on_engine_stopped(self, future: Future[EngineStoppedResult]) -> None:
        result = future.result()
        if result.failed:
            logger.error(f"The {result.engine} engine has failed: {result.exception}")
        else:
            logger.info(f"The {result.engine} engine has stopped.")

        with self._lock:
            self._results[result.engine] = result
            all_stopped = len(self._results) == 2

        if result.failed and result.engine == "backup" and self._stop_all_on_failure:
            logger.warning("Stopping the scan engine because the backup engine failed.")
            if self.scan is not None:
                self.scan.begin_stop()

        if all_stopped:
            self._finished.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until both engines have stopped.

        Returns:
            True if both engines stopped within the timeout.
        """
        return self._finished.wait(timeout)

    def shutdown(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> dict[str, EngineStoppedResult]:
        """Request both engines to stop and wait for them.

        Args:
            timeout: Maximum time to wait for each engine.

        Returns:
            Stopped results of the engines that exited in time.
        """
        logger.info("Stopping the cloudbackup client agent.")
        engines = [e for e in (self.scan, self.backup) if e is not None]
        for engine in engines:
            engine.begin_stop()
        for engine in engines:
            result = engine.join(timeout)
            if result is not None:
                with self._lock:
                    self._results.setdefault(result.engine, result)

        logger.info("Successfully stopped the cloudbackup client agent.")
        return self.results
