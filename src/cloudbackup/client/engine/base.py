"""Base engine with a cancellable background loop.

This module provides:
- BaseEngine: Abstract base class for the scan and backup loops

Lifecycle:
    STOPPED -> STARTING -> RUNNING -> STOP_REQUESTED -> STOPPED
    RUNNING -> FAILED on an unexpected exception

    begin_start() and begin_stop() never block. Each start returns a
    one-shot future that resolves with exactly one EngineStoppedResult
    when the loop exits, and join() waits on it with a timeout.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING

from cloudbackup.client.engine.types import (
    EngineState,
    EngineStoppedReason,
    EngineStoppedResult,
)
from cloudbackup.client.logs import format_exception_chain
from cloudbackup.core.exceptions import (
    EngineFailure,
    ProviderError,
    SourceFileError,
    StoreUnavailableError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from cloudbackup.client.database import ClientDatabase

# Failures that only end the current iteration; the loop retries on the next tick
ITERATION_EXCEPTIONS: tuple[type[Exception], ...] = (
    StoreUnavailableError,
    ProviderError,
    SourceFileError,
)


class BaseEngine(ABC):
    """Abstract base class for a long-running engine loop.

    Subclasses implement run_iteration(), which does one unit of work
    against the engine's own database handle and returns how long to
    wait before the next iteration.

    Usage:
        engine = ScanEngine(lambda: ClientDatabase(path))
        stopped = engine.begin_start()
        ...
        engine.begin_stop()
        result = stopped.result(timeout=30)
    """

    def __init__(
        self,
        database_factory: Callable[[], ClientDatabase],
        error_interval: float,
    ) -> None:
        """Initialize the engine.

        Args:
            database_factory: Opens a new database handle for the engine thread.
            error_interval: Seconds to wait after a failed iteration.
        """
        self._database_factory = database_factory
        self._error_interval = error_interval
        self._state = EngineState.STOPPED
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stopped: Future[EngineStoppedResult] | None = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the engine name (e.g., 'scan', 'backup')."""

    @property
    @abstractmethod
    def logger(self) -> logging.Logger:
        """Return the engine's own logger."""

    @abstractmethod
    def run_iteration(self, database: ClientDatabase) -> float:
        """Do one unit of work.

        Args:
            database: The engine thread's own database handle.

        Returns:
            Seconds to wait before the next iteration.
        """

    @property
    def state(self) -> EngineState:
        """Get current engine state."""
        return self._state

    @property
    def stop_requested(self) -> bool:
        """Check if the loop was asked to exit."""
        return self._stop_event.is_set()

    @property
    def stopped(self) -> Future[EngineStoppedResult] | None:
        """Future of the current (or last) start/stop cycle."""
        return self._stopped

    def begin_start(self) -> Future[EngineStoppedResult]:
        """Start the engine loop on its own thread and return immediately.

        Returns:
            A future that resolves once with the loop's stopped result.
        """
        with self._lock:
            active = (EngineState.STARTING, EngineState.RUNNING, EngineState.STOP_REQUESTED)
            if self._stopped is not None and self._state in active:
                self.logger.warning(f"The {self.name} engine is already running")
                return self._stopped

            self._state = EngineState.STARTING
            self._stop_event.clear()
            self._stopped = Future()
            self._stopped.set_running_or_notify_cancel()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stopped,),
                name=f"{self.name.capitalize()}Engine",
                daemon=True,
            )
            self._thread.start()
            self.logger.info(f"Starting the {self.name} engine.")
            return self._stopped

    def begin_stop(self) -> None:
        """Ask the loop to exit at its next checkpoint and return immediately."""
        with self._lock:
            if self._state not in (EngineState.STARTING, EngineState.RUNNING):
                return
            self._state = EngineState.STOP_REQUESTED
            self._stop_event.set()
            self.logger.info(f"Stopping the {self.name} engine...")

    def join(self, timeout: float | None = None) -> EngineStoppedResult | None:
        """Wait for the loop to exit.

        Args:
            timeout: Maximum time to wait in seconds.

        Returns:
            The stopped result, or None if the loop was never started or
            did not exit in time.
        """
        if self._stopped is None:
            return None
        try:
            return self._stopped.result(timeout=timeout)
        except FutureTimeoutError:
            self.logger.warning(f"The {self.name} engine did not stop within {timeout}s")
            return None

    def _run(self, stopped: Future[EngineStoppedResult]) -> None:
        """Thread body: run iterations until stopped, then publish the result."""
        try:
            self._run_loop()
        except Exception as e:
            failure = EngineFailure(f"The {self.name} engine failed: {e}")
            failure.__cause__ = e
            trace = format_exception_chain(failure)
            self.logger.error(f"The {self.name} engine has failed.\n{trace}")
            result = EngineStoppedResult(
                engine=self.name,
                reason=EngineStoppedReason.FAILED,
                exception=failure,
                trace=trace,
            )
            final_state = EngineState.FAILED
        else:
            self.logger.info(f"The {self.name} engine has stopped.")
            result = EngineStoppedResult(engine=self.name, reason=EngineStoppedReason.STOP_REQUESTED)
            final_state = EngineState.STOPPED

        with self._lock:
            self._state = final_state
            self._thread = None
        stopped.set_result(result)

    def _run_loop(self) -> None:
        database = self._database_factory()
        try:
            with self._lock:
                if self._state == EngineState.STARTING:
                    self._state = EngineState.RUNNING
            self.logger.info(f"The {self.name} engine is running.")

            while not self._stop_event.is_set():
                try:
                    wait = self.run_iteration(database)
                except ITERATION_EXCEPTIONS as e:
                    self.logger.error(f"{self.name.capitalize()} iteration failed: {e}")
                    wait = self._error_interval

                if wait > 0:
                    self._stop_event.wait(wait)
        finally:
            database.close()
