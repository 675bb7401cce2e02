"""
Shutdown coordinator.

Blocks the main thread until a termination request arrives, either from an
OS signal (SIGINT, SIGTERM) or from the /shutdown route, then drives a
bounded graceful stop of the server. Whichever source fires first wins and
the sequence runs exactly once.
"""

import logging
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from graceful_server.models.shutdown_request import ShutdownRequest
from graceful_server.services.server import DrainTimeoutError, Server
from graceful_server.services.signals import TERMINATION_SIGNALS, install_termination_handlers

logger = logging.getLogger(__name__)


class ServerState(str, Enum):
    RUNNING = "running"
    SHUTDOWN_REQUESTED = "shutdown_requested"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ShutdownReport:
    request: ShutdownRequest
    drained: bool
    state: ServerState


class ShutdownCoordinator:
    def __init__(self, server: Server, signals: Iterable[int] = TERMINATION_SIGNALS):
        self._server = server
        self._signals = tuple(signals)
        self._state = ServerState.RUNNING
        self._waiting = False
        self._lock = threading.Lock()
        self._restore_signals: Optional[Callable[[], None]] = None

    @property
    def state(self) -> ServerState:
        return self._state

    def _on_signal(self, signum: int) -> None:
        # SimpleQueue.put is reentrant, safe from a signal handler
        self._server.notifications.put(ShutdownRequest.from_signal(signum))

    def _claim(self) -> None:
        with self._lock:
            if self._waiting or self._state is not ServerState.RUNNING:
                raise RuntimeError(f"shutdown sequence already started (state: {self._state.value})")
            self._waiting = True

    def install_signal_handlers(self) -> None:
        """
        Start routing termination signals into the shutdown queue.

        Call before anything slow (server startup) so an early signal is
        handled gracefully; wait_shutdown installs them itself otherwise.
        """
        if self._restore_signals is None:
            self._restore_signals = install_termination_handlers(self._on_signal, self._signals)

    def restore_signal_handlers(self) -> None:
        if self._restore_signals is not None:
            self._restore_signals()
            self._restore_signals = None

    def wait_shutdown(self, timeout: Optional[float] = None) -> ShutdownReport:
        """
        Wait for the first shutdown request and stop the server.

        ``timeout`` bounds the wait for a request, not the drain; TimeoutError
        is raised if nothing arrives in time and the server keeps running.
        The drain is bounded by ``config.shutdown_timeout``; exceeding it is
        logged and reported through ``ShutdownReport.drained`` rather than
        raised. Any other error from the graceful stop propagates, with the
        coordinator left in the stopped state.
        """
        self._claim()
        self.install_signal_handlers()
        try:
            try:
                request = self._server.notifications.get(timeout=timeout)
            except queue.Empty:
                with self._lock:
                    self._waiting = False
                raise TimeoutError(f"no shutdown request within {timeout}s")

            self._state = ServerState.SHUTDOWN_REQUESTED
            logger.info(f"Shutdown request ({request.describe()})")
            logger.info("Stopping http server..")

            self._state = ServerState.DRAINING
            drained = True
            try:
                self._server.graceful_stop(self._server.config.shutdown_timeout)
            except DrainTimeoutError as e:
                drained = False
                logger.error(f"Shutdown request error: {e}")
            finally:
                # No retry whatever the outcome
                self._state = ServerState.STOPPED
                with self._lock:
                    self._waiting = False

            return ShutdownReport(request=request, drained=drained, state=self._state)
        finally:
            self.restore_signal_handlers()
