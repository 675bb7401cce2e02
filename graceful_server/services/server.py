"""
The server instance: listener, uvicorn accept loop and shutdown plumbing.

One Server exists per process. It binds the listening socket itself so a
busy address fails loudly at startup, runs uvicorn on a background thread,
and exposes the graceful stop used by the shutdown coordinator.
"""

import logging
import queue
import socket
import threading
import time
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI

from graceful_server.config import ServerConfig
from graceful_server.models.shutdown_request import ShutdownRequest
from graceful_server.services.shutdown_trigger import ShutdownTrigger

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 2048


class ServerError(Exception):
    """Base class for server lifecycle errors"""


class ListenerStartError(ServerError):
    """The listening socket could not be bound"""


class DrainTimeoutError(ServerError):
    """In-flight requests were still running when the drain deadline passed"""


class InFlightTracker:
    """Thread-safe count of requests being handled"""

    def __init__(self):
        self._count = 0
        self._idle = threading.Condition()

    @property
    def count(self) -> int:
        with self._idle:
            return self._count

    def enter(self) -> None:
        with self._idle:
            self._count += 1

    def leave(self) -> None:
        with self._idle:
            self._count -= 1
            if self._count == 0:
                self._idle.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no request is in flight; False if the timeout expired first"""
        with self._idle:
            return self._idle.wait_for(lambda: self._count == 0, timeout=timeout)


class Server:
    def __init__(self, config: ServerConfig, app_factory: Callable[["Server"], FastAPI]):
        self.config = config
        self.notifications: "queue.SimpleQueue[ShutdownRequest]" = queue.SimpleQueue()
        self.trigger = ShutdownTrigger(self.notifications)
        self.in_flight = InFlightTracker()
        self.stopped = threading.Event()
        self.app = app_factory(self)

        self._uvicorn = uvicorn.Server(
            uvicorn.Config(
                self.app,
                timeout_keep_alive=config.read_timeout,
                timeout_graceful_shutdown=config.shutdown_timeout,
                log_level=config.log_level,
            )
        )
        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> str:
        """Address actually bound, with the real port when port 0 was configured"""
        if self._socket is None:
            return self.config.addr
        host, port = self._socket.getsockname()[:2]
        if ":" in host:
            host = f"[{host}]"
        return f"{host}:{port}"

    @property
    def port(self) -> int:
        if self._socket is None:
            return self.config.port
        return self._socket.getsockname()[1]

    @property
    def started(self) -> bool:
        return self._uvicorn.started

    def start(self) -> None:
        """Bind the listener and start the accept loop on a background thread"""
        if self._thread is not None:
            raise ServerError("server already started")

        host, port = self.config.host, self.config.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        try:
            self._socket = socket.create_server(
                (host, port), family=family, backlog=LISTEN_BACKLOG
            )
        except OSError as e:
            raise ListenerStartError(f"listen tcp {self.config.addr}: {e.strerror or e}") from e

        self._thread = threading.Thread(target=self._serve, name="accept-loop", daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        try:
            self._uvicorn.run(sockets=[self._socket])
        except (Exception, SystemExit) as e:
            logger.exception(f"Listen and serve: {e!r}")
        finally:
            self._socket.close()
            logger.info("Server stopped")
            self.stopped.set()

    def wait_started(self, timeout: float = 30.0) -> bool:
        """Wait until uvicorn reports startup complete; False if it stopped or timed out"""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._uvicorn.started:
                return True
            if self.stopped.is_set():
                return False
            time.sleep(0.01)
        return self._uvicorn.started

    def graceful_stop(self, timeout: float) -> None:
        """
        Stop accepting connections and wait up to ``timeout`` seconds for
        in-flight requests to finish.

        uvicorn closes the listener and idle keep-alive connections on its next
        tick and cancels whatever is still running once its own graceful
        timeout (the same bound) elapses. Raises DrainTimeoutError when
        requests outlived the deadline.
        """
        self._uvicorn.should_exit = True
        if not self.in_flight.wait_idle(timeout):
            raise DrainTimeoutError(
                f"context deadline exceeded: {self.in_flight.count} request(s) "
                f"still in flight after {timeout}s"
            )

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Wait for the accept loop to confirm it has terminated"""
        return self.stopped.wait(timeout)
