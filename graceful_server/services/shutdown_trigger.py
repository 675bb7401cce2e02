"""
One-shot shutdown trigger behind the /shutdown route.

The first call flips the shutdown-in-progress flag and hands a single
ShutdownRequest to the coordinator; every later call is a no-op.
"""

import logging
import queue
import threading

from graceful_server.models.shutdown_request import ShutdownRequest

logger = logging.getLogger(__name__)


class OneShotFlag:
    """Integer flag that can move from 0 to 1 once and never back"""

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def compare_and_swap(self, old: int, new: int) -> bool:
        with self._lock:
            if self._value != old:
                return False
            if old == 1 and new != 1:
                # 1 is terminal
                return False
            self._value = new
            return True

    def is_set(self) -> bool:
        return self._value == 1

    @property
    def value(self) -> int:
        return self._value


class ShutdownTrigger:
    def __init__(self, notifications: "queue.SimpleQueue[ShutdownRequest]"):
        self._notifications = notifications
        self._flag = OneShotFlag()

    @property
    def in_progress(self) -> bool:
        return self._flag.is_set()

    def fire(self, path: str = "/shutdown") -> bool:
        """
        Request shutdown once per process lifetime.

        Returns True for the call that started the shutdown, False for calls
        that found one already in progress.
        """
        if not self._flag.compare_and_swap(0, 1):
            logger.info("Shutdown through API call in progress...")
            return False

        logger.info("Shutdown requested through API call")
        request = ShutdownRequest.from_api(path)
        # Detached so the HTTP response never waits on the coordinator
        notifier = threading.Thread(
            target=self._notifications.put,
            args=(request,),
            name="shutdown-notify",
            daemon=True,
        )
        notifier.start()
        return True
