import logging
import signal
import threading
from typing import Callable, Dict, Iterable

logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_termination_handlers(
    on_signal: Callable[[int], None],
    signals: Iterable[int] = TERMINATION_SIGNALS,
) -> Callable[[], None]:
    """
    Route termination signals to ``on_signal`` and return a function that
    restores the previous handlers.

    Python only lets the main thread install handlers; elsewhere nothing is
    installed and the returned restore function does nothing.
    """
    if threading.current_thread() is not threading.main_thread():
        logger.debug("Not on the main thread, signal handlers not installed")
        return lambda: None

    def handler(signum, frame):
        on_signal(signum)

    previous: Dict[int, object] = {}
    for sig in signals:
        previous[sig] = signal.signal(sig, handler)

    def restore() -> None:
        for sig, old_handler in previous.items():
            signal.signal(sig, old_handler if old_handler is not None else signal.SIG_DFL)

    return restore
