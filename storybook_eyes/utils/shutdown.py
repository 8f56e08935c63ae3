"""
Shutdown coordination
One place that runs cleanup on normal exit, SIGINT/SIGTERM and uncaught exceptions
"""

import atexit
import signal
import sys
import threading
from typing import Callable, List, Optional, Tuple

from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.utils.shutdown")

Callback = Callable[[], None]


class ShutdownCoordinator:
    """
    Runs registered cleanup callbacks exactly once, newest first.

    ``install()`` hooks interpreter exit, interrupt and termination signals
    and the uncaught-exception hook; every path ends in ``run()``.
    """

    def __init__(self):
        self._callbacks: List[Tuple[str, Callback]] = []
        self._lock = threading.RLock()
        self._installed = False
        self._previous_excepthook = None

    def register(self, callback: Callback, name: Optional[str] = None):
        with self._lock:
            self._callbacks.append((name or getattr(callback, '__name__', 'cleanup'), callback))

    def unregister(self, callback: Callback):
        with self._lock:
            self._callbacks = [(n, cb) for n, cb in self._callbacks if cb != callback]

    @property
    def pending(self) -> int:
        return len(self._callbacks)

    def run(self):
        """Run and forget every pending callback; failures are logged and do not stop the rest"""
        with self._lock:
            callbacks, self._callbacks = self._callbacks, []

        for name, callback in reversed(callbacks):
            try:
                logger.debug(f"Running shutdown callback '{name}'")
                callback()
            except Exception as e:
                logger.error(f"Shutdown callback '{name}' failed: {e}")

    def _signal_handler(self, signum, frame):
        logger.warning(f"Received signal {signum}, cleaning up before exit...")
        self.run()
        sys.exit(128 + signum)

    def _excepthook(self, exc_type, exc_value, exc_tb):
        self.run()
        if self._previous_excepthook:
            self._previous_excepthook(exc_type, exc_value, exc_tb)

    def install(self):
        """Register exit, signal and excepthook handlers (main thread only, idempotent)"""
        with self._lock:
            if self._installed:
                return
            self._installed = True

        atexit.register(self.run)

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        if hasattr(signal, "SIGBREAK"):
            signal.signal(signal.SIGBREAK, self._signal_handler)

        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._excepthook
        logger.debug("Shutdown handlers installed")


shutdown_coordinator = ShutdownCoordinator()
