"""
Coordinated shutdown between the caller thread and the listener thread.
"""

import logging
import signal
import threading
from typing import Iterable, Optional


logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """
    Two one-shot signals guarding session teardown.

    ``cancel()`` may be raised from any thread, including a signal handler.
    The listener calls ``mark_completed()`` exactly once when its loop exits,
    and ``wait_completed()`` blocks the closing thread until it has.
    """

    def __init__(self):
        self._cancelled = threading.Event()
        self._completed = threading.Event()
        self._lock = threading.Lock()
        self.completion_count = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def completed(self) -> bool:
        return self._completed.is_set()

    def cancel(self) -> None:
        """Raise the cancellation signal. Repeated calls are harmless."""
        self._cancelled.set()

    def wait_cancelled(self, timeout: Optional[float] = None) -> bool:
        return self._cancelled.wait(timeout)

    def mark_completed(self) -> None:
        """
        Signal that the listener has fully exited.

        Raises:
            RuntimeError: If completion was already signalled
        """
        with self._lock:
            if self._completed.is_set():
                raise RuntimeError("listener completion already signalled")
            self.completion_count += 1
            self._completed.set()

    def wait_completed(self, timeout: Optional[float] = None) -> bool:
        return self._completed.wait(timeout)

    def install_signal_handlers(
        self,
        signals: Iterable[int] = (signal.SIGINT, signal.SIGTERM)
    ) -> None:
        """Route process signals to ``cancel()``. Must run on the main thread."""
        def _handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down")
            self.cancel()

        for signum in signals:
            signal.signal(signum, _handler)
