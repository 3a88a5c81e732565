"""
UI-thread delivery boundary.
Worker threads post callables; only the UI thread runs them, so conversation
state and chat messages are mutated from one thread.
"""

import logging
import queue
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class UiDispatcher:
    """Queue of callables drained by the UI thread."""

    def __init__(self):
        self._queue: "queue.Queue[Callable[[], None]]" = queue.Queue()

    def post(self, fn: Callable[[], None]) -> None:
        self._queue.put(fn)

    def _run(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            # One failing callback must not stop the UI loop
            logger.exception("UI callback failed")

    def run_pending(self, timeout: Optional[float] = None) -> int:
        """Run queued callables. Blocks up to timeout for the first one."""
        count = 0
        try:
            fn = self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return 0
        while True:
            self._run(fn)
            count += 1
            try:
                fn = self._queue.get_nowait()
            except queue.Empty:
                return count

    def run_until(self, predicate: Callable[[], bool], timeout: float = 30.0, poll: float = 0.05) -> bool:
        """Drain the queue until predicate() holds. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while not predicate():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.run_pending(timeout=min(poll, remaining))
        return True


class InlineDispatcher:
    """Runs posted callables immediately, serialised under a lock."""

    def __init__(self):
        self._lock = threading.RLock()

    def post(self, fn: Callable[[], None]) -> None:
        with self._lock:
            fn()
