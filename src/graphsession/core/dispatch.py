"""Hand-off of callbacks from worker threads to the host's main thread.

Token operations run on worker threads, but host UI objects may only be
touched from the main thread. Workers post() callbacks; the host calls
drain_pending() once per frame/tick, which runs everything queued so far in
posting order.

Usage:
    dispatcher = MainThreadDispatcher()

    # worker thread
    dispatcher.post(show_device_code, url, code)

    # host loop, once per tick
    dispatcher.drain_pending()
"""

import threading
from collections import deque
from collections.abc import Callable
from typing import Any

from graphsession.core.logging import get_logger

logger = get_logger(__name__)


class MainThreadDispatcher:
    """Thread-safe FIFO of pending callbacks with an explicit drain call.

    A single lock guards both posting and draining, so callbacks never run
    concurrently with each other and are delivered in the order they were
    posted. The lock is reentrant: a callback may post further callbacks,
    which run within the same drain.

    Attributes:
        max_pending: Optional bound; when full, the oldest callback is dropped
    """

    def __init__(self, max_pending: int | None = None):
        if max_pending is not None and max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.max_pending = max_pending
        self._queue: deque[tuple[Callable[..., Any], tuple[Any, ...]]] = deque()
        self._lock = threading.RLock()
        self._ready = threading.Condition(self._lock)
        self._dropped = 0

    @property
    def pending(self) -> int:
        """Number of callbacks waiting for the next drain."""
        with self._lock:
            return len(self._queue)

    @property
    def dropped(self) -> int:
        """Number of callbacks discarded because the queue was full."""
        with self._lock:
            return self._dropped

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue a callback to run on the next drain. Safe from any thread."""
        with self._ready:
            if self.max_pending is not None and len(self._queue) >= self.max_pending:
                dropped, _ = self._queue.popleft()
                self._dropped += 1
                logger.warning(
                    "Dispatcher queue full, dropping oldest callback",
                    max_pending=self.max_pending,
                    callback=getattr(dropped, "__qualname__", repr(dropped)),
                )
            self._queue.append((callback, args))
            self._ready.notify_all()

    def drain_pending(self, timeout: float | None = None) -> int:
        """Run every queued callback on the calling thread.

        Args:
            timeout: If given and nothing is queued, wait up to this many
                seconds for a callback to arrive before draining. Hosts with
                their own frame loop pass None (no wait).

        Returns:
            Number of callbacks invoked
        """
        with self._ready:
            if timeout is not None and not self._queue:
                self._ready.wait_for(lambda: bool(self._queue), timeout=timeout)

            invoked = 0
            while self._queue:
                callback, args = self._queue.popleft()
                invoked += 1
                try:
                    callback(*args)
                except Exception:
                    logger.exception(
                        "Dispatched callback raised",
                        callback=getattr(callback, "__qualname__", repr(callback)),
                    )
            return invoked

    def clear(self) -> int:
        """Discard all pending callbacks without running them.

        Returns:
            Number of callbacks discarded
        """
        with self._lock:
            count = len(self._queue)
            self._queue.clear()
            return count
