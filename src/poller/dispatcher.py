from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Deque, Dict, Hashable, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class UserSerialDispatcher:
    """
    Runs `handler(item)` on a thread pool, one item at a time per key.

    Items for the same key (user identity) are processed in submission order
    by at most one worker; different keys run in parallel. A handler that
    raises is logged and the key's queue keeps draining.
    """

    def __init__(self, handler: Callable[[T], None], *, workers: int = 8, name: str = "dispatch") -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._handler = handler
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._queues: Dict[Hashable, Deque[T]] = {}
        self._closed = False

    def submit(self, key: Hashable, item: T) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("dispatcher is shut down")
            queue = self._queues.get(key)
            if queue is not None:
                # A worker is already draining this key
                queue.append(item)
                return
            self._queues[key] = deque([item])
        self._pool.submit(self._drain, key)

    def _drain(self, key: Hashable) -> None:
        while True:
            with self._lock:
                queue = self._queues[key]
                if not queue:
                    del self._queues[key]
                    self._idle.notify_all()
                    return
                item = queue[0]
            try:
                self._handler(item)
            except Exception:
                logger.exception("Handler failed for %r", key)
            finally:
                with self._lock:
                    queue.popleft()

    def pending(self) -> int:
        with self._lock:
            return sum(len(q) for q in self._queues.values())

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queue is drained. Returns False on timeout."""
        with self._lock:
            return self._idle.wait_for(lambda: not self._queues, timeout=timeout)

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "UserSerialDispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


__all__ = ["UserSerialDispatcher"]
