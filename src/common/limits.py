from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Deque, Dict, Hashable, Iterator, Optional


class RateLimitError(RuntimeError):
    """Raised when a non-blocking acquire would exceed the rate limit."""


class SlidingWindowRateLimiter:
    """
    Thread-safe sliding-window limiter: at most `max_calls` within any
    `per_seconds` window.

    - `acquire(blocking=True)` waits for a free slot.
    - `acquire(blocking=False)` raises `RateLimitError` instead of waiting.

    Single-process only; every worker thread of the bot shares one instance
    per outbound API.
    """

    def __init__(self, max_calls: int, per_seconds: float, *, clock=time.monotonic, sleep=time.sleep):
        if max_calls <= 0:
            raise ValueError("max_calls must be > 0")
        if per_seconds <= 0:
            raise ValueError("per_seconds must be > 0")
        self._max_calls = max_calls
        self._per_seconds = per_seconds
        self._events: Deque[float] = deque()
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep

    def _delay(self, now: float) -> float:
        window_start = now - self._per_seconds
        while self._events and self._events[0] <= window_start:
            self._events.popleft()
        if len(self._events) < self._max_calls:
            return 0.0
        return max(0.0, (self._events[0] + self._per_seconds) - now)

    def acquire(self, *, blocking: bool = True) -> None:
        while True:
            with self._lock:
                now = self._clock()
                delay = self._delay(now)
                if delay == 0.0:
                    self._events.append(now)
                    return
            if not blocking:
                raise RateLimitError("rate limit exceeded; no slot available")
            self._sleep(min(delay, 1.0))


class KeyedLocks:
    """
    One lock per key, created on demand and dropped when nobody holds or
    waits for it.

    Used to serialize work per user identity (session handling) and per
    signing address (nonce-ordered ledger writes) while unrelated keys run
    in parallel.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}
        self._waiters: Dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable, *, timeout: Optional[float] = None) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        acquired = False
        try:
            acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
            if not acquired:
                raise TimeoutError(f"timed out waiting for lock {key!r}")
            yield
        finally:
            if acquired:
                lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


__all__ = ["KeyedLocks", "RateLimitError", "SlidingWindowRateLimiter"]
