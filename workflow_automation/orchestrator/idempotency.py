"""
Bounded, expiring store of processed step idempotency keys.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional


class IdempotencyStore:
    """
    LRU + TTL set of idempotency keys.

    A key counts as seen until ``ttl_seconds`` after it was last recorded
    or confirmed, or until ``max_keys`` newer keys push it out.
    """

    def __init__(
        self,
        max_keys: int = 10000,
        ttl_seconds: float = 86400.0,
        now_fn: Optional[Callable[[], float]] = None,
    ):
        if max_keys < 1:
            raise ValueError("max_keys must be at least 1")
        self.max_keys = max_keys
        self.ttl_seconds = ttl_seconds
        self._now = now_fn or time.monotonic
        self._keys: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    def _purge_expired(self, now: float) -> None:
        # Oldest entries sit at the front
        while self._keys:
            key, recorded_at = next(iter(self._keys.items()))
            if now - recorded_at < self.ttl_seconds:
                break
            del self._keys[key]

    def check_and_add(self, key: str) -> bool:
        """
        Record ``key``.

        Returns:
            True if the key was already present (a duplicate), else False
        """
        with self._lock:
            now = self._now()
            self._purge_expired(now)

            seen = key in self._keys
            self._keys[key] = now
            self._keys.move_to_end(key)

            while len(self._keys) > self.max_keys:
                self._keys.popitem(last=False)

            return seen

    def __contains__(self, key: object) -> bool:
        with self._lock:
            self._purge_expired(self._now())
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired(self._now())
            return len(self._keys)

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()
