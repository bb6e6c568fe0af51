"""
Keyed ephemeral store with TTL eviction, and an inter-call throttle built on it.
Owned by the engine's caller (e.g. the HTTP server) so nothing lives in module globals.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple


class TTLStore:
    """Thread-safe key -> value map; entries expire ttl_s seconds after being set."""

    def __init__(self, default_ttl_s: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.default_ttl_s = default_ttl_s
        self._clock = clock
        self._lock = threading.Lock()
        # key -> (value, expires_at)
        self._store: Dict[str, Tuple[Any, float]] = {}

    def _prune(self, now: float) -> None:
        expired = [k for k, (_, exp) in self._store.items() if exp <= now]
        for k in expired:
            del self._store[k]

    def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None:
        ttl = self.default_ttl_s if ttl_s is None else ttl_s
        with self._lock:
            now = self._clock()
            self._prune(now)
            self._store[key] = (value, now + ttl)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            now = self._clock()
            self._prune(now)
            entry = self._store.get(key)
            return default if entry is None else entry[0]

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._store)

    def reserve_slot(self, key: str, interval_s: float) -> float:
        """
        Claim the next call slot for key, spaced interval_s after the previous one.
        Returns how long the caller must wait before calling.
        """
        with self._lock:
            now = self._clock()
            self._prune(now)
            entry = self._store.get(key)
            last = entry[0] if entry is not None else None
            slot = now if last is None else max(now, last + interval_s)
            self._store[key] = (slot, slot + max(interval_s, 1.0) * 2)
            return slot - now


class Throttle:
    """Enforces a minimum delay between calls to one rate-limited backend."""

    def __init__(
        self,
        store: TTLStore,
        key: str,
        interval_s: float,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.key = f"throttle:{key}"
        self.interval_s = interval_s
        self._sleep = sleep

    def wait(self) -> float:
        if self.interval_s <= 0:
            return 0.0
        delay = self.store.reserve_slot(self.key, self.interval_s)
        if delay > 0:
            self._sleep(delay)
        return delay
