"""
Short-lived request caches.

Two instances are used per service: username -> User (5 minutes) and exact
query text -> small embedding (1 minute). Expired entries are treated as
misses on read and removed by an inline sweep that runs at most once per
sweep_interval, on whichever access comes first.
"""
import time
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

V = TypeVar("V")

USER_CACHE_TTL = 5 * 60
EMBEDDING_CACHE_TTL = 60


class TTLCache(Generic[V]):
    def __init__(
        self,
        ttl_seconds: float,
        sweep_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = ttl_seconds if sweep_interval is None else sweep_interval
        self.name = name
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[V, float]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> Optional[V]:
        """Cached value, or None when missing or older than the TTL."""
        self.maybe_sweep()
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            return None
        return value

    def set(self, key: Hashable, value: V) -> None:
        # Last writer wins; concurrent writers hold equally fresh values
        self._entries[key] = (value, self._clock())
        self.maybe_sweep()

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, (_, stored_at) in self._entries.items() if now - stored_at >= self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        if expired:
            print(f"[Cache] name={self.name} swept={len(expired)} remaining={len(self._entries)}")
        return len(expired)

    def maybe_sweep(self) -> bool:
        if self._clock() - self._last_sweep < self.sweep_interval:
            return False
        self.sweep()
        return True

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Optional[V]:
        """
        Return the cached value or await loader() and cache its result.

        None results are not cached, so an unknown user is looked up again
        on the next request.
        """
        value = self.get(key)
        if value is not None:
            return value
        value = await loader()
        if value is not None:
            self.set(key, value)
        return value
