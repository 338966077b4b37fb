"""Bounded time-to-live cache shared across call sessions."""
import threading
import time
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    Key/value store with a size cap and time-based expiry.

    Eviction follows insertion order: once the store grows past ``max_size``
    the entry that was inserted first is dropped, no matter how recently it
    was read. Overwriting a key refreshes its timestamp but keeps its original
    position in the eviction order.

    Expired entries are treated as absent by ``get`` and stay in storage until
    they are overwritten or evicted.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[K, Tuple[V, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> Optional[V]:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            return None
        return value

    def put(self, key: K, value: V) -> None:
        """Insert or overwrite a value, evicting the oldest entry when full."""
        with self._lock:
            self._entries[key] = (value, self._clock())
            if len(self._entries) > self.max_size:
                oldest_key = next(iter(self._entries))
                del self._entries[oldest_key]

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        """Number of entries that have not expired."""
        with self._lock:
            now = self._clock()
            return sum(
                1 for _, stored_at in self._entries.values()
                if now - stored_at < self.ttl_seconds
            )
