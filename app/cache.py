"""In-process caches shared by the aggregation services."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

T = TypeVar("T")
Clock = Callable[[], float]


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    """A cached value and the wall-clock time it was stored."""

    value: T
    timestamp: float


class TTLCache(Generic[T]):
    """Associative cache whose entries expire a fixed time after being written.

    Expiry is checked lazily on read. A ``ttl_seconds`` of ``None`` disables
    expiry so entries live until they are explicitly invalidated. The clock is
    injectable so tests can move time forward without sleeping.
    """

    def __init__(
        self,
        ttl_seconds: float | None,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock: Clock = clock or time.time
        self._entries: dict[Hashable, CacheEntry[T]] = {}

    @property
    def ttl_seconds(self) -> float | None:
        return self._ttl

    def get(self, key: Hashable) -> CacheEntry[T] | None:
        """Return the live entry for ``key`` or ``None`` when missing/expired."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._ttl is not None and self._clock() - entry.timestamp >= self._ttl:
            self._entries.pop(key, None)
            return None
        return entry

    def get_value(self, key: Hashable) -> T | None:
        entry = self.get(key)
        return entry.value if entry is not None else None

    def set(self, key: Hashable, value: T) -> CacheEntry[T]:
        entry = CacheEntry(value=value, timestamp=self._clock())
        self._entries[key] = entry
        return entry

    def delete(self, key: Hashable) -> bool:
        """Remove ``key``; return whether an entry existed."""

        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._entries)
