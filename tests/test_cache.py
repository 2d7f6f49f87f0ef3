"""Tests for the TTL cache used by the aggregation services."""

from __future__ import annotations

from app.cache import TTLCache


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(60, clock=clock)
    cache.set("key", "value")

    clock.now += 59
    assert cache.get_value("key") == "value"

    clock.now += 1
    assert cache.get("key") is None
    assert len(cache) == 0


def test_entry_records_write_time() -> None:
    clock = FakeClock(123.0)
    cache: TTLCache[int] = TTLCache(10, clock=clock)

    entry = cache.set(("a", "b"), 5)

    assert entry.timestamp == 123.0
    assert cache.get(("a", "b")) == entry


def test_none_ttl_never_expires() -> None:
    clock = FakeClock()
    cache: TTLCache[str] = TTLCache(None, clock=clock)
    cache.set("user", "interface")

    clock.now += 10 * 365 * 24 * 3600

    assert "user" in cache
    assert cache.ttl_seconds is None


def test_delete_and_clear() -> None:
    cache: TTLCache[int] = TTLCache(None)
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.delete("a") is True
    assert cache.delete("a") is False
    assert "a" not in cache

    cache.clear()
    assert len(cache) == 0
    assert cache.get("b") is None
