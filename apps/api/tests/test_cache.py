from __future__ import annotations

import pytest

from app.cache import TimeBoundedCache


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_entry_is_fresh_until_its_ttl_elapses() -> None:
    clock = FakeClock()
    cache = TimeBoundedCache(clock=clock)
    cache.set("week:12", ["tip"], ttl=1.0)

    clock.advance(0.999)
    assert cache.get("week:12") == ["tip"]

    clock.advance(0.002)
    assert cache.get("week:12") is None


def test_boundary_is_a_miss() -> None:
    clock = FakeClock()
    cache = TimeBoundedCache(clock=clock)
    cache.set("k", "v", ttl=5)
    clock.advance(5)
    assert cache.get("k") is None


def test_stale_entries_wait_for_sweep() -> None:
    clock = FakeClock()
    cache = TimeBoundedCache(clock=clock)
    cache.set("short", 1, ttl=1)
    cache.set("long", 2, ttl=60)
    clock.advance(2)

    assert cache.get("short") is None
    assert len(cache) == 2

    assert cache.sweep() == 1
    assert len(cache) == 1
    assert cache.get("long") == 2
    assert cache.sweep() == 0


def test_set_overwrites_and_restarts_the_clock() -> None:
    clock = FakeClock()
    cache = TimeBoundedCache(clock=clock)
    cache.set("k", "old", ttl=10)
    clock.advance(8)
    cache.set("k", "new", ttl=10)
    clock.advance(8)
    assert cache.get("k") == "new"


def test_invalidation_helpers() -> None:
    cache = TimeBoundedCache(clock=FakeClock())
    cache.set("care_tips:week=1", 1, ttl=60)
    cache.set("care_tips:week=2", 2, ttl=60)
    cache.set("badges:id=1", 3, ttl=60)

    assert cache.invalidate_prefix("care_tips:") == 2
    assert cache.invalidate("badges:id=1") is True
    assert cache.invalidate("badges:id=1") is False
    assert len(cache) == 0

    cache.set("a", 1, ttl=1)
    cache.clear()
    assert cache.get("a") is None


def test_ttl_must_be_positive() -> None:
    cache = TimeBoundedCache(clock=FakeClock())
    with pytest.raises(ValueError):
        cache.set("k", "v", ttl=0)


def test_cached_none_is_distinguishable_with_a_default() -> None:
    clock = FakeClock()
    cache = TimeBoundedCache(clock=clock)
    missing = object()
    cache.set("empty", None, ttl=5)

    assert cache.get("empty", missing) is None
    assert cache.get("absent", missing) is missing
    clock.advance(5)
    assert cache.get("empty", missing) is missing
