"""Unit tests for the merchant config cache"""

import pytest
from earlypay.domain.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now


def test_cached_value_is_reused_until_expiry():
    clock = FakeClock()
    cache = TTLCache(max_entries=4, ttl_seconds=60, clock=clock)
    loads = []

    def loader():
        loads.append(clock.now)
        return f"config@{clock.now}"

    assert cache.get_or_load("merchant_1", loader) == "config@1000.0"
    clock.now += 59
    assert cache.get_or_load("merchant_1", loader) == "config@1000.0"
    clock.now += 2
    assert cache.get_or_load("merchant_1", loader) == "config@1061.0"
    assert len(loads) == 2


def test_least_recently_used_entry_is_evicted():
    cache = TTLCache(max_entries=2, ttl_seconds=60, clock=FakeClock())
    cache.get_or_load("a", lambda: 1)
    cache.get_or_load("b", lambda: 2)
    cache.get_or_load("a", lambda: 99)
    cache.get_or_load("c", lambda: 3)

    assert len(cache) == 2
    assert cache.get_or_load("a", lambda: 100) == 1
    assert cache.get_or_load("b", lambda: 200) == 200


def test_invalidate_forces_reload():
    cache = TTLCache(max_entries=2, ttl_seconds=60, clock=FakeClock())
    cache.get_or_load("a", lambda: 1)

    cache.invalidate("a")
    cache.invalidate("missing")

    assert cache.get_or_load("a", lambda: 2) == 2


def test_loader_errors_are_not_cached():
    cache = TTLCache(max_entries=2, ttl_seconds=60, clock=FakeClock())

    def failing():
        raise RuntimeError("config store down")

    with pytest.raises(RuntimeError):
        cache.get_or_load("a", failing)
    assert len(cache) == 0


def test_max_entries_must_be_positive():
    with pytest.raises(ValueError):
        TTLCache(max_entries=0, ttl_seconds=60)
