from __future__ import annotations

from astradio_worker.services.cache import InMemoryCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_get_and_set() -> None:
    cache: InMemoryCache[str] = InMemoryCache()
    assert cache.get("missing") is None
    cache.set("a", "value")
    assert cache.get("a") == "value"
    assert len(cache) == 1


def test_ttl_expiry() -> None:
    clock = FakeClock()
    cache: InMemoryCache[int] = InMemoryCache(ttl_seconds=10.0, clock=clock)
    cache.set("a", 1)
    clock.now = 10.0
    assert cache.get("a") == 1
    clock.now = 10.5
    assert cache.get("a") is None
    assert len(cache) == 0


def test_lru_eviction() -> None:
    cache: InMemoryCache[int] = InMemoryCache(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.get("a") == 1
    cache.set("c", 3)
    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_invalidate() -> None:
    cache: InMemoryCache[int] = InMemoryCache()
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    assert len(cache) == 1
    cache.invalidate()
    assert len(cache) == 0
