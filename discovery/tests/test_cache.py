from __future__ import annotations

import asyncio

import pytest

from discovery.recommendations.cache import (
    ROTATION_KEY,
    RecommendationCache,
    RotationSet,
    discover_key,
    make_key,
    select_fresh,
)
from discovery.recommendations.models import Place, PlaceList, ResolvedLocation
from discovery.session.store import InMemorySessionCache

ITEMS = [
    Place(id="p-1", name="Blue Bottle Coffee", tags={"coffee"}),
    PlaceList(id="l-1", name="Best Coffee", owner_id="u1"),
]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _counting_compute(result=ITEMS):
    calls = {"n": 0}

    async def compute():
        calls["n"] += 1
        return result

    return compute, calls


def test_make_key_is_order_independent():
    assert make_key({"a": 1, "b": [1, 2]}) == make_key({"b": [1, 2], "a": 1})
    assert make_key({"a": 1}) != make_key({"a": 2})


def test_discover_key_buckets_location():
    loc = ResolvedLocation(lat=37.77491, lng=-122.41942)
    key = discover_key("current", loc, 80.0, False, 12)
    assert key.startswith("discover:current:37.775:-122.419:80:0:12:")
    assert discover_key("current", ResolvedLocation(lat=37.77489, lng=-122.41938), 80.0, False, 12) == key
    assert discover_key(None, None, 12.5, True, 5).startswith("discover:none:none:none:12.5:1:5:")


def test_discover_key_separates_every_input():
    loc = ResolvedLocation(lat=37.7749, lng=-122.4194)
    base = discover_key("current", loc, 80.0, False, 12, ["coffee"])
    variants = [
        discover_key("custom", loc, 80.0, False, 12, ["coffee"]),
        discover_key("current", ResolvedLocation(lat=37.7849, lng=-122.4194), 80.0, False, 12, ["coffee"]),
        discover_key("current", loc, 10.0, False, 12, ["coffee"]),
        discover_key("current", loc, 80.0, True, 12, ["coffee"]),
        discover_key("current", loc, 80.0, False, 4, ["coffee"]),
        discover_key("current", loc, 80.0, False, 12, ["tacos"]),
    ]
    assert base not in variants
    assert len(set(variants)) == len(variants)


def test_get_or_compute_within_window_computes_once():
    cache = RecommendationCache(InMemorySessionCache(), freshness_window_s=120, clock=FakeClock())
    compute, calls = _counting_compute()

    first, hit1 = asyncio.run(cache.get_or_compute("k", compute))
    second, hit2 = asyncio.run(cache.get_or_compute("k", compute))

    assert calls["n"] == 1
    assert (hit1, hit2) == (False, True)
    assert second == first
    assert isinstance(second[1], PlaceList)


def test_force_refresh_always_computes():
    cache = RecommendationCache(InMemorySessionCache(), clock=FakeClock())
    compute, calls = _counting_compute()

    asyncio.run(cache.get_or_compute("k", compute))
    asyncio.run(cache.get_or_compute("k", compute, force_refresh=True))
    asyncio.run(cache.get_or_compute("k", compute, force_refresh=True))
    assert calls["n"] == 3


def test_entry_expires_after_window():
    clock = FakeClock()
    cache = RecommendationCache(InMemorySessionCache(), freshness_window_s=120, clock=clock)
    compute, calls = _counting_compute()

    asyncio.run(cache.get_or_compute("k", compute))
    clock.now += 121
    _, hit = asyncio.run(cache.get_or_compute("k", compute))
    assert calls["n"] == 2
    assert hit is False


def test_per_call_freshness_window_overrides_default():
    clock = FakeClock()
    cache = RecommendationCache(InMemorySessionCache(), freshness_window_s=120, clock=clock)
    compute, calls = _counting_compute()

    asyncio.run(cache.get_or_compute("k", compute))
    clock.now += 30
    asyncio.run(cache.get_or_compute("k", compute, freshness_window=10))
    assert calls["n"] == 2


def test_corrupt_entry_is_a_miss_and_is_overwritten():
    store = InMemorySessionCache()
    store.set("k", {"items": "not-a-list"})
    cache = RecommendationCache(store, clock=FakeClock())
    compute, calls = _counting_compute()

    items, hit = asyncio.run(cache.get_or_compute("k", compute))
    assert calls["n"] == 1
    assert hit is False
    assert items == ITEMS
    assert store.get("k")["key"] == "k"


def test_undecodable_json_is_a_miss():
    store = InMemorySessionCache()
    store._data["k"] = "{truncated"
    cache = RecommendationCache(store, clock=FakeClock())
    compute, calls = _counting_compute()

    asyncio.run(cache.get_or_compute("k", compute))
    assert calls["n"] == 1


def test_should_store_false_skips_write():
    store = InMemorySessionCache()
    cache = RecommendationCache(store, clock=FakeClock())
    compute, calls = _counting_compute()

    asyncio.run(cache.get_or_compute("k", compute, should_store=lambda: False))
    assert store.get("k") is None
    asyncio.run(cache.get_or_compute("k", compute))
    assert calls["n"] == 2


def test_concurrent_calls_for_one_key_compute_once():
    cache = RecommendationCache(InMemorySessionCache(), clock=FakeClock())
    calls = {"n": 0}

    async def slow_compute():
        calls["n"] += 1
        await asyncio.sleep(0.01)
        return ITEMS

    async def run():
        return await asyncio.gather(
            cache.get_or_compute("k", slow_compute),
            cache.get_or_compute("k", slow_compute),
        )

    (_, hit1), (_, hit2) = asyncio.run(run())
    assert calls["n"] == 1
    assert sorted([hit1, hit2]) == [False, True]


def test_key_locks_are_released_after_use():
    cache = RecommendationCache(InMemorySessionCache(), clock=FakeClock())
    compute, _ = _counting_compute()

    async def run():
        await asyncio.gather(*(cache.get_or_compute(f"k{i % 3}", compute) for i in range(9)))

    asyncio.run(run())
    for i in range(20):
        asyncio.run(cache.get_or_compute(f"one-off-{i}", compute))
    assert cache._locks == {}
    assert not cache._lock_users


def test_key_lock_is_released_when_compute_fails():
    cache = RecommendationCache(InMemorySessionCache(), clock=FakeClock())

    async def failing():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(cache.get_or_compute("k", failing))
    assert cache._locks == {}


def test_stats_and_invalidate():
    cache = RecommendationCache(InMemorySessionCache(), clock=FakeClock())
    compute, _ = _counting_compute()
    asyncio.run(cache.get_or_compute("k", compute))
    asyncio.run(cache.get_or_compute("k", compute))

    stats = cache.stats()
    assert stats == {"size": 1, "hits": 1, "misses": 1, "hit_rate": 50.0}

    cache.invalidate("k")
    assert cache.stats()["size"] == 0


# ── Rotation ─────────────────────────────────────────────────────────────


def test_rotation_add_keeps_newest_and_caps():
    store = InMemorySessionCache()
    rotation = RotationSet(store, cap=3)

    asyncio.run(rotation.add(["a", "b", "c"]))
    asyncio.run(rotation.add(["a", "d"]))

    assert rotation.ids() == ["c", "a", "d"]
    assert store.get(ROTATION_KEY) == ["c", "a", "d"]
    assert "b" not in rotation
    assert len(rotation) == 3


def test_rotation_ignores_empty_ids():
    rotation = RotationSet(InMemorySessionCache())
    asyncio.run(rotation.add(["", "a"]))
    assert rotation.ids() == ["a"]


def test_rotation_treats_corrupt_value_as_empty():
    store = InMemorySessionCache()
    store.set(ROTATION_KEY, {"not": "a list"})
    assert RotationSet(store).ids() == []

    store._data[ROTATION_KEY] = "[broken"
    assert RotationSet(store).ids() == []


def _places(n):
    return [Place(id=f"p-{i}", name=f"Place {i}") for i in range(n)]


def test_select_fresh_prefers_unseen():
    candidates = _places(12)
    seen = [f"p-{i}" for i in range(4)]
    chosen = select_fresh(candidates, seen, count=5, min_unseen=8)
    assert [p.id for p in chosen] == ["p-4", "p-5", "p-6", "p-7", "p-8"]


def test_select_fresh_falls_back_when_unseen_pool_is_small():
    candidates = _places(10)
    seen = [f"p-{i}" for i in range(5)]
    chosen = select_fresh(candidates, seen, count=5, min_unseen=8)
    assert [p.id for p in chosen] == ["p-0", "p-1", "p-2", "p-3", "p-4"]


def test_select_fresh_never_starves():
    candidates = _places(6)
    seen = [p.id for p in candidates]
    assert len(select_fresh(candidates, seen, count=4)) == 4
