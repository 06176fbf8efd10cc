import asyncio

import pytest

from dmengine.domain.social.cache import KeyedLocks, RelationCache


@pytest.mark.asyncio
async def test_entries_expire_after_ttl(clock):
    cache = RelationCache("test", ttl_seconds=3, clock=clock)
    loads = []

    async def loader():
        loads.append(clock())
        return len(loads)

    assert await cache.get_or_load("k", loader) == 1
    clock.advance(2.9)
    assert await cache.get_or_load("k", loader) == 1
    clock.advance(0.2)
    assert await cache.get_or_load("k", loader) == 2


@pytest.mark.asyncio
async def test_invalidate_forces_reload(clock):
    cache = RelationCache("test", ttl_seconds=5, clock=clock)
    values = iter([False, True])

    async def loader():
        return next(values)

    assert await cache.get_or_load("edge", loader) is False
    cache.invalidate("edge")
    assert await cache.get_or_load("edge", loader) is True


@pytest.mark.asyncio
async def test_concurrent_misses_share_one_load(clock):
    cache = RelationCache("test", ttl_seconds=5, clock=clock)
    calls = {"n": 0}
    gate = asyncio.Event()

    async def loader():
        calls["n"] += 1
        await gate.wait()
        return "value"

    tasks = [asyncio.create_task(cache.get_or_load("k", loader)) for _ in range(5)]
    await asyncio.sleep(0)
    gate.set()
    assert await asyncio.gather(*tasks) == ["value"] * 5
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_write_during_load_wins_over_loaded_value(clock):
    cache = RelationCache("test", ttl_seconds=5, clock=clock)
    gate = asyncio.Event()

    async def stale_loader():
        await gate.wait()
        return "stale"

    task = asyncio.create_task(cache.get_or_load("k", stale_loader))
    await asyncio.sleep(0)
    cache.put("k", "fresh")
    gate.set()
    assert await task == "stale"
    assert cache.peek("k") == "fresh"


def test_zero_ttl_disables_caching(clock):
    cache = RelationCache("test", ttl_seconds=0, clock=clock)
    cache.put("k", "v")
    assert cache.peek("k") is None
    assert len(cache) == 0


@pytest.mark.parametrize("ttl", [-1, 10.5, 60])
def test_ttl_is_bounded(ttl):
    with pytest.raises(ValueError):
        RelationCache("test", ttl_seconds=ttl)


@pytest.mark.asyncio
async def test_bookkeeping_does_not_grow_with_distinct_keys(clock):
    cache = RelationCache("test", ttl_seconds=3, clock=clock)

    async def loader():
        return True

    for i in range(1000):
        await cache.get_or_load(f"user-{i}", loader)
    assert len(cache) == 1000
    assert cache.tracked_keys() == 0

    clock.advance(60)
    await cache.get_or_load("fresh", loader)
    assert len(cache) == 1
    assert cache.tracked_keys() == 0


@pytest.mark.asyncio
async def test_keyed_lock_is_released_after_last_holder():
    locks = KeyedLocks()
    order = []
    gate = asyncio.Event()

    async def worker(name):
        async with locks.hold("k"):
            order.append(name)
            await gate.wait()

    tasks = [asyncio.create_task(worker(n)) for n in ("a", "b", "c")]
    await asyncio.sleep(0)
    assert len(locks) == 1
    gate.set()
    await asyncio.gather(*tasks)
    assert order == ["a", "b", "c"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_leak_lock():
    locks = KeyedLocks()
    gate = asyncio.Event()

    async def holder():
        async with locks.hold("k"):
            await gate.wait()

    async def waiter():
        async with locks.hold("k"):
            pass

    first = asyncio.create_task(holder())
    await asyncio.sleep(0)
    second = asyncio.create_task(waiter())
    await asyncio.sleep(0)
    second.cancel()
    with pytest.raises(asyncio.CancelledError):
        await second
    gate.set()
    await first
    assert len(locks) == 0
