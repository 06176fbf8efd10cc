import pytest

from dmengine.domain.common.errors import PermissionDenied
from dmengine.domain.common.events import EventBus, EventKind
from dmengine.domain.social.blocks import BlockRegistry, guard_not_self
from dmengine.infra import collections


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def registry(store, clock, bus):
    return BlockRegistry(store, cache_ttl=3, bus=bus, clock=clock)


@pytest.mark.asyncio
async def test_block_is_directed_but_checked_both_ways(registry):
    await registry.block("alice", "bob")
    assert await registry.is_blocked("alice", "bob")
    assert not await registry.is_blocked("bob", "alice")
    assert await registry.blocked_either_way("alice", "bob")
    assert await registry.blocked_either_way("bob", "alice")
    assert not await registry.blocked_either_way("alice", "carol")


@pytest.mark.asyncio
async def test_block_is_idempotent(registry, store):
    first = await registry.block("alice", "bob")
    second = await registry.block("alice", "bob")
    assert first.created_at == second.created_at
    assert len(await store.query(collections.blocked("alice"))) == 1


@pytest.mark.asyncio
async def test_local_mutation_invalidates_cache(registry):
    assert not await registry.is_blocked("alice", "bob")
    await registry.block("alice", "bob")
    assert await registry.is_blocked("alice", "bob")
    assert await registry.unblock("alice", "bob") is True
    assert not await registry.is_blocked("alice", "bob")
    assert await registry.unblock("alice", "bob") is False


@pytest.mark.asyncio
async def test_remote_block_visible_after_ttl(store, clock):
    local = BlockRegistry(store, cache_ttl=3, clock=clock)
    remote = BlockRegistry(store, cache_ttl=3, clock=clock)
    assert not await local.is_blocked("bob", "alice")
    await remote.block("bob", "alice")
    assert not await local.is_blocked("bob", "alice")
    clock.advance(3.01)
    assert await local.is_blocked("bob", "alice")


@pytest.mark.asyncio
async def test_list_blocked_newest_first(registry):
    await registry.block("alice", "bob")
    await registry.block("alice", "carol")
    relations = await registry.list_blocked("alice")
    assert {rel.blocked_id for rel in relations} == {"bob", "carol"}
    assert relations[0].created_at >= relations[1].created_at


@pytest.mark.asyncio
async def test_block_publishes_to_actor_only(registry, bus):
    sub = bus.subscribe([EventKind.BLOCK_CHANGED])
    await registry.block("alice", "bob")
    event = sub.get_nowait()
    assert event.subject_id == "alice"
    assert event.payload == {"target_id": "bob", "blocked": True}
    assert event.audience == frozenset({"alice"})


@pytest.mark.asyncio
async def test_repeat_block_does_not_republish(registry, bus):
    await registry.block("alice", "bob")
    sub = bus.subscribe()
    await registry.block("alice", "bob")
    assert sub.pending() == 0


@pytest.mark.asyncio
async def test_cannot_block_self(registry):
    with pytest.raises(PermissionDenied) as exc_info:
        await registry.block("alice", "alice")
    assert exc_info.value.reason == PermissionDenied.SELF_ACTION


def test_guard_not_self():
    with pytest.raises(PermissionDenied):
        guard_not_self("abc", "abc")
    guard_not_self("abc", "def")
