import asyncio

import pytest

from dmengine.domain.common.errors import PermissionDenied, Transient
from dmengine.domain.common.events import EventBus, EventKind
from dmengine.domain.social.follows import FollowOracle
from dmengine.infra.store import StoreUnavailable, WriteBatch


class FlakyStore:
    """Delegates to a real store but fails the next N commits."""

    def __init__(self, inner, failures=0):
        self._inner = inner
        self.failures = failures

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def create(self, collection, doc_id, data):
        snapshots = await self.commit(WriteBatch().create(collection, doc_id, data))
        return snapshots[0]

    async def delete(self, collection, doc_id):
        await self.commit(WriteBatch().delete(collection, doc_id))

    async def commit(self, batch):
        if self.failures > 0:
            self.failures -= 1
            raise StoreUnavailable("boom", reason="network")
        return await self._inner.commit(batch)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def oracle(store, clock, bus):
    return FollowOracle(store, cache_ttl=3, bus=bus, clock=clock)


@pytest.mark.asyncio
async def test_mutual_requires_both_directions(oracle):
    await oracle.follow("alice", "bob")
    assert await oracle.follows("alice", "bob")
    assert not await oracle.is_mutual("alice", "bob")
    await oracle.follow("bob", "alice")
    assert await oracle.is_mutual("alice", "bob")
    assert await oracle.is_mutual("bob", "alice")


@pytest.mark.asyncio
async def test_follow_and_unfollow_report_changes(oracle):
    assert await oracle.follow("alice", "bob") is True
    assert await oracle.follow("alice", "bob") is False
    assert await oracle.unfollow("alice", "bob") is True
    assert await oracle.unfollow("alice", "bob") is False
    assert not await oracle.follows("alice", "bob")


@pytest.mark.asyncio
async def test_failed_follow_reverts_cached_edge(store, clock):
    flaky = FlakyStore(store, failures=1)
    oracle = FollowOracle(flaky, cache_ttl=3, enforce_rules=False, clock=clock)
    assert not await oracle.follows("alice", "bob")
    with pytest.raises(Transient):
        await oracle.follow("alice", "bob")
    assert not await oracle.follows("alice", "bob")
    assert await oracle.follow("alice", "bob") is True
    assert await oracle.follows("alice", "bob")


@pytest.mark.asyncio
async def test_failed_unfollow_restores_edge(store, clock):
    flaky = FlakyStore(store)
    oracle = FollowOracle(flaky, cache_ttl=3, enforce_rules=False, clock=clock)
    await oracle.follow("alice", "bob")
    flaky.failures = 1
    with pytest.raises(Transient):
        await oracle.unfollow("alice", "bob")
    assert await oracle.follows("alice", "bob")


@pytest.mark.asyncio
async def test_rapid_toggles_settle_on_last_intent(oracle):
    ops = [oracle.follow, oracle.unfollow, oracle.follow, oracle.unfollow, oracle.follow]
    await asyncio.gather(*(op("alice", "bob") for op in ops))
    assert await oracle.follows("alice", "bob")
    assert await oracle.following("alice") == ["bob"]


@pytest.mark.asyncio
async def test_followers_and_following(oracle):
    await oracle.follow("alice", "carol")
    await oracle.follow("bob", "carol")
    await oracle.follow("carol", "alice")
    assert await oracle.followers("carol") == ["alice", "bob"]
    assert await oracle.following("carol") == ["alice"]


@pytest.mark.asyncio
async def test_follow_publishes_to_both_users(oracle, bus):
    sub = bus.subscribe([EventKind.FOLLOW_CHANGED], user_id="bob")
    await oracle.follow("alice", "bob")
    event = sub.get_nowait()
    assert event.payload == {"target_id": "bob", "following": True}


@pytest.mark.asyncio
async def test_cannot_follow_self(oracle):
    with pytest.raises(PermissionDenied):
        await oracle.follow("alice", "alice")


@pytest.mark.asyncio
async def test_pair_locks_are_dropped_after_mutations(oracle):
    await asyncio.gather(*(oracle.follow("alice", f"user-{i}") for i in range(50)))
    await oracle.unfollow("alice", "user-0")
    assert len(oracle._pair_locks) == 0


@pytest.mark.asyncio
async def test_failed_follow_is_pending_then_cleared(store, clock):
    flaky = FlakyStore(store, failures=1)
    oracle = FollowOracle(flaky, cache_ttl=3, enforce_rules=False, clock=clock)
    with pytest.raises(Transient):
        await oracle.follow("alice", "bob")
    assert await oracle.follow_state("alice", "bob") == (False, False)
    await oracle.follow("alice", "bob")
    assert await oracle.follow_state("alice", "bob") == (True, False)
