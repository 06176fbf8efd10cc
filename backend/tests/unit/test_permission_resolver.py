import pytest

from dmengine.domain.chat.models import ConversationStatus
from dmengine.domain.chat.permissions import AccessOutcome
from dmengine.domain.common.errors import PermissionDenied
from dmengine.domain.social.models import Visibility


async def _followers_only(engine, *users):
    for user in users:
        await engine.privacy.set_visibility(user, Visibility.FOLLOWERS_ONLY)


@pytest.mark.asyncio
async def test_open_target_allows_direct_message(engine):
    decision = await engine.resolver.resolve("alice", "bob")
    assert decision.outcome is AccessOutcome.ALLOWED


@pytest.mark.asyncio
async def test_block_in_either_direction_denies(engine):
    await engine.blocks.block("bob", "alice")
    for initiator, target in (("alice", "bob"), ("bob", "alice")):
        decision = await engine.resolver.resolve(initiator, target)
        assert decision.is_denied
        assert decision.reason == PermissionDenied.BLOCKED


@pytest.mark.asyncio
async def test_block_wins_over_mutual_follow(engine):
    await engine.follows.follow("alice", "bob")
    await engine.follows.follow("bob", "alice")
    await engine.blocks.block("alice", "bob")
    decision = await engine.resolver.resolve("alice", "bob")
    assert decision.reason == PermissionDenied.BLOCKED


@pytest.mark.asyncio
async def test_self_conversation_denied(engine):
    decision = await engine.resolver.resolve("alice", "alice")
    assert decision.reason == PermissionDenied.SELF_CONVERSATION


@pytest.mark.asyncio
async def test_followers_only_without_mutual_is_request(engine):
    await _followers_only(engine, "bob")
    await engine.follows.follow("alice", "bob")
    decision = await engine.resolver.resolve("alice", "bob")
    assert decision.outcome is AccessOutcome.ALLOWED_AS_REQUEST


@pytest.mark.asyncio
async def test_mutual_follow_opens_followers_only_target(engine):
    await _followers_only(engine, "bob")
    await engine.follows.follow("alice", "bob")
    await engine.follows.follow("bob", "alice")
    decision = await engine.resolver.resolve("alice", "bob")
    assert decision.outcome is AccessOutcome.ALLOWED


@pytest.mark.asyncio
async def test_accepted_conversation_keeps_access_open(engine):
    await _followers_only(engine, "bob")
    await engine.conversations.get_or_create(
        "alice", "bob", status=ConversationStatus.ACCEPTED, requester_id=None, actor_id="alice"
    )
    decision = await engine.resolver.resolve("alice", "bob")
    assert decision.outcome is AccessOutcome.ALLOWED


@pytest.mark.asyncio
async def test_declined_request_denies_even_open_target(engine, service):
    await _followers_only(engine, "bob")
    conversation, _ = await service.start_conversation("alice", "bob")
    await service.decline("bob", conversation.id)
    await engine.privacy.set_visibility("bob", Visibility.EVERYONE)
    decision = await engine.resolver.resolve("alice", "bob")
    assert decision.reason == PermissionDenied.DECLINED_PREVIOUSLY


@pytest.mark.asyncio
async def test_resolution_never_writes(engine, store):
    before = await store.query("conversations")
    for _ in range(3):
        await engine.resolver.resolve("alice", "bob")
    assert await store.query("conversations") == before
    assert await store.query("privacy") == []
