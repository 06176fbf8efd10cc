"""Wires the engine's components together from settings."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from dmengine.domain.chat.gate import MessageGate
from dmengine.domain.chat.permissions import PermissionResolver
from dmengine.domain.chat.repo import ConversationRepository
from dmengine.domain.chat.service import MessagingService
from dmengine.domain.chat.state import ConversationStateMachine
from dmengine.domain.common.events import EventBus
from dmengine.domain.social.blocks import BlockRegistry
from dmengine.domain.social.cache import Clock
from dmengine.domain.social.follows import FollowOracle
from dmengine.domain.social.privacy import PrivacyPolicy
from dmengine.domain.social.reports import ReportLedger
from dmengine.infra.redis import redis_client
from dmengine.infra.retry import RetryPolicy
from dmengine.infra.store import DocumentStore, build_store
from dmengine.settings import Settings, settings


@dataclass(slots=True)
class Engine:
	store: DocumentStore
	bus: EventBus
	blocks: BlockRegistry
	follows: FollowOracle
	privacy: PrivacyPolicy
	reports: ReportLedger
	conversations: ConversationRepository
	resolver: PermissionResolver
	state: ConversationStateMachine
	gate: MessageGate
	retry: RetryPolicy
	messaging: MessagingService


def build_engine(
	*,
	store: Optional[DocumentStore] = None,
	cfg: Settings = settings,
	retry: Optional[RetryPolicy] = None,
	clock: Clock = time.monotonic,
) -> Engine:
	if store is None:
		store = build_store(cfg.store_backend, redis_client)
	enforce = cfg.store_rules_enabled
	ttl = cfg.relation_cache_ttl_seconds
	bus = EventBus(queue_size=cfg.event_queue_size)
	blocks = BlockRegistry(store, cache_ttl=ttl, enforce_rules=enforce, bus=bus, clock=clock)
	follows = FollowOracle(store, cache_ttl=ttl, enforce_rules=enforce, bus=bus, clock=clock)
	privacy = PrivacyPolicy(store, cache_ttl=ttl, enforce_rules=enforce, clock=clock)
	reports = ReportLedger(store, enforce_rules=enforce)
	conversations = ConversationRepository(store, enforce_rules=enforce)
	resolver = PermissionResolver(blocks, follows, privacy, conversations)
	state = ConversationStateMachine()
	gate = MessageGate(state, pending_limit=cfg.pending_message_limit)
	retry = retry or RetryPolicy.from_settings(cfg)
	messaging = MessagingService(
		blocks=blocks,
		follows=follows,
		privacy=privacy,
		reports=reports,
		conversations=conversations,
		resolver=resolver,
		state=state,
		gate=gate,
		bus=bus,
		retry=retry,
		max_length=cfg.message_max_length,
	)
	return Engine(
		store=store,
		bus=bus,
		blocks=blocks,
		follows=follows,
		privacy=privacy,
		reports=reports,
		conversations=conversations,
		resolver=resolver,
		state=state,
		gate=gate,
		retry=retry,
		messaging=messaging,
	)


_engine: Engine | None = None


def configure(engine: Engine | None) -> None:
	global _engine
	_engine = engine


def get_engine() -> Engine:
	global _engine
	if _engine is None:
		_engine = build_engine()
	return _engine


def get_messaging() -> MessagingService:
	return get_engine().messaging
