"""Directed block relations with a bounded-staleness read cache."""

from __future__ import annotations

import asyncio
import time
from typing import FrozenSet, List, Optional

from dmengine.domain.common.errors import PermissionDenied, store_errors
from dmengine.domain.common.events import EventBus, EventKind
from dmengine.domain.social.cache import Clock, RelationCache
from dmengine.domain.social.models import BlockRelation, utcnow
from dmengine.infra import collections, rules
from dmengine.infra.store import DocumentExists, DocumentStore
from dmengine.obs import metrics as obs_metrics
from dmengine.obs.logging import get_logger

logger = get_logger(__name__)


def guard_not_self(actor_id: str, target_id: str) -> None:
	if str(actor_id) == str(target_id):
		raise PermissionDenied(PermissionDenied.SELF_ACTION)


class BlockRegistry:
	"""Answers "has A blocked B" and owns block / unblock for the acting user."""

	def __init__(
		self,
		store: DocumentStore,
		*,
		cache_ttl: float,
		enforce_rules: bool = True,
		bus: Optional[EventBus] = None,
		clock: Clock = time.monotonic,
	) -> None:
		self._store = store
		self._enforce_rules = enforce_rules
		self._bus = bus
		self._cache: RelationCache[str, FrozenSet[str]] = RelationCache("blocks", ttl_seconds=cache_ttl, clock=clock)

	async def _load(self, owner_id: str) -> FrozenSet[str]:
		with store_errors(denied=PermissionDenied.NOT_OWNER):
			snapshots = await self._store.query(collections.blocked(owner_id))
		return frozenset(snapshot.doc_id for snapshot in snapshots)

	async def blocked_by(self, owner_id: str) -> FrozenSet[str]:
		"""Ids `owner_id` has blocked."""
		return await self._cache.get_or_load(owner_id, lambda: self._load(owner_id))

	async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
		return blocked_id in await self.blocked_by(blocker_id)

	async def blocked_either_way(self, user_a: str, user_b: str) -> bool:
		a_blocks, b_blocks = await asyncio.gather(
			self.is_blocked(user_a, user_b),
			self.is_blocked(user_b, user_a),
		)
		return a_blocks or b_blocks

	async def block(self, actor_id: str, target_id: str) -> BlockRelation:
		guard_not_self(actor_id, target_id)
		relation = BlockRelation(blocker_id=actor_id, blocked_id=target_id, created_at=utcnow())
		store = rules.scoped(self._store, actor_id, enforce=self._enforce_rules)
		collection = collections.blocked(actor_id)
		try:
			with store_errors(denied=PermissionDenied.NOT_OWNER):
				try:
					await store.create(collection, target_id, relation.to_document())
					created = True
				except DocumentExists:
					snapshot = await store.get(collection, target_id)
					relation = BlockRelation.from_document(snapshot.data)
					created = False
		finally:
			self._cache.invalidate(actor_id)
		if created:
			obs_metrics.inc_relation_mutation("block", "add")
			logger.info("block_added", extra={"blocker_id": actor_id, "blocked_id": target_id})
			self._publish(actor_id, target_id, blocked=True)
		return relation

	async def unblock(self, actor_id: str, target_id: str) -> bool:
		guard_not_self(actor_id, target_id)
		store = rules.scoped(self._store, actor_id, enforce=self._enforce_rules)
		collection = collections.blocked(actor_id)
		try:
			with store_errors(denied=PermissionDenied.NOT_OWNER):
				existed = await store.exists(collection, target_id)
				if existed:
					await store.delete(collection, target_id)
		finally:
			self._cache.invalidate(actor_id)
		if existed:
			obs_metrics.inc_relation_mutation("block", "remove")
			logger.info("block_removed", extra={"blocker_id": actor_id, "blocked_id": target_id})
			self._publish(actor_id, target_id, blocked=False)
		return existed

	async def list_blocked(self, owner_id: str) -> List[BlockRelation]:
		with store_errors(denied=PermissionDenied.NOT_OWNER):
			snapshots = await self._store.query(collections.blocked(owner_id))
		relations = [BlockRelation.from_document(snapshot.data) for snapshot in snapshots]
		relations.sort(key=lambda rel: rel.created_at, reverse=True)
		return relations

	def invalidate(self, owner_id: str) -> None:
		self._cache.invalidate(owner_id)

	def _publish(self, actor_id: str, target_id: str, *, blocked: bool) -> None:
		if self._bus is None:
			return
		self._bus.emit(
			EventKind.BLOCK_CHANGED,
			actor_id,
			{"target_id": target_id, "blocked": blocked},
			audience=(actor_id,),
		)

