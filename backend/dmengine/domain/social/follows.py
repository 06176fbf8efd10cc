"""Directed follow edges, mutual-follow checks and follow/unfollow."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from dmengine.domain.common.errors import PermissionDenied, store_errors
from dmengine.domain.common.events import EventBus, EventKind
from dmengine.domain.common.optimistic import OptimisticChange
from dmengine.domain.social.blocks import guard_not_self
from dmengine.domain.social.cache import Clock, KeyedLocks, RelationCache
from dmengine.domain.social.models import FollowRelation, utcnow
from dmengine.infra import collections, rules
from dmengine.infra.store import DocumentExists, DocumentStore, where
from dmengine.obs import metrics as obs_metrics
from dmengine.obs.logging import get_logger

logger = get_logger(__name__)

Edge = Tuple[str, str]


class FollowOracle:
	"""Follow relation reads (cached) and owner-only follow mutations.

	Mutations for the same (follower, followee) pair run one at a time so a
	rapid follow/unfollow toggle cannot interleave its store writes. The
	relation cache read by access decisions only ever holds stored edges: it is
	refreshed after a write commits and dropped if the write fails. The
	tentative flip shown to the acting user lives in a separate overlay.
	"""

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
		self._cache: RelationCache[Edge, bool] = RelationCache("follows", ttl_seconds=cache_ttl, clock=clock)
		self._pair_locks: KeyedLocks[Edge] = KeyedLocks()
		self._displayed: Dict[Edge, bool] = {}

	async def _load(self, follower_id: str, followee_id: str) -> bool:
		with store_errors():
			return await self._store.exists(collections.FOLLOWS, collections.follow_doc_id(follower_id, followee_id))

	async def follows(self, follower_id: str, followee_id: str) -> bool:
		edge = (follower_id, followee_id)
		return await self._cache.get_or_load(edge, lambda: self._load(follower_id, followee_id))

	async def is_mutual(self, user_a: str, user_b: str) -> bool:
		forward, backward = await asyncio.gather(
			self.follows(user_a, user_b),
			self.follows(user_b, user_a),
		)
		return forward and backward

	async def follow_state(self, follower_id: str, followee_id: str) -> Tuple[bool, bool]:
		"""`(following, pending)` as the follower should see it, including an in-flight toggle."""
		edge = (follower_id, followee_id)
		if edge in self._displayed:
			return self._displayed[edge], True
		return await self.follows(follower_id, followee_id), False

	async def follow(self, actor_id: str, target_id: str) -> bool:
		"""Make `actor_id` follow `target_id`; returns True when a new edge was written."""
		guard_not_self(actor_id, target_id)
		created = await self._mutate(
			(actor_id, target_id),
			True,
			label="follow",
			write=lambda: self._write_follow(actor_id, target_id),
		)
		if created:
			obs_metrics.inc_relation_mutation("follow", "add")
			logger.info("follow_added", extra={"follower_id": actor_id, "followee_id": target_id})
			self._publish(actor_id, target_id, following=True)
		return created

	async def unfollow(self, actor_id: str, target_id: str) -> bool:
		"""Remove the edge; returns True when an edge existed."""
		guard_not_self(actor_id, target_id)
		existed = await self._mutate(
			(actor_id, target_id),
			False,
			label="unfollow",
			write=lambda: self._write_unfollow(actor_id, target_id),
		)
		if existed:
			obs_metrics.inc_relation_mutation("follow", "remove")
			logger.info("follow_removed", extra={"follower_id": actor_id, "followee_id": target_id})
			self._publish(actor_id, target_id, following=False)
		return existed

	async def _mutate(
		self,
		edge: Edge,
		value: bool,
		*,
		label: str,
		write: Callable[[], Awaitable[bool]],
	) -> bool:
		async with self._pair_locks.hold(edge):
			change = OptimisticChange(
				apply=lambda: self._displayed.__setitem__(edge, value),
				revert=lambda: self._displayed.pop(edge, None),
				label=label,
			)
			try:
				result = await change.run(write)
			except BaseException:
				# The write may or may not have landed; reload on next read.
				self._cache.invalidate(edge)
				raise
			self._displayed.pop(edge, None)
			self._cache.put(edge, value)
			return result

	async def _write_follow(self, actor_id: str, target_id: str) -> bool:
		store = rules.scoped(self._store, actor_id, enforce=self._enforce_rules)
		relation = FollowRelation(follower_id=actor_id, followee_id=target_id, created_at=utcnow())
		with store_errors(denied=PermissionDenied.NOT_OWNER):
			try:
				await store.create(
					collections.FOLLOWS,
					collections.follow_doc_id(actor_id, target_id),
					relation.to_document(),
				)
			except DocumentExists:
				return False
		return True

	async def _write_unfollow(self, actor_id: str, target_id: str) -> bool:
		store = rules.scoped(self._store, actor_id, enforce=self._enforce_rules)
		doc_id = collections.follow_doc_id(actor_id, target_id)
		with store_errors(denied=PermissionDenied.NOT_OWNER):
			if not await store.exists(collections.FOLLOWS, doc_id):
				return False
			await store.delete(collections.FOLLOWS, doc_id)
		return True

	async def followers(self, user_id: str) -> List[str]:
		with store_errors():
			snapshots = await self._store.query(collections.FOLLOWS, where("followee_id", "eq", user_id))
		return sorted(str(snapshot.data["follower_id"]) for snapshot in snapshots)

	async def following(self, user_id: str) -> List[str]:
		with store_errors():
			snapshots = await self._store.query(collections.FOLLOWS, where("follower_id", "eq", user_id))
		return sorted(str(snapshot.data["followee_id"]) for snapshot in snapshots)

	def invalidate(self, follower_id: str, followee_id: str) -> None:
		self._cache.invalidate((follower_id, followee_id))

	def _publish(self, actor_id: str, target_id: str, *, following: bool) -> None:
		if self._bus is None:
			return
		self._bus.emit(
			EventKind.FOLLOW_CHANGED,
			actor_id,
			{"target_id": target_id, "following": following},
			audience=(actor_id, target_id),
		)
