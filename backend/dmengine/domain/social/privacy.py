"""Per-user inbound messaging visibility."""

from __future__ import annotations

import time

from dmengine.domain.common.errors import NotFound, PermissionDenied, store_errors
from dmengine.domain.social.cache import Clock, RelationCache
from dmengine.domain.social.models import DEFAULT_VISIBILITY, PrivacySetting, Visibility, utcnow
from dmengine.infra import collections, rules
from dmengine.infra.store import DocumentNotFound, DocumentStore
from dmengine.obs import metrics as obs_metrics
from dmengine.obs.logging import get_logger

logger = get_logger(__name__)


class PrivacyPolicy:
	def __init__(
		self,
		store: DocumentStore,
		*,
		cache_ttl: float,
		enforce_rules: bool = True,
		clock: Clock = time.monotonic,
	) -> None:
		self._store = store
		self._enforce_rules = enforce_rules
		self._cache: RelationCache[str, Visibility] = RelationCache("privacy", ttl_seconds=cache_ttl, clock=clock)

	async def _load(self, user_id: str) -> Visibility:
		try:
			with store_errors():
				snapshot = await self._store.get(collections.PRIVACY, user_id)
		except NotFound:
			return DEFAULT_VISIBILITY
		return PrivacySetting.from_document(snapshot.data).visibility

	async def visibility(self, user_id: str) -> Visibility:
		return await self._cache.get_or_load(user_id, lambda: self._load(user_id))

	async def accepts_everyone(self, user_id: str) -> bool:
		return await self.visibility(user_id) is Visibility.EVERYONE

	async def set_visibility(self, actor_id: str, visibility: Visibility) -> PrivacySetting:
		setting = PrivacySetting(user_id=actor_id, visibility=Visibility(visibility), updated_at=utcnow())
		store = rules.scoped(self._store, actor_id, enforce=self._enforce_rules)
		try:
			with store_errors(denied=PermissionDenied.NOT_OWNER):
				await self._write(store, setting)
		except BaseException:
			self._cache.invalidate(actor_id)
			raise
		self._cache.put(actor_id, setting.visibility)
		obs_metrics.inc_relation_mutation("privacy", setting.visibility.value)
		logger.info("privacy_updated", extra={"visibility": setting.visibility.value})
		return setting

	@staticmethod
	async def _write(store: DocumentStore, setting: PrivacySetting) -> None:
		try:
			current = await store.get(collections.PRIVACY, setting.user_id)
		except DocumentNotFound:
			await store.create(collections.PRIVACY, setting.user_id, setting.to_document())
			return
		await store.conditional_update(collections.PRIVACY, setting.user_id, current.version, setting.to_document())
