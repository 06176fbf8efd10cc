"""Ownership rules enforced at the store boundary.

Every write issued on behalf of a user passes through `AuthorizedStore`, which
re-checks ownership independently of the domain layer: a user may only write
their own block list, their own follow edges and privacy record, reports filed
in their own name, and only conversations and messages they take part in.
Reads pass through unchanged.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from dmengine.infra import collections
from dmengine.infra.store import (
	DocumentNotFound,
	DocumentStore,
	FieldFilter,
	Snapshot,
	StorePermissionDenied,
	WriteBatch,
	WriteOp,
)
from dmengine.obs.logging import get_logger

logger = get_logger(__name__)

# Fields a participant other than the author may never rewrite on a message.
_IMMUTABLE_MESSAGE_FIELDS = ("sender_id", "text", "created_at")


class AuthorizedStore:
	"""A `DocumentStore` view scoped to one caller."""

	def __init__(self, inner: DocumentStore, caller_id: str) -> None:
		self._inner = inner
		self.caller_id = caller_id

	async def exists(self, collection: str, doc_id: str) -> bool:
		return await self._inner.exists(collection, doc_id)

	async def get(self, collection: str, doc_id: str) -> Snapshot:
		return await self._inner.get(collection, doc_id)

	async def query(self, collection: str, *filters: FieldFilter, limit: int | None = None) -> List[Snapshot]:
		return await self._inner.query(collection, *filters, limit=limit)

	async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Snapshot:
		snapshots = await self.commit(WriteBatch().create(collection, doc_id, data))
		return snapshots[0]

	async def conditional_update(
		self,
		collection: str,
		doc_id: str,
		expected_version: int,
		data: Dict[str, Any],
	) -> Snapshot:
		batch = WriteBatch().replace(collection, doc_id, data, expected_version=expected_version)
		snapshots = await self.commit(batch)
		return snapshots[0]

	async def delete(self, collection: str, doc_id: str) -> None:
		await self.commit(WriteBatch().delete(collection, doc_id))

	async def commit(self, batch: WriteBatch) -> List[Snapshot]:
		for op in batch:
			await self._authorize(op, batch)
		return await self._inner.commit(batch)

	def _deny(self, op: WriteOp, rule: str) -> StorePermissionDenied:
		logger.warning(
			"store_write_denied",
			extra={"collection": op.collection, "doc_id": op.doc_id, "rule": rule, "caller": self.caller_id},
		)
		return StorePermissionDenied(rule, collection=op.collection, doc_id=op.doc_id)

	async def _authorize(self, op: WriteOp, batch: WriteBatch) -> None:
		owner = collections.blocked_owner(op.collection)
		if owner is not None:
			if owner != self.caller_id:
				raise self._deny(op, "block_list_owner")
			return
		if op.collection == collections.FOLLOWS:
			if not op.doc_id.startswith(f"{self.caller_id}:"):
				raise self._deny(op, "follow_owner")
			if op.data is not None and op.data.get("follower_id") != self.caller_id:
				raise self._deny(op, "follow_owner")
			return
		if op.collection == collections.PRIVACY:
			if op.doc_id != self.caller_id:
				raise self._deny(op, "privacy_owner")
			return
		if op.collection == collections.REPORTS:
			# Reporters file; moderation tooling reviews with an unscoped store.
			if op.kind != "create":
				raise self._deny(op, "report_immutable")
			if (op.data or {}).get("reporter_id") != self.caller_id:
				raise self._deny(op, "report_owner")
			return
		if op.collection == collections.CONVERSATIONS:
			await self._authorize_conversation(op)
			return
		parent = collections.messages_parent(op.collection)
		if parent is not None:
			await self._authorize_message(op, parent, batch)
			return
		raise self._deny(op, "unknown_collection")

	async def _authorize_conversation(self, op: WriteOp) -> None:
		if op.kind == "delete":
			raise self._deny(op, "conversation_delete")
		participants = list((op.data or {}).get("participant_ids") or [])
		if self.caller_id not in participants:
			raise self._deny(op, "conversation_participant")
		if op.kind == "replace":
			stored = await self._load(op.collection, op.doc_id)
			if stored is not None and list(stored.data.get("participant_ids") or []) != participants:
				raise self._deny(op, "conversation_participants_changed")

	async def _authorize_message(self, op: WriteOp, conversation_id: str, batch: WriteBatch) -> None:
		if op.kind == "delete":
			raise self._deny(op, "message_delete")
		participants = await self._participants(conversation_id, batch)
		if self.caller_id not in participants:
			raise self._deny(op, "message_participant")
		data = op.data or {}
		if op.kind == "create":
			if data.get("sender_id") != self.caller_id:
				raise self._deny(op, "message_author")
			return
		stored = await self._load(op.collection, op.doc_id)
		if stored is None:
			return
		for name in _IMMUTABLE_MESSAGE_FIELDS:
			if stored.data.get(name) != data.get(name):
				raise self._deny(op, "message_immutable_field")

	async def _participants(self, conversation_id: str, batch: WriteBatch) -> List[str]:
		for op in batch:
			if op.collection == collections.CONVERSATIONS and op.doc_id == conversation_id and op.data:
				return list(op.data.get("participant_ids") or [])
		stored = await self._load(collections.CONVERSATIONS, conversation_id)
		if stored is None:
			return []
		return list(stored.data.get("participant_ids") or [])

	async def _load(self, collection: str, doc_id: str) -> Optional[Snapshot]:
		try:
			return await self._inner.get(collection, doc_id)
		except DocumentNotFound:
			return None


def scoped(store: DocumentStore, caller_id: str, *, enforce: bool = True) -> DocumentStore:
	"""Return `store` wrapped in caller-scoped rules when enforcement is on."""
	if not enforce:
		return store
	return AuthorizedStore(store, caller_id)
