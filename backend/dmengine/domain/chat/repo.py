"""Persistence for conversations and their messages.

All writes are conditional on the version the caller read. A message and the
conversation counters it changes are committed in one batch, so a cancelled or
failed send leaves neither behind.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Tuple

from dmengine.domain.chat.models import Conversation, ConversationKey, ConversationStatus, Message
from dmengine.domain.common.errors import Conflict, NotFound, store_errors
from dmengine.infra import collections, rules
from dmengine.infra.store import DocumentExists, DocumentStore, WriteBatch, where
from dmengine.obs import metrics as obs_metrics
from dmengine.obs.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


class ConversationRepository:
	def __init__(self, store: DocumentStore, *, enforce_rules: bool = True) -> None:
		self._store = store
		self._enforce_rules = enforce_rules

	def _writer(self, actor_id: str) -> DocumentStore:
		return rules.scoped(self._store, actor_id, enforce=self._enforce_rules)

	async def get(self, conversation_id: str) -> Conversation:
		with store_errors(missing=NotFound.CONVERSATION):
			snapshot = await self._store.get(collections.CONVERSATIONS, conversation_id)
		return Conversation.from_snapshot(snapshot)

	async def find(self, user_one: str, user_two: str) -> Optional[Conversation]:
		key = ConversationKey.from_participants(user_one, user_two)
		try:
			return await self.get(key.conversation_id)
		except NotFound:
			return None

	async def get_or_create(
		self,
		user_one: str,
		user_two: str,
		*,
		status: ConversationStatus,
		requester_id: Optional[str],
		actor_id: str,
	) -> Tuple[Conversation, bool]:
		"""Return the pair's conversation, creating it on first contact.

		Racing creators converge: a create that loses to another writer reads
		back and returns the winner's record.
		"""
		key = ConversationKey.from_participants(user_one, user_two)
		conversation_id = key.conversation_id
		with store_errors(missing=NotFound.CONVERSATION):
			if await self._store.exists(collections.CONVERSATIONS, conversation_id):
				snapshot = await self._store.get(collections.CONVERSATIONS, conversation_id)
				return Conversation.from_snapshot(snapshot), False
			fresh = Conversation.new(user_one, user_two, status=status, requester_id=requester_id)
			try:
				snapshot = await self._writer(actor_id).create(
					collections.CONVERSATIONS,
					conversation_id,
					fresh.to_document(),
				)
			except DocumentExists:
				snapshot = await self._store.get(collections.CONVERSATIONS, conversation_id)
				return Conversation.from_snapshot(snapshot), False
		obs_metrics.inc_conversation_created(status.value)
		logger.info(
			"conversation_created",
			extra={"conversation_id": conversation_id, "status": status.value, "requester_id": requester_id},
		)
		return Conversation.from_snapshot(snapshot), True

	async def save(self, current: Conversation, updated: Conversation, *, actor_id: str) -> Conversation:
		"""Replace the conversation iff it is still at `current.version`."""
		with store_errors(missing=NotFound.CONVERSATION):
			snapshot = await self._writer(actor_id).conditional_update(
				collections.CONVERSATIONS,
				current.id,
				current.version,
				updated.to_document(),
			)
		return Conversation.from_snapshot(snapshot)

	async def apply_message(
		self,
		current: Conversation,
		updated: Conversation,
		message: Message,
	) -> Tuple[Conversation, Message, bool]:
		"""Persist `message` and `updated` together.

		Returns (conversation, message, created). Replaying a message id that is
		already stored returns the stored message with created=False.
		"""
		batch = WriteBatch()
		batch.create(collections.messages(current.id), message.id, message.to_document())
		batch.replace(
			collections.CONVERSATIONS,
			current.id,
			updated.to_document(),
			expected_version=current.version,
		)
		try:
			with store_errors(missing=NotFound.CONVERSATION):
				try:
					snapshots = await self._writer(message.sender_id).commit(batch)
				except DocumentExists as exc:
					if exc.collection != collections.messages(current.id):
						raise
					return await self._replayed(current.id, message)
		except Conflict:
			logger.info("conversation_write_conflict", extra={"conversation_id": current.id})
			raise
		by_collection = {snapshot.collection: snapshot for snapshot in snapshots}
		stored_message = Message.from_snapshot(by_collection[collections.messages(current.id)])
		stored_conversation = Conversation.from_snapshot(by_collection[collections.CONVERSATIONS])
		return stored_conversation, stored_message, True

	async def _replayed(self, conversation_id: str, message: Message) -> Tuple[Conversation, Message, bool]:
		stored = await self.get_message(conversation_id, message.id)
		if stored.sender_id != message.sender_id:
			raise Conflict(Conflict.CONCURRENT_MODIFICATION)
		conversation = await self.get(conversation_id)
		logger.info("message_replayed", extra={"conversation_id": conversation_id, "message_id": message.id})
		return conversation, stored, False

	async def get_message(self, conversation_id: str, message_id: str) -> Message:
		with store_errors(missing=NotFound.MESSAGE):
			snapshot = await self._store.get(collections.messages(conversation_id), message_id)
		return Message.from_snapshot(snapshot)

	async def find_message(self, conversation_id: str, message_id: str) -> Optional[Message]:
		try:
			return await self.get_message(conversation_id, message_id)
		except NotFound:
			return None

	async def save_message(self, current: Message, updated: Message, *, actor_id: str) -> Message:
		with store_errors(missing=NotFound.MESSAGE):
			snapshot = await self._writer(actor_id).conditional_update(
				collections.messages(current.conversation_id),
				current.id,
				current.version,
				updated.to_document(),
			)
		return Message.from_snapshot(snapshot)

	async def list_messages(
		self,
		conversation_id: str,
		*,
		before: Optional[datetime] = None,
		limit: int = DEFAULT_PAGE_SIZE,
	) -> List[Message]:
		"""Newest `limit` messages older than `before`, oldest first."""
		limit = max(1, min(int(limit), MAX_PAGE_SIZE))
		with store_errors():
			snapshots = await self._store.query(collections.messages(conversation_id))
		messages = [Message.from_snapshot(snapshot) for snapshot in snapshots]
		if before is not None:
			messages = [message for message in messages if message.created_at < before]
		messages.sort(key=lambda message: (message.created_at, message.id))
		return messages[-limit:]

	async def list_for_user(
		self,
		user_id: str,
		*,
		include_archived: bool = False,
		include_hidden: bool = False,
	) -> List[Conversation]:
		with store_errors():
			snapshots = await self._store.query(
				collections.CONVERSATIONS,
				where("participant_ids", "contains", user_id),
			)
		conversations = []
		for snapshot in snapshots:
			conversation = Conversation.from_snapshot(snapshot)
			if not include_hidden and user_id in conversation.hidden_by:
				continue
			if not include_archived and user_id in conversation.archived_by:
				continue
			conversations.append(conversation)
		conversations.sort(key=lambda conv: conv.last_message_at or conv.updated_at, reverse=True)
		conversations.sort(key=lambda conv: user_id not in conv.pinned_by)
		return conversations

	async def list_requests(self, user_id: str) -> List[Conversation]:
		"""Pending requests addressed to `user_id` that carry at least one message."""
		with store_errors():
			snapshots = await self._store.query(
				collections.CONVERSATIONS,
				where("participant_ids", "contains", user_id),
				where("status", "eq", ConversationStatus.PENDING.value),
			)
		requests = []
		for snapshot in snapshots:
			conversation = Conversation.from_snapshot(snapshot)
			if conversation.requester_id in (None, user_id):
				continue
			if conversation.last_message is None or user_id in conversation.hidden_by:
				continue
			requests.append(conversation)
		requests.sort(key=lambda conv: conv.last_message_at or conv.updated_at, reverse=True)
		return requests
