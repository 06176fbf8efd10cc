"""Per-send admission for direct messages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dmengine.domain.chat.models import Conversation, ConversationStatus, Message
from dmengine.domain.chat.state import ConversationStateMachine
from dmengine.domain.common.errors import PermissionDenied, RateLimited

PREVIEW_LENGTH = 120


@dataclass(frozen=True, slots=True)
class GateDecision:
	allowed: bool
	reason: Optional[str] = None

	def raise_if_denied(self) -> None:
		if self.allowed:
			return
		if self.reason == RateLimited.PENDING_MESSAGE_LIMIT_REACHED:
			raise RateLimited(self.reason)
		raise PermissionDenied(self.reason or PermissionDenied.reason)


class MessageGate:
	"""Limits what a requester may send before the recipient engages."""

	def __init__(self, state: ConversationStateMachine, *, pending_limit: int = 1) -> None:
		if pending_limit < 0:
			raise ValueError("pending_limit must be >= 0")
		self._state = state
		self.pending_limit = pending_limit

	def can_send(self, conversation: Conversation, sender_id: str) -> GateDecision:
		if not conversation.is_participant(sender_id):
			return GateDecision(False, PermissionDenied.NOT_PARTICIPANT)
		if conversation.status is ConversationStatus.DECLINED:
			return GateDecision(False, PermissionDenied.DECLINED_PREVIOUSLY)
		if conversation.status is ConversationStatus.ACCEPTED:
			return GateDecision(True)
		if sender_id != conversation.requester_id:
			return GateDecision(True)
		if conversation.message_count(sender_id) < self.pending_limit:
			return GateDecision(True)
		return GateDecision(False, RateLimited.PENDING_MESSAGE_LIMIT_REACHED)

	def admit(self, conversation: Conversation, message: Message) -> Conversation:
		"""Return the conversation as it must be stored alongside `message`."""
		self.can_send(conversation, message.sender_id).raise_if_denied()
		updated, _ = self._state.on_message(conversation, message.sender_id)
		if updated is conversation:
			updated = conversation.copy()
		sender = message.sender_id
		recipient = conversation.other_participant(sender)
		updated.message_counts[sender] = updated.message_count(sender) + 1
		updated.unread_counts[recipient] = int(updated.unread_counts.get(recipient, 0)) + 1
		updated.last_message = message.text[:PREVIEW_LENGTH]
		updated.last_message_at = message.created_at
		updated.last_sender_id = sender
		updated.updated_at = message.created_at
		return updated
