"""Conversation status transitions and per-participant flags.

Only three transitions exist: (none)->pending|accepted on creation,
pending->accepted and pending->declined. Requests that match no transition
return the conversation unchanged so retried client operations are harmless.
Callers that are not participants are rejected outright.
"""

from __future__ import annotations

from typing import Tuple

from dmengine.domain.chat.models import Conversation, ConversationFlag, ConversationStatus
from dmengine.domain.chat.permissions import AccessDecision
from dmengine.domain.common.errors import PermissionDenied
from dmengine.domain.social.models import utcnow

Transition = Tuple[Conversation, bool]


def ensure_participant(conversation: Conversation, user_id: str) -> None:
	if not conversation.is_participant(user_id):
		raise PermissionDenied(PermissionDenied.NOT_PARTICIPANT)


class ConversationStateMachine:
	def initial_status(self, decision: AccessDecision) -> ConversationStatus:
		decision.raise_if_denied()
		return ConversationStatus.PENDING if decision.is_request else ConversationStatus.ACCEPTED

	def _awaiting(self, conversation: Conversation, actor_id: str) -> bool:
		"""True when `actor_id` is the recipient of a still-pending request."""
		return conversation.status is ConversationStatus.PENDING and actor_id != conversation.requester_id

	def accept(self, conversation: Conversation, actor_id: str) -> Transition:
		ensure_participant(conversation, actor_id)
		if not self._awaiting(conversation, actor_id):
			return conversation, False
		updated = conversation.copy()
		now = utcnow()
		updated.status = ConversationStatus.ACCEPTED
		updated.accepted_at = now
		updated.updated_at = now
		return updated, True

	def decline(self, conversation: Conversation, actor_id: str) -> Transition:
		ensure_participant(conversation, actor_id)
		if not self._awaiting(conversation, actor_id):
			return conversation, False
		updated = conversation.copy()
		now = utcnow()
		updated.status = ConversationStatus.DECLINED
		updated.declined_at = now
		updated.declined_by = actor_id
		updated.updated_at = now
		return updated, True

	def on_message(self, conversation: Conversation, sender_id: str) -> Transition:
		"""A reply from the request recipient implicitly accepts it."""
		return self.accept(conversation, sender_id)

	def set_flag(self, conversation: Conversation, actor_id: str, flag: ConversationFlag, enabled: bool) -> Transition:
		ensure_participant(conversation, actor_id)
		return self._toggle_member(conversation, flag.attribute, actor_id, enabled)

	def set_hidden(self, conversation: Conversation, actor_id: str, hidden: bool) -> Transition:
		ensure_participant(conversation, actor_id)
		return self._toggle_member(conversation, "hidden_by", actor_id, hidden)

	def mark_request_read(self, conversation: Conversation, actor_id: str) -> Transition:
		ensure_participant(conversation, actor_id)
		if not self._awaiting(conversation, actor_id):
			return conversation, False
		return self._toggle_member(conversation, "request_read_by", actor_id, True)

	def mark_read(self, conversation: Conversation, actor_id: str) -> Transition:
		ensure_participant(conversation, actor_id)
		if conversation.unread_counts.get(actor_id, 0) == 0:
			return conversation, False
		updated = conversation.copy()
		updated.unread_counts[actor_id] = 0
		return updated, True

	@staticmethod
	def _toggle_member(conversation: Conversation, attribute: str, user_id: str, present: bool) -> Transition:
		members = getattr(conversation, attribute)
		if (user_id in members) == present:
			return conversation, False
		updated = conversation.copy()
		setattr(updated, attribute, members | {user_id} if present else members - {user_id})
		updated.updated_at = utcnow()
		return updated, True
