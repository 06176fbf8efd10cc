"""Pydantic schemas for the direct-message API."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .models import Conversation, Message
from .permissions import AccessDecision
from .service import SendResult


class AccessDecisionResponse(BaseModel):
	outcome: str
	reason: Optional[str] = None

	@classmethod
	def from_decision(cls, decision: AccessDecision) -> "AccessDecisionResponse":
		return cls(outcome=decision.outcome.value, reason=decision.reason)


class ReactionPayload(BaseModel):
	user_id: str
	emoji: str


class MessageResponse(BaseModel):
	id: str
	conversation_id: str
	sender_id: str
	text: str
	created_at: datetime
	read_by: List[str]
	reactions: List[ReactionPayload]

	@classmethod
	def from_model(cls, message: Message) -> "MessageResponse":
		return cls(
			id=message.id,
			conversation_id=message.conversation_id,
			sender_id=message.sender_id,
			text=message.text,
			created_at=message.created_at,
			read_by=sorted(message.read_by),
			reactions=[ReactionPayload(user_id=r.user_id, emoji=r.emoji) for r in message.reactions],
		)


class ConversationResponse(BaseModel):
	"""A conversation as seen by one participant."""

	id: str
	participant_ids: List[str]
	other_user_id: str
	status: str
	requester_id: Optional[str] = None
	message_counts: Dict[str, int]
	unread_count: int = 0
	muted: bool = False
	pinned: bool = False
	archived: bool = False
	request_read: bool = False
	last_message: Optional[str] = None
	last_message_at: Optional[datetime] = None
	last_sender_id: Optional[str] = None
	created_at: datetime
	updated_at: datetime
	version: int

	@classmethod
	def for_viewer(cls, conversation: Conversation, viewer_id: str) -> "ConversationResponse":
		return cls(
			id=conversation.id,
			participant_ids=list(conversation.participant_ids),
			other_user_id=conversation.other_participant(viewer_id),
			status=conversation.status.value,
			requester_id=conversation.requester_id,
			message_counts=dict(conversation.message_counts),
			unread_count=int(conversation.unread_counts.get(viewer_id, 0)),
			muted=viewer_id in conversation.muted_by,
			pinned=viewer_id in conversation.pinned_by,
			archived=viewer_id in conversation.archived_by,
			request_read=viewer_id in conversation.request_read_by,
			last_message=conversation.last_message,
			last_message_at=conversation.last_message_at,
			last_sender_id=conversation.last_sender_id,
			created_at=conversation.created_at,
			updated_at=conversation.updated_at,
			version=conversation.version,
		)


class ConversationListResponse(BaseModel):
	items: List[ConversationResponse]


class MessageListResponse(BaseModel):
	items: List[MessageResponse]


class StartConversationRequest(BaseModel):
	target_id: str = Field(..., min_length=1, description="User to open a conversation with")


class StartConversationResponse(BaseModel):
	conversation: ConversationResponse
	created: bool


class SendMessageRequest(BaseModel):
	to_user_id: str = Field(..., min_length=1, description="Target user identifier")
	text: str = Field(..., min_length=1)
	client_message_id: Optional[str] = Field(default=None, max_length=64, description="Idempotency key")


class ConversationMessageRequest(BaseModel):
	text: str = Field(..., min_length=1)
	client_message_id: Optional[str] = Field(default=None, max_length=64)


class SendMessageResponse(BaseModel):
	conversation: ConversationResponse
	message: MessageResponse
	conversation_created: bool
	replayed: bool
	accepted: bool

	@classmethod
	def from_result(cls, result: SendResult, viewer_id: str) -> "SendMessageResponse":
		return cls(
			conversation=ConversationResponse.for_viewer(result.conversation, viewer_id),
			message=MessageResponse.from_model(result.message),
			conversation_created=result.conversation_created,
			replayed=result.replayed,
			accepted=result.accepted,
		)


class FlagRequest(BaseModel):
	enabled: bool = True


class ReactionRequest(BaseModel):
	emoji: str = Field(..., min_length=1, max_length=16)


class TypingRequest(BaseModel):
	typing: bool = True
