"""REST API surface for direct messages and message requests."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from dmengine.container import get_messaging
from dmengine.domain.chat.models import ConversationFlag
from dmengine.domain.chat.schemas import (
	AccessDecisionResponse,
	ConversationListResponse,
	ConversationMessageRequest,
	ConversationResponse,
	FlagRequest,
	MessageListResponse,
	MessageResponse,
	ReactionRequest,
	SendMessageRequest,
	SendMessageResponse,
	StartConversationRequest,
	StartConversationResponse,
	TypingRequest,
)
from dmengine.domain.chat.service import MessagingService
from dmengine.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/dm", tags=["dm"])


@router.get("/access/{target_id}", response_model=AccessDecisionResponse)
async def check_access(
	target_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> AccessDecisionResponse:
	decision = await service.resolve(auth_user.id, target_id)
	return AccessDecisionResponse.from_decision(decision)


@router.post("/conversations", response_model=StartConversationResponse)
async def start_conversation(
	payload: StartConversationRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> StartConversationResponse:
	conversation, created = await service.start_conversation(auth_user.id, payload.target_id)
	return StartConversationResponse(
		conversation=ConversationResponse.for_viewer(conversation, auth_user.id),
		created=created,
	)


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
	include_archived: bool = Query(default=False),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ConversationListResponse:
	conversations = await service.list_conversations(auth_user.id, include_archived=include_archived)
	return ConversationListResponse(
		items=[ConversationResponse.for_viewer(conv, auth_user.id) for conv in conversations]
	)


@router.get("/requests", response_model=ConversationListResponse)
async def list_requests(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ConversationListResponse:
	conversations = await service.list_requests(auth_user.id)
	return ConversationListResponse(
		items=[ConversationResponse.for_viewer(conv, auth_user.id) for conv in conversations]
	)


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
	conversation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ConversationResponse:
	conversation = await service.get_conversation(auth_user.id, conversation_id)
	return ConversationResponse.for_viewer(conversation, auth_user.id)


@router.post("/messages", response_model=SendMessageResponse)
async def send_message(
	payload: SendMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> SendMessageResponse:
	result = await service.send_message(
		auth_user.id,
		payload.to_user_id,
		payload.text,
		client_message_id=payload.client_message_id,
	)
	return SendMessageResponse.from_result(result, auth_user.id)


@router.post("/conversations/{conversation_id}/messages", response_model=SendMessageResponse)
async def send_to_conversation(
	conversation_id: str,
	payload: ConversationMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> SendMessageResponse:
	result = await service.send_to_conversation(
		auth_user.id,
		conversation_id,
		payload.text,
		client_message_id=payload.client_message_id,
	)
	return SendMessageResponse.from_result(result, auth_user.id)


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages(
	conversation_id: str,
	before: Optional[datetime] = Query(default=None),
	limit: int = Query(default=50, ge=1, le=200),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> MessageListResponse:
	messages = await service.list_messages(auth_user.id, conversation_id, before=before, limit=limit)
	return MessageListResponse(items=[MessageResponse.from_model(message) for message in messages])


@router.post("/conversations/{conversation_id}/accept", response_model=ConversationResponse)
async def accept_request(
	conversation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ConversationResponse:
	conversation = await service.accept(auth_user.id, conversation_id)
	return ConversationResponse.for_viewer(conversation, auth_user.id)


@router.post("/conversations/{conversation_id}/decline", response_model=ConversationResponse)
async def decline_request(
	conversation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ConversationResponse:
	conversation = await service.decline(auth_user.id, conversation_id)
	return ConversationResponse.for_viewer(conversation, auth_user.id)


@router.post("/conversations/{conversation_id}/read", response_model=ConversationResponse)
async def mark_read(
	conversation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ConversationResponse:
	conversation = await service.mark_read(auth_user.id, conversation_id)
	return ConversationResponse.for_viewer(conversation, auth_user.id)


@router.post("/conversations/{conversation_id}/request-read", response_model=ConversationResponse)
async def mark_request_read(
	conversation_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ConversationResponse:
	conversation = await service.mark_request_read(auth_user.id, conversation_id)
	return ConversationResponse.for_viewer(conversation, auth_user.id)


@router.put("/conversations/{conversation_id}/flags/{flag}", response_model=ConversationResponse)
async def set_flag(
	conversation_id: str,
	flag: ConversationFlag,
	payload: FlagRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ConversationResponse:
	conversation = await service.set_flag(auth_user.id, conversation_id, flag, payload.enabled)
	return ConversationResponse.for_viewer(conversation, auth_user.id)


@router.post(
	"/conversations/{conversation_id}/messages/{message_id}/reactions",
	response_model=MessageResponse,
)
async def toggle_reaction(
	conversation_id: str,
	message_id: str,
	payload: ReactionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> MessageResponse:
	message = await service.toggle_reaction(auth_user.id, conversation_id, message_id, payload.emoji)
	return MessageResponse.from_model(message)


@router.post("/conversations/{conversation_id}/typing")
async def set_typing(
	conversation_id: str,
	payload: TypingRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> dict:
	await service.set_typing(auth_user.id, conversation_id, payload.typing)
	return {"ok": True}
