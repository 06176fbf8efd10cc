"""REST API surface for blocks, follows, privacy and reports."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from dmengine.container import get_messaging
from dmengine.domain.chat.service import MessagingService
from dmengine.domain.social.schemas import (
	BlockListResponse,
	BlockResponse,
	FollowStateResponse,
	PrivacyRequest,
	PrivacyResponse,
	RelationChangeResponse,
	ReportListResponse,
	ReportRequest,
	ReportResponse,
	UserListResponse,
)
from dmengine.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/social", tags=["social"])


@router.post("/blocks/{target_id}", response_model=BlockResponse)
async def block_user(
	target_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> BlockResponse:
	relation = await service.block(auth_user.id, target_id)
	return BlockResponse.from_model(relation)


@router.delete("/blocks/{target_id}", response_model=RelationChangeResponse)
async def unblock_user(
	target_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> RelationChangeResponse:
	removed = await service.unblock(auth_user.id, target_id)
	return RelationChangeResponse(target_id=target_id, active=False, changed=removed)


@router.get("/blocks", response_model=BlockListResponse)
async def list_blocks(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> BlockListResponse:
	relations = await service.list_blocked(auth_user.id)
	return BlockListResponse(items=[BlockResponse.from_model(relation) for relation in relations])


@router.post("/follows/{target_id}", response_model=RelationChangeResponse)
async def follow_user(
	target_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> RelationChangeResponse:
	created = await service.follow(auth_user.id, target_id)
	return RelationChangeResponse(target_id=target_id, active=True, changed=created)


@router.get("/follows/{target_id}", response_model=FollowStateResponse)
async def follow_state(
	target_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> FollowStateResponse:
	following, pending = await service.follows.follow_state(auth_user.id, target_id)
	return FollowStateResponse(target_id=target_id, following=following, pending=pending)


@router.delete("/follows/{target_id}", response_model=RelationChangeResponse)
async def unfollow_user(
	target_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> RelationChangeResponse:
	removed = await service.unfollow(auth_user.id, target_id)
	return RelationChangeResponse(target_id=target_id, active=False, changed=removed)


@router.get("/users/{user_id}/followers", response_model=UserListResponse)
async def list_followers(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> UserListResponse:
	return UserListResponse(items=await service.follows.followers(user_id))


@router.get("/users/{user_id}/following", response_model=UserListResponse)
async def list_following(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> UserListResponse:
	return UserListResponse(items=await service.follows.following(user_id))


@router.put("/privacy", response_model=PrivacyResponse)
async def set_privacy(
	payload: PrivacyRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> PrivacyResponse:
	setting = await service.set_privacy(auth_user.id, payload.visibility)
	return PrivacyResponse.from_model(setting)


@router.get("/privacy", response_model=PrivacyResponse)
async def get_privacy(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> PrivacyResponse:
	visibility = await service.privacy.visibility(auth_user.id)
	return PrivacyResponse(user_id=auth_user.id, visibility=visibility)


@router.post("/reports", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def report_user(
	payload: ReportRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ReportResponse:
	result = await service.report(auth_user.id, payload.user_id, payload.reason, conversation_id=payload.conversation_id)
	return ReportResponse.from_model(result.report, blocked=result.blocked)


@router.get("/reports", response_model=ReportListResponse)
async def list_reports(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: MessagingService = Depends(get_messaging),
) -> ReportListResponse:
	reports = await service.list_reports(auth_user.id)
	return ReportListResponse(items=[ReportResponse.from_model(report) for report in reports])
