"""Pydantic schemas for relation and report endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import BlockRelation, PrivacySetting, UserReport, Visibility


class BlockResponse(BaseModel):
	blocker_id: str
	blocked_id: str
	created_at: datetime

	@classmethod
	def from_model(cls, relation: BlockRelation) -> "BlockResponse":
		return cls(blocker_id=relation.blocker_id, blocked_id=relation.blocked_id, created_at=relation.created_at)


class BlockListResponse(BaseModel):
	items: List[BlockResponse]


class RelationChangeResponse(BaseModel):
	target_id: str
	active: bool
	changed: bool


class UserListResponse(BaseModel):
	items: List[str]


class PrivacyRequest(BaseModel):
	visibility: Visibility


class PrivacyResponse(BaseModel):
	user_id: str
	visibility: Visibility
	updated_at: Optional[datetime] = None

	@classmethod
	def from_model(cls, setting: PrivacySetting) -> "PrivacyResponse":
		return cls(user_id=setting.user_id, visibility=setting.visibility, updated_at=setting.updated_at)


class FollowStateResponse(BaseModel):
	target_id: str
	following: bool
	pending: bool = False


class ReportRequest(BaseModel):
	user_id: str = Field(..., min_length=1, description="User being reported")
	reason: str = Field(..., min_length=1, max_length=500)
	conversation_id: Optional[str] = None


class ReportResponse(BaseModel):
	id: str
	reported_user_id: str
	reason: str
	conversation_id: Optional[str] = None
	status: str
	created_at: datetime
	blocked: bool = False

	@classmethod
	def from_model(cls, report: UserReport, *, blocked: bool = False) -> "ReportResponse":
		return cls(
			id=report.id,
			reported_user_id=report.reported_user_id,
			reason=report.reason,
			conversation_id=report.conversation_id,
			status=report.status.value,
			created_at=report.created_at,
			blocked=blocked,
		)


class ReportListResponse(BaseModel):
	items: List[ReportResponse]
