"""Relation records for blocks, follows, privacy settings and user reports."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def parse_ts(value: Any) -> datetime:
	if isinstance(value, datetime):
		return value
	return datetime.fromisoformat(str(value))


class Visibility(str, enum.Enum):
	EVERYONE = "everyone"
	FOLLOWERS_ONLY = "followers_only"


DEFAULT_VISIBILITY = Visibility.EVERYONE


@dataclass(slots=True)
class BlockRelation:
	blocker_id: str
	blocked_id: str
	created_at: datetime

	def to_document(self) -> Dict[str, Any]:
		return {
			"blocker_id": self.blocker_id,
			"blocked_id": self.blocked_id,
			"created_at": self.created_at.isoformat(),
		}

	@classmethod
	def from_document(cls, data: Mapping[str, Any]) -> "BlockRelation":
		return cls(
			blocker_id=str(data["blocker_id"]),
			blocked_id=str(data["blocked_id"]),
			created_at=parse_ts(data["created_at"]),
		)


@dataclass(slots=True)
class FollowRelation:
	follower_id: str
	followee_id: str
	created_at: datetime

	def to_document(self) -> Dict[str, Any]:
		return {
			"follower_id": self.follower_id,
			"followee_id": self.followee_id,
			"created_at": self.created_at.isoformat(),
		}

	@classmethod
	def from_document(cls, data: Mapping[str, Any]) -> "FollowRelation":
		return cls(
			follower_id=str(data["follower_id"]),
			followee_id=str(data["followee_id"]),
			created_at=parse_ts(data["created_at"]),
		)


@dataclass(slots=True)
class PrivacySetting:
	user_id: str
	visibility: Visibility = DEFAULT_VISIBILITY
	updated_at: datetime | None = None

	def to_document(self) -> Dict[str, Any]:
		return {
			"user_id": self.user_id,
			"visibility": self.visibility.value,
			"updated_at": self.updated_at.isoformat() if self.updated_at else None,
		}

	@classmethod
	def from_document(cls, data: Mapping[str, Any]) -> "PrivacySetting":
		updated = data.get("updated_at")
		return cls(
			user_id=str(data["user_id"]),
			visibility=Visibility(data.get("visibility") or DEFAULT_VISIBILITY.value),
			updated_at=parse_ts(updated) if updated else None,
		)


class ReportStatus(str, enum.Enum):
	PENDING = "pending"
	REVIEWED = "reviewed"
	DISMISSED = "dismissed"


@dataclass(slots=True)
class UserReport:
	id: str
	reporter_id: str
	reported_user_id: str
	reason: str
	created_at: datetime
	conversation_id: str | None = None
	status: ReportStatus = ReportStatus.PENDING

	@property
	def is_spam(self) -> bool:
		return "spam" in self.reason.lower()

	def to_document(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"reporter_id": self.reporter_id,
			"reported_user_id": self.reported_user_id,
			"reason": self.reason,
			"conversation_id": self.conversation_id,
			"status": self.status.value,
			"created_at": self.created_at.isoformat(),
		}

	@classmethod
	def from_document(cls, data: Mapping[str, Any]) -> "UserReport":
		conversation_id = data.get("conversation_id")
		return cls(
			id=str(data["id"]),
			reporter_id=str(data["reporter_id"]),
			reported_user_id=str(data["reported_user_id"]),
			reason=str(data["reason"]),
			created_at=parse_ts(data["created_at"]),
			conversation_id=str(conversation_id) if conversation_id else None,
			status=ReportStatus(data.get("status") or ReportStatus.PENDING.value),
		)
