"""Domain models for direct-message conversations."""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

import ulid

from dmengine.domain.social.models import parse_ts, utcnow
from dmengine.infra.store import Snapshot

CONVERSATION_ID_PREFIX = "dm"


@dataclass(frozen=True, slots=True)
class ConversationKey:
	"""Canonical representation of a 1:1 conversation between an unordered pair."""

	user_a: str
	user_b: str

	@classmethod
	def from_participants(cls, user_one: str, user_two: str) -> "ConversationKey":
		ordered = tuple(sorted((str(user_one), str(user_two))))
		return cls(user_a=ordered[0], user_b=ordered[1])

	@property
	def conversation_id(self) -> str:
		return f"{CONVERSATION_ID_PREFIX}:{self.user_a}:{self.user_b}"

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)


def conversation_id_for(user_one: str, user_two: str) -> str:
	return ConversationKey.from_participants(user_one, user_two).conversation_id


class ConversationStatus(str, enum.Enum):
	PENDING = "pending"
	ACCEPTED = "accepted"
	DECLINED = "declined"


class ConversationFlag(str, enum.Enum):
	MUTED = "muted"
	PINNED = "pinned"
	ARCHIVED = "archived"

	@property
	def attribute(self) -> str:
		return f"{self.value}_by"


def new_message_id() -> str:
	return ulid.new().str


@dataclass(slots=True)
class Conversation:
	id: str
	participant_ids: Tuple[str, str]
	status: ConversationStatus
	requester_id: Optional[str]
	created_at: datetime
	updated_at: datetime
	message_counts: Dict[str, int] = field(default_factory=dict)
	unread_counts: Dict[str, int] = field(default_factory=dict)
	muted_by: FrozenSet[str] = frozenset()
	pinned_by: FrozenSet[str] = frozenset()
	archived_by: FrozenSet[str] = frozenset()
	hidden_by: FrozenSet[str] = frozenset()
	request_read_by: FrozenSet[str] = frozenset()
	last_message: Optional[str] = None
	last_message_at: Optional[datetime] = None
	last_sender_id: Optional[str] = None
	accepted_at: Optional[datetime] = None
	declined_at: Optional[datetime] = None
	declined_by: Optional[str] = None
	version: int = 0

	@classmethod
	def new(
		cls,
		user_one: str,
		user_two: str,
		*,
		status: ConversationStatus,
		requester_id: Optional[str],
	) -> "Conversation":
		key = ConversationKey.from_participants(user_one, user_two)
		now = utcnow()
		participants = key.participants()
		return cls(
			id=key.conversation_id,
			participant_ids=participants,
			status=status,
			requester_id=requester_id if status is ConversationStatus.PENDING else None,
			created_at=now,
			updated_at=now,
			message_counts={uid: 0 for uid in participants},
			unread_counts={uid: 0 for uid in participants},
			accepted_at=now if status is ConversationStatus.ACCEPTED else None,
		)

	def is_participant(self, user_id: str) -> bool:
		return user_id in self.participant_ids

	def other_participant(self, user_id: str) -> str:
		first, second = self.participant_ids
		return second if user_id == first else first

	def message_count(self, user_id: str) -> int:
		return int(self.message_counts.get(user_id, 0))

	def has_flag(self, user_id: str, flag: ConversationFlag) -> bool:
		return user_id in getattr(self, flag.attribute)

	def copy(self) -> "Conversation":
		return copy.deepcopy(self)

	def to_document(self) -> Dict[str, Any]:
		return {
			"participant_ids": list(self.participant_ids),
			"status": self.status.value,
			"requester_id": self.requester_id,
			"created_at": self.created_at.isoformat(),
			"updated_at": self.updated_at.isoformat(),
			"message_counts": dict(self.message_counts),
			"unread_counts": dict(self.unread_counts),
			"muted_by": sorted(self.muted_by),
			"pinned_by": sorted(self.pinned_by),
			"archived_by": sorted(self.archived_by),
			"hidden_by": sorted(self.hidden_by),
			"request_read_by": sorted(self.request_read_by),
			"last_message": self.last_message,
			"last_message_at": _iso(self.last_message_at),
			"last_sender_id": self.last_sender_id,
			"accepted_at": _iso(self.accepted_at),
			"declined_at": _iso(self.declined_at),
			"declined_by": self.declined_by,
		}

	@classmethod
	def from_snapshot(cls, snapshot: Snapshot) -> "Conversation":
		data = snapshot.data
		participants = tuple(sorted(str(uid) for uid in data["participant_ids"]))
		return cls(
			id=snapshot.doc_id,
			participant_ids=(participants[0], participants[1]),
			status=ConversationStatus(data["status"]),
			requester_id=data.get("requester_id"),
			created_at=parse_ts(data["created_at"]),
			updated_at=parse_ts(data["updated_at"]),
			message_counts={str(k): int(v) for k, v in (data.get("message_counts") or {}).items()},
			unread_counts={str(k): int(v) for k, v in (data.get("unread_counts") or {}).items()},
			muted_by=frozenset(data.get("muted_by") or ()),
			pinned_by=frozenset(data.get("pinned_by") or ()),
			archived_by=frozenset(data.get("archived_by") or ()),
			hidden_by=frozenset(data.get("hidden_by") or ()),
			request_read_by=frozenset(data.get("request_read_by") or ()),
			last_message=data.get("last_message"),
			last_message_at=_parse_optional(data.get("last_message_at")),
			last_sender_id=data.get("last_sender_id"),
			accepted_at=_parse_optional(data.get("accepted_at")),
			declined_at=_parse_optional(data.get("declined_at")),
			declined_by=data.get("declined_by"),
			version=snapshot.version,
		)


@dataclass(frozen=True, slots=True)
class Reaction:
	user_id: str
	emoji: str


@dataclass(slots=True)
class Message:
	id: str
	conversation_id: str
	sender_id: str
	text: str
	created_at: datetime
	read_by: FrozenSet[str] = frozenset()
	reactions: Tuple[Reaction, ...] = ()
	version: int = 0

	@classmethod
	def new(cls, conversation_id: str, sender_id: str, text: str, *, message_id: Optional[str] = None) -> "Message":
		return cls(
			id=message_id or new_message_id(),
			conversation_id=conversation_id,
			sender_id=sender_id,
			text=text,
			created_at=utcnow(),
			read_by=frozenset({sender_id}),
		)

	def copy(self) -> "Message":
		return copy.deepcopy(self)

	def to_document(self) -> Dict[str, Any]:
		return {
			"conversation_id": self.conversation_id,
			"sender_id": self.sender_id,
			"text": self.text,
			"created_at": self.created_at.isoformat(),
			"read_by": sorted(self.read_by),
			"reactions": [{"user_id": r.user_id, "emoji": r.emoji} for r in self.reactions],
		}

	@classmethod
	def from_snapshot(cls, snapshot: Snapshot) -> "Message":
		data = snapshot.data
		return cls(
			id=snapshot.doc_id,
			conversation_id=str(data["conversation_id"]),
			sender_id=str(data["sender_id"]),
			text=str(data["text"]),
			created_at=parse_ts(data["created_at"]),
			read_by=frozenset(data.get("read_by") or ()),
			reactions=reactions_from(data.get("reactions") or ()),
			version=snapshot.version,
		)

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"conversation_id": self.conversation_id,
			"sender_id": self.sender_id,
			"text": self.text,
			"created_at": self.created_at.isoformat(),
			"read_by": sorted(self.read_by),
			"reactions": [{"user_id": r.user_id, "emoji": r.emoji} for r in self.reactions],
		}


def reactions_from(raw: Iterable[Dict[str, Any]]) -> Tuple[Reaction, ...]:
	return tuple(Reaction(user_id=str(item["user_id"]), emoji=str(item["emoji"])) for item in raw)


def _iso(value: Optional[datetime]) -> Optional[str]:
	return value.isoformat() if value is not None else None


def _parse_optional(value: Any) -> Optional[datetime]:
	return parse_ts(value) if value else None
