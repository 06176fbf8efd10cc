"""Collection names shared by the domain and the store rules."""

from __future__ import annotations

FOLLOWS = "follows"
PRIVACY = "privacy"
CONVERSATIONS = "conversations"
REPORTS = "reports"

_BLOCKED_PREFIX = "users/"
_BLOCKED_SUFFIX = "/blocked"
_MESSAGES_SUFFIX = "/messages"


def blocked(owner_id: str) -> str:
	return f"{_BLOCKED_PREFIX}{owner_id}{_BLOCKED_SUFFIX}"


def messages(conversation_id: str) -> str:
	return f"{CONVERSATIONS}/{conversation_id}{_MESSAGES_SUFFIX}"


def follow_doc_id(follower_id: str, followee_id: str) -> str:
	return f"{follower_id}:{followee_id}"


def blocked_owner(collection: str) -> str | None:
	if collection.startswith(_BLOCKED_PREFIX) and collection.endswith(_BLOCKED_SUFFIX):
		owner = collection[len(_BLOCKED_PREFIX) : -len(_BLOCKED_SUFFIX)]
		return owner or None
	return None


def messages_parent(collection: str) -> str | None:
	prefix = f"{CONVERSATIONS}/"
	if collection.startswith(prefix) and collection.endswith(_MESSAGES_SUFFIX):
		parent = collection[len(prefix) : -len(_MESSAGES_SUFFIX)]
		return parent or None
	return None
