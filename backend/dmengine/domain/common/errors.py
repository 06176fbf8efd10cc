"""Typed error taxonomy surfaced by the engine.

Every failure the engine reports is one of these classes; store-level and
transport failures are translated into them at the repository boundary.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from dmengine.infra.store import (
	DocumentExists,
	DocumentNotFound,
	StorePermissionDenied,
	StoreUnavailable,
	VersionConflict,
)


class EngineError(Exception):
	"""Base class for engine errors."""

	reason: str = "unknown"
	retryable: bool = False

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class PermissionDenied(EngineError):
	reason = "forbidden"

	BLOCKED = "blocked"
	DECLINED_PREVIOUSLY = "declined_previously"
	SELF_CONVERSATION = "self_conversation"
	NOT_PARTICIPANT = "not_participant"
	NOT_OWNER = "not_owner"
	SELF_ACTION = "self_action"


class RateLimited(EngineError):
	reason = "pending_message_limit_reached"

	PENDING_MESSAGE_LIMIT_REACHED = "pending_message_limit_reached"


class Conflict(EngineError):
	reason = "concurrent_modification"
	retryable = True

	CONCURRENT_MODIFICATION = "concurrent_modification"


class NotFound(EngineError):
	reason = "not_found"

	CONVERSATION = "conversation"
	MESSAGE = "message"


class Transient(EngineError):
	reason = "network"
	retryable = True

	NETWORK = "network"
	TIMEOUT = "timeout"


class InvalidMessage(EngineError):
	reason = "invalid"

	EMPTY = "empty"
	TOO_LONG = "too_long"
	SPAM = "spam"
	INVALID_REACTION = "invalid_reaction"
	INVALID_REPORT = "invalid_report"


@contextmanager
def store_errors(*, missing: str = NotFound.CONVERSATION, denied: str = PermissionDenied.NOT_PARTICIPANT) -> Iterator[None]:
	"""Translate store-level failures raised inside the block into engine errors."""
	try:
		yield
	except DocumentNotFound as exc:
		raise NotFound(missing) from exc
	except (VersionConflict, DocumentExists) as exc:
		raise Conflict(Conflict.CONCURRENT_MODIFICATION) from exc
	except StoreUnavailable as exc:
		raise Transient(exc.reason) from exc
	except StorePermissionDenied as exc:
		raise PermissionDenied(denied) from exc
