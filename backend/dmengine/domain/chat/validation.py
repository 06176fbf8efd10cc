"""Message text and reaction validation."""

from __future__ import annotations

import re

from dmengine.domain.common.errors import InvalidMessage

DEFAULT_MAX_LENGTH = 10_000
MAX_URLS = 3
MAX_EMOJI_LENGTH = 16

_REPEATED_CHAR = re.compile(r"(.)\1{9,}", re.DOTALL)
_URL = re.compile(r"(?:https?://|www\.)\S+", re.IGNORECASE)


def normalize_text(text: str, *, max_length: int = DEFAULT_MAX_LENGTH) -> str:
	"""Return the trimmed text or raise InvalidMessage."""
	trimmed = (text or "").strip()
	if not trimmed:
		raise InvalidMessage(InvalidMessage.EMPTY)
	if len(trimmed) > max_length:
		raise InvalidMessage(InvalidMessage.TOO_LONG)
	if looks_like_spam(trimmed):
		raise InvalidMessage(InvalidMessage.SPAM)
	return trimmed


def looks_like_spam(text: str) -> bool:
	if _REPEATED_CHAR.search(text):
		return True
	return len(_URL.findall(text)) > MAX_URLS


def normalize_emoji(emoji: str) -> str:
	value = (emoji or "").strip()
	if not value or len(value) > MAX_EMOJI_LENGTH:
		raise InvalidMessage(InvalidMessage.INVALID_REACTION)
	return value
