"""Structured JSON logging with per-task context.

Request handlers and socket events bind the request id, route, acting user and
conversation into context variables; every record emitted while they are bound
carries them. Extra fields are sanitised: anything that looks like a credential
or a message body is redacted and long values are clipped.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dmengine.settings import settings

_LOGGER_NAME = "dmengine"

_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	name: ContextVar(f"dm_log_{name}", default=None)
	for name in ("request_id", "route", "user_id", "conversation_id")
}

# Message bodies never reach the log stream.
_REDACTED_KEYS = ("token", "secret", "authorization", "password", "text", "body", "last_message")

_CLIP_AT = 256
_MAX_ITEMS = 10

# Attributes every LogRecord carries; anything else came in through `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind non-None fields for the current task; pass the result to `reset_context`."""
	tokens: Dict[str, Token] = {}
	for name, value in fields.items():
		if value is None:
			continue
		tokens[name] = _CONTEXT[name].set(value)
	return tokens


def reset_context(tokens: Dict[str, Token]) -> None:
	for name, token in tokens.items():
		_CONTEXT[name].reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT["request_id"].get()


def _clean(key: str, value: Any) -> Any:
	if any(marker in key.lower() for marker in _REDACTED_KEYS):
		return "[redacted]"
	if isinstance(value, str):
		return value if len(value) <= _CLIP_AT else value[:_CLIP_AT] + "…"
	if isinstance(value, dict):
		items = list(value.items())
		cleaned = {str(k): _clean(str(k), v) for k, v in items[:_MAX_ITEMS]}
		if len(items) > _MAX_ITEMS:
			cleaned["…"] = f"+{len(items) - _MAX_ITEMS} keys"
		return cleaned
	if isinstance(value, (list, tuple, set, frozenset)):
		values = [_clean(key, item) for item in value]
		return values if len(values) <= _MAX_ITEMS else values[:_MAX_ITEMS] + ["…"]
	return value


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"logger": record.name,
			"msg": record.getMessage(),
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for name, var in _CONTEXT.items():
			value = var.get()
			if value:
				payload[name] = value
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in vars(record).items():
			if key in _RECORD_ATTRS or key in payload:
				continue
			payload[key] = _clean(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Keep a configured fraction of INFO records; other levels always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = min(1.0, max(0.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root = logging.getLogger()
	root.handlers.clear()
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
