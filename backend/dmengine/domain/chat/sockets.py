"""Socket.IO namespace for direct-message change notifications."""

from __future__ import annotations

from typing import Callable, Dict, Optional

import socketio

from dmengine.domain.common.errors import EngineError
from dmengine.domain.common.events import Event, EventBus
from dmengine.infra.auth import AuthenticatedUser, resolve_socket_user
from dmengine.obs import logging as obs_logging
from dmengine.obs import metrics as obs_metrics
from dmengine.obs.logging import get_logger

from .service import MessagingService

logger = get_logger(__name__)

_namespace: "DmNamespace" | None = None


def _headers(scope: dict) -> Dict[str, str]:
	headers: Dict[str, str] = {}
	for key, value in scope.get("headers", []):
		headers[key.decode().lower()] = value.decode()
	return headers


class DmNamespace(socketio.AsyncNamespace):
	"""Places clients in a per-user room and relays engine events to it."""

	def __init__(self, service: Callable[[], MessagingService]) -> None:
		super().__init__("/dm")
		self._service = service
		self._sessions: Dict[str, AuthenticatedUser] = {}

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		scope = environ.get("asgi.scope", environ)
		try:
			user = resolve_socket_user(auth, _headers(scope))
		except ValueError as exc:
			obs_metrics.socket_disconnected(self.namespace)
			raise ConnectionRefusedError(str(exc)) from exc
		self._sessions[sid] = user
		await self.enter_room(sid, self.user_room(user.id))
		await self.emit("dm:ack", {"ok": True}, room=sid)

	async def on_disconnect(self, sid: str, *args) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		user = self._sessions.pop(sid, None)
		if user:
			await self.leave_room(sid, self.user_room(user.id))

	async def on_typing(self, sid: str, payload: dict) -> dict:
		obs_metrics.socket_event(self.namespace, "typing")
		user = self._sessions.get(sid)
		if not user:
			raise ConnectionRefusedError("unauthenticated")
		conversation_id = str((payload or {}).get("conversation_id") or "")
		if not conversation_id:
			return {"ok": False, "error": "missing_conversation_id"}
		tokens = obs_logging.bind_context(user_id=user.id, conversation_id=conversation_id)
		try:
			await self._service().set_typing(user.id, conversation_id, bool(payload.get("typing", True)))
		except EngineError as exc:
			logger.info("dm_typing_rejected", extra={"reason": exc.reason})
			return {"ok": False, "error": exc.reason}
		finally:
			obs_logging.reset_context(tokens)
		return {"ok": True}

	@staticmethod
	def user_room(user_id: str) -> str:
		return f"user:{user_id}"


def set_namespace(namespace: DmNamespace | None) -> None:
	global _namespace
	_namespace = namespace


async def emit_event(event: Event) -> int:
	"""Send `event` to each audience member's room; returns rooms reached."""
	if _namespace is None:
		return 0
	name = f"dm:{event.kind.value}"
	payload = {"subject_id": event.subject_id, **event.payload}
	reached = 0
	for user_id in sorted(event.audience):
		obs_metrics.socket_event(_namespace.namespace, name)
		await _namespace.emit(name, payload, room=DmNamespace.user_room(user_id))
		reached += 1
	return reached


async def relay_events(bus: EventBus) -> None:
	"""Forward bus events to connected clients until cancelled."""
	subscription = bus.subscribe()
	try:
		async for event in subscription:
			try:
				await emit_event(event)
			except Exception:
				# One undeliverable event must not stop delivery of the rest.
				obs_metrics.inc_event_dropped(event.kind.value)
				logger.exception("dm_event_relay_failed", extra={"kind": event.kind.value, "subject_id": event.subject_id})
	finally:
		subscription.close()
