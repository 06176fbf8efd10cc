"""Authentication helpers for FastAPI endpoints and socket handshakes.

A bearer JWT is always accepted. The `X-User-Id` header is honoured only in
development environments so local tools can act as any user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from dmengine.infra import jwt as jwt_helper
from dmengine.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	handle: Optional[str] = None
	session_id: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		payload = jwt_helper.decode_access(token)
	except InvalidTokenError:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	handle = payload.get("handle")
	session_id = payload.get("sid")
	return AuthenticatedUser(
		id=sub,
		handle=str(handle) if handle is not None else None,
		session_id=str(session_id) if session_id is not None else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id and x_user_id.strip():
		return AuthenticatedUser(id=x_user_id.strip())
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


def resolve_socket_user(auth: Optional[dict], headers: dict[str, str]) -> AuthenticatedUser:
	"""Authenticate a Socket.IO handshake from its auth payload or headers.

	Raises ValueError when no identity can be established.
	"""
	auth = auth or {}
	token = auth.get("token")
	if not token:
		header = headers.get("authorization") or ""
		if header.lower().startswith("bearer "):
			token = header[7:].strip()
	if token:
		try:
			payload = jwt_helper.decode_access(str(token))
		except InvalidTokenError as exc:
			raise ValueError("invalid_token") from exc
		return AuthenticatedUser(id=str(payload["sub"]), session_id=payload.get("sid"))  # type: ignore[arg-type]
	if settings.is_dev():
		user_id = auth.get("userId") or headers.get("x-user-id")
		if user_id:
			return AuthenticatedUser(id=str(user_id))
	raise ValueError("missing_auth")
