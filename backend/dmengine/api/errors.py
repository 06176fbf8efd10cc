"""Error translation for the HTTP surface; every JSON error carries the request id."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dmengine.domain.common.errors import (
	Conflict,
	EngineError,
	InvalidMessage,
	NotFound,
	PermissionDenied,
	RateLimited,
	Transient,
)
from dmengine.obs.logging import current_request_id

_STATUS_BY_ERROR = (
	(PermissionDenied, status.HTTP_403_FORBIDDEN),
	(RateLimited, status.HTTP_429_TOO_MANY_REQUESTS),
	(Conflict, status.HTTP_409_CONFLICT),
	(NotFound, status.HTTP_404_NOT_FOUND),
	(Transient, status.HTTP_503_SERVICE_UNAVAILABLE),
	(InvalidMessage, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


def status_for(exc: EngineError) -> int:
	for error_type, code in _STATUS_BY_ERROR:
		if isinstance(exc, error_type):
			return code
	return status.HTTP_400_BAD_REQUEST


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(EngineError)
	async def engine_exc_handler(request: Request, exc: EngineError):  # type: ignore[override]
		payload = {
			"detail": exc.reason,
			"error": type(exc).__name__,
			"retryable": exc.retryable,
			"request_id": current_request_id() or "unknown",
		}
		return JSONResponse(status_code=status_for(exc), content=payload)

	@app.exception_handler(StarletteHTTPException)
	async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
		payload = {"detail": exc.detail, "request_id": current_request_id() or "unknown"}
		return JSONResponse(status_code=exc.status_code, content=payload)

	@app.exception_handler(RequestValidationError)
	async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
		payload = {
			"detail": "validation_error",
			"errors": jsonable_encoder(exc.errors()),
			"request_id": current_request_id() or "unknown",
		}
		return JSONResponse(status_code=422, content=payload)
