"""HTTP instrumentation: request ids, latency metrics and one access log line per request."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from dmengine.obs import logging as obs_logging
from dmengine.obs import metrics
from dmengine.settings import settings

REQUEST_ID_HEADER = "X-Request-Id"

_access_log = obs_logging.get_logger("dmengine.http")


def _route_label(request: Request) -> str:
	# Templated path keeps metric cardinality bounded.
	route = request.scope.get("route")
	return getattr(route, "path", None) or request.url.path


class ObservabilityMiddleware(BaseHTTPMiddleware):
	async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
		if not settings.obs_enabled:
			return await call_next(request)

		request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
		request.state.request_id = request_id
		tokens = obs_logging.bind_context(
			request_id=request_id,
			route=request.url.path,
			user_id=request.headers.get("X-User-Id"),
		)
		started = time.perf_counter()
		status_code = 500
		try:
			response = await call_next(request)
			status_code = response.status_code
		except Exception:
			_access_log.exception("http_request_failed", extra={"method": request.method})
			raise
		finally:
			elapsed = time.perf_counter() - started
			metrics.observe_request(_route_label(request), request.method, status_code, elapsed)
			_access_log.info(
				"http_request",
				extra={"method": request.method, "status": status_code, "latency_ms": round(elapsed * 1000, 3)},
			)
			obs_logging.reset_context(tokens)
		response.headers.setdefault(REQUEST_ID_HEADER, request_id)
		return response


def install(app: FastAPI) -> None:
	app.add_middleware(ObservabilityMiddleware)
