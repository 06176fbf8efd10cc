"""Health check helpers for liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Tuple

from redis.exceptions import RedisError

from dmengine.infra.redis import redis_client
from dmengine.obs import metrics
from dmengine.settings import settings

LOGGER = logging.getLogger(__name__)


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except (RedisError, OSError, asyncio.TimeoutError) as exc:
		metrics.mark_redis(False)
		LOGGER.warning("Redis readiness check failed", exc_info=True)
		return {"ok": False, "error": type(exc).__name__}
	metrics.mark_redis(True)
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2)}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	checks: Dict[str, Any] = {"store": {"backend": settings.store_backend}}
	ok = True
	if settings.store_backend == "redis":
		redis_state = await _redis_status()
		checks["redis"] = redis_state
		ok = bool(redis_state.get("ok"))
	return (200 if ok else 503), {"status": "ok" if ok else "degraded", "checks": checks}
