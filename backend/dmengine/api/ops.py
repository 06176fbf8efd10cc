"""Operations endpoints: health probes and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from dmengine.obs import health

router = APIRouter(tags=["ops"])


@router.get("/health/live")
async def live() -> dict:
	return await health.liveness()


@router.get("/health/ready")
async def ready() -> JSONResponse:
	status_code, payload = await health.readiness()
	return JSONResponse(status_code=status_code, content=payload)


@router.get("/metrics")
async def prometheus_metrics() -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
