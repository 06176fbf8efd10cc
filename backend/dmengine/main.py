"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dmengine.api import chat, ops, social
from dmengine.api.errors import install_error_handlers
from dmengine.container import get_engine, get_messaging
from dmengine.domain.chat.sockets import DmNamespace, relay_events, set_namespace
from dmengine.obs import init as obs_init
from dmengine.obs.logging import get_logger
from dmengine.settings import settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	engine = get_engine()
	relay = asyncio.create_task(relay_events(engine.bus), name="dm-event-relay")
	logger.info("dmengine_started", extra={"store_backend": settings.store_backend})
	try:
		yield
	finally:
		relay.cancel()
		(outcome,) = await asyncio.gather(relay, return_exceptions=True)
		if isinstance(outcome, Exception):
			logger.error("dm_event_relay_crashed", exc_info=outcome)


app = FastAPI(title="Direct Message Engine", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []
# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins:
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else []
app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
dm_namespace = DmNamespace(get_messaging)
sio.register_namespace(dm_namespace)
set_namespace(dm_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app, socketio_path=settings.socketio_path)
obs_init(app)

app.include_router(chat.router)
app.include_router(social.router)
app.include_router(ops.router)
