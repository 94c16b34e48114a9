from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_sync.api.middleware.correlation_id import CorrelationIdMiddleware
from chat_sync.api.v1.routers import health, view, ws
from chat_sync.application.exceptions import (
    AppError,
    ConnectionLostError,
    NoActiveViewError,
    NotFoundError,
    PendingWriteError,
    TransportError,
    UnauthorizedError,
    ValidationError,
)
from chat_sync.config import Settings, settings
from chat_sync.domain.value_objects.enums import SendPolicy
from chat_sync.infrastructure.bus.redis_pubsub import RedisChangeFeed, RedisPubSubPublisher
from chat_sync.infrastructure.db.repositories.message import SqlMessageLog
from chat_sync.infrastructure.db.repositories.profile import SqlProfileDirectory
from chat_sync.infrastructure.db.session import build_engine, build_session_factory
from chat_sync.services.conversation_session import ConversationSession, SessionRegistry

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[AppError], int] = {
    UnauthorizedError: 403,
    NotFoundError: 404,
    PendingWriteError: 409,
    NoActiveViewError: 409,
    ValidationError: 422,
    TransportError: 502,
    ConnectionLostError: 503,
}


def build_registry(app: FastAPI, cfg: Settings) -> SessionRegistry:
    """Wire Postgres + Redis adapters into a session registry."""
    app.state.redis = aioredis.from_url(cfg.REDIS_URL, decode_responses=True)
    app.state.db_engine = build_engine(cfg)
    session_factory = build_session_factory(app.state.db_engine)

    publisher = RedisPubSubPublisher(app.state.redis, cfg.FEED_CHANNEL_PREFIX)
    factory = partial(
        ConversationSession,
        message_log=SqlMessageLog(session_factory, publisher),
        feed=RedisChangeFeed(app.state.redis, cfg.FEED_CHANNEL_PREFIX),
        directory=SqlProfileDirectory(session_factory),
        policy=SendPolicy(cfg.OPTIMISTIC_SEND_POLICY),
        optimistic_delete=cfg.OPTIMISTIC_DELETE,
        echo_window=cfg.echo_window,
        placeholder_label=cfg.PLACEHOLDER_DISPLAY_NAME,
        resync_delay=cfg.RESYNC_DELAY_SECONDS,
    )
    logger.info("Redis and Postgres connection pools created")
    return SessionRegistry(factory)


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    """Build the local view API. Tests pass a pre-wired ``registry``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.registry = registry if registry is not None else build_registry(app, settings)
        app.state.ws_heartbeat_seconds = settings.WS_HEARTBEAT_SECONDS

        yield

        await app.state.registry.close_all()
        redis = getattr(app.state, "redis", None)
        if redis is not None:
            await redis.aclose()
        db_engine = getattr(app.state, "db_engine", None)
        if db_engine is not None:
            await db_engine.dispose()
            logger.info("Redis and Postgres connection pools closed")

    app = FastAPI(
        title="Chat Sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(view.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(_req: Request, exc: AppError) -> JSONResponse:
        status_code = next(
            (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
            500,
        )
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.detail, "kind": exc.kind.value},
        )
