"""FastAPI application for the realtime chat core."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .core.config import Settings, get_settings
from .db.session import build_engine, build_session_factory, create_schema
from .routers import calls as calls_router
from .routers import realtime as realtime_router
from .services.hub import build_hub
from .services.rate_limiter import RateLimiter, WriteRateLimitMiddleware

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    engine = build_engine(settings)
    if settings.database_create_all:
        await create_schema(engine)
    session_factory = build_session_factory(engine)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.hub = build_hub(
        session_factory,
        end_direct_calls_on_disconnect=settings.end_direct_calls_on_disconnect,
    )
    logger.info("Realtime core started (env=%s)", settings.app_env)
    try:
        yield
    finally:
        await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Realtime Chat Core API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.api_limiter = RateLimiter(settings.rate_limit_window_ms, settings.rate_limit_max_requests)
    app.state.message_limiter = RateLimiter(
        settings.message_rate_limit_window_ms, settings.message_rate_limit_max
    )

    app.add_middleware(WriteRateLimitMiddleware, limiter=app.state.api_limiter)
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(calls_router.router, prefix="/api/calls", tags=["calls"])
    app.include_router(calls_router.group_router, prefix="/api/group-calls", tags=["calls"])
    app.include_router(realtime_router.router)

    @app.get("/api/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Simple liveness probe."""

        return {"status": "ok", "env": settings.app_env}

    @app.head("/api/health", tags=["meta"])
    async def health_head() -> Response:
        """Allow HEAD for uptime monitors that only need the status code."""

        return Response(status_code=200)

    return app


app = create_app()
