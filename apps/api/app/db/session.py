"""Database engine and session management."""
from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ..core.config import Settings
from .. import models as _models  # noqa: F401 - registers tables on the metadata
from ..models.base import Base


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine described by the settings."""

    url = settings.database_async_url
    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across sessions.
        return create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    connect_args: dict[str, object] = {}
    if settings.database_ssl_required:
        connect_args["ssl"] = True
    return create_async_engine(url, echo=False, pool_pre_ping=True, connect_args=connect_args)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables known to the declarative base."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency to provide an async session."""

    async with request.app.state.session_factory() as session:
        yield session
