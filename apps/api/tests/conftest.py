"""Shared fixtures: in-memory database, fake clock and dummy connections."""
from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.db.session import build_engine, build_session_factory, create_schema
from app.models.group import Group, GroupMember
from app.services.presence import SignalingConnection


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class DummyConnection:
    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        self.messages: list[dict] = []
        self.handle = SignalingConnection(user_id=user_id, send=self.send)

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    def events(self, name: str | None = None) -> list[dict]:
        if name is None:
            return self.messages
        return [message for message in self.messages if message["event"] == name]


class FailingConnection(DummyConnection):
    async def send(self, message: dict) -> None:
        raise RuntimeError("socket closed")


async def seed_group(
    session_factory: async_sessionmaker[AsyncSession],
    group_id: str,
    members: list[str],
    *,
    name: str = "Test group",
) -> None:
    base = datetime(2024, 12, 1, tzinfo=timezone.utc)
    async with session_factory() as session:
        async with session.begin():
            session.add(Group(id=group_id, name=name, admin_id=members[0], created_at=base))
            for offset, user_id in enumerate(members):
                session.add(
                    GroupMember(
                        group_id=group_id,
                        user_id=user_id,
                        joined_at=base + timedelta(seconds=offset),
                    )
                )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = build_engine(Settings(database_url="sqlite+aiosqlite://"))
    await create_schema(engine)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()
