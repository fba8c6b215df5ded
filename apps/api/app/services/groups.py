"""Group membership lookups used to fan out group-scoped events."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..repositories import groups as groups_repo


class GroupDirectory:
    """Resolve group members from the database on every call; nothing is cached."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_members(self, group_id: str) -> list[str] | None:
        """Return member ids as strings, or None when the group is unknown."""

        async with self._session_factory() as session:
            members = await groups_repo.get_member_ids(session, str(group_id))
        if members is None:
            return None
        return [str(member) for member in members]
