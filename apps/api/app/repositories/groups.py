"""Group membership lookups."""
from __future__ import annotations

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.group import Group, GroupMember


async def get_member_ids(session: AsyncSession, group_id: str) -> list[str] | None:
    """Return member ids in join order, or None when the group does not exist."""

    group = await session.get(Group, group_id)
    if group is None:
        return None
    stmt: Select[tuple[str]] = (
        select(GroupMember.user_id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.joined_at.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_group_ids_for_user(session: AsyncSession, user_id: str) -> list[str]:
    stmt = select(GroupMember.group_id).where(GroupMember.user_id == user_id)
    result = await session.execute(stmt)
    return list(result.scalars().all())
