"""Group call persistence helpers."""
from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import Select, select, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.call import CallStatus, CallType
from ..models.group_call import GroupCall


async def create_group_call(
    session: AsyncSession,
    *,
    call_id: str,
    group_id: str,
    initiator_id: str,
    call_type: CallType,
    started_at: datetime,
) -> GroupCall:
    """Persist a group call that is already active with its initiator inside."""

    call = GroupCall(
        id=call_id,
        group_id=group_id,
        initiator_id=initiator_id,
        type=call_type,
        status=CallStatus.ACTIVE,
        started_at=started_at,
        participants_accepted=[initiator_id],
        participants_active=[initiator_id],
        created_at=started_at,
        updated_at=started_at,
    )
    session.add(call)
    await session.flush()
    return call


async def latest_for_group(session: AsyncSession, group_id: str) -> GroupCall | None:
    """Return the newest call record for the group, whatever its status."""

    stmt: Select[tuple[GroupCall]] = (
        select(GroupCall)
        .where(GroupCall.group_id == group_id)
        .order_by(GroupCall.created_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_for_group(session: AsyncSession, group_id: str) -> list[GroupCall]:
    stmt = select(GroupCall).where(GroupCall.group_id == group_id).order_by(GroupCall.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


def _active_filter():
    return (GroupCall.status == CallStatus.ACTIVE, GroupCall.ended_at.is_(None))


async def list_active_for_groups(session: AsyncSession, group_ids: Sequence[str]) -> list[GroupCall]:
    """Return running calls across the given groups, newest first."""

    if not group_ids:
        return []
    stmt = (
        select(GroupCall)
        .where(GroupCall.group_id.in_(list(group_ids)), *_active_filter())
        .order_by(GroupCall.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


def active_with_participant_stmt(user_id: str, dialect_name: str) -> Select[tuple[GroupCall]]:
    stmt = select(GroupCall).where(*_active_filter()).order_by(GroupCall.created_at.desc())
    if dialect_name == "postgresql":
        stmt = stmt.where(type_coerce(GroupCall.participants_active, JSONB).contains([user_id]))
    return stmt


async def list_active_with_participant(session: AsyncSession, user_id: str) -> list[GroupCall]:
    """Return running calls where the user is currently present."""

    dialect_name = session.get_bind().dialect.name
    result = await session.execute(active_with_participant_stmt(user_id, dialect_name))
    calls = list(result.scalars().all())
    if dialect_name == "postgresql":
        return calls
    return [call for call in calls if user_id in (call.participants_active or [])]
