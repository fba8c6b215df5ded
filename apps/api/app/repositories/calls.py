"""Direct call repository helpers."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import Select, and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.call import CallStatus, CallType, DirectCall


async def get_by_id(session: AsyncSession, call_id: str) -> DirectCall | None:
    """Return a call record by identifier."""

    return await session.get(DirectCall, call_id)


async def create_call(
    session: AsyncSession,
    *,
    call_id: str,
    caller_id: str,
    callee_id: str,
    call_type: CallType,
    created_at: datetime,
) -> DirectCall:
    """Persist a new ringing call attempt."""

    call = DirectCall(
        id=call_id,
        caller_id=caller_id,
        callee_id=callee_id,
        type=call_type,
        status=CallStatus.RINGING,
        created_at=created_at,
        updated_at=created_at,
    )
    session.add(call)
    await session.flush()
    return call


def _pair_clause(caller_id: str, callee_id: str, *, either_direction: bool):
    forward = and_(DirectCall.caller_id == caller_id, DirectCall.callee_id == callee_id)
    if not either_direction:
        return forward
    backward = and_(DirectCall.caller_id == callee_id, DirectCall.callee_id == caller_id)
    return or_(forward, backward)


async def latest_between(
    session: AsyncSession,
    *,
    caller_id: str,
    callee_id: str,
    statuses: Iterable[CallStatus],
    either_direction: bool = False,
) -> DirectCall | None:
    """Return the newest call for the pair whose status is in ``statuses``.

    Direction matters unless ``either_direction`` is set: the record must have
    been placed by ``caller_id`` to ``callee_id``.
    """

    stmt: Select[tuple[DirectCall]] = (
        select(DirectCall)
        .where(
            _pair_clause(caller_id, callee_id, either_direction=either_direction),
            DirectCall.status.in_(list(statuses)),
        )
        .order_by(DirectCall.created_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_between(session: AsyncSession, user_id: str, other_id: str) -> list[DirectCall]:
    """Return the call log between two users, newest first."""

    stmt = (
        select(DirectCall)
        .where(_pair_clause(user_id, other_id, either_direction=True))
        .order_by(DirectCall.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_live_for_user(
    session: AsyncSession,
    user_id: str,
    statuses: Iterable[CallStatus],
) -> list[DirectCall]:
    """Return unfinished calls the user placed or received, newest first."""

    stmt = (
        select(DirectCall)
        .where(
            or_(DirectCall.caller_id == user_id, DirectCall.callee_id == user_id),
            DirectCall.status.in_(list(statuses)),
        )
        .order_by(DirectCall.created_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
