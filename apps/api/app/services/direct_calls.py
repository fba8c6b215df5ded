"""Life cycle of one-to-one calls.

Every transition re-reads the call record it mutates. Persistence failures are
logged and swallowed: the signaling event is relayed regardless, so a failed
log write can never leave a call hanging.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.call import LIVE_STATUSES, CallStatus, CallType, DirectCall
from ..repositories import calls as calls_repo
from .clock import Clock, elapsed_seconds, utc_now
from .signaling import SignalRelay

logger = logging.getLogger(__name__)

T = TypeVar("T")

EVENT_INCOMING = "call:incoming"
EVENT_ACCEPTED = "call:accepted"
EVENT_DECLINED = "call:declined"
EVENT_END = "call:end"


@dataclass(slots=True)
class DirectCallSnapshot:
    """Detached view of a call record after a transition."""

    id: str
    caller_id: str
    callee_id: str
    type: CallType
    status: CallStatus
    started_at: datetime | None
    ended_at: datetime | None
    duration_seconds: int | None

    @classmethod
    def from_model(cls, call: DirectCall) -> "DirectCallSnapshot":
        return cls(
            id=call.id,
            caller_id=call.caller_id,
            callee_id=call.callee_id,
            type=call.type,
            status=call.status,
            started_at=call.started_at,
            ended_at=call.ended_at,
            duration_seconds=call.duration_seconds,
        )


def finish_call(call: DirectCall, now: datetime) -> None:
    """Close a live call: completed when it was ever answered, missed otherwise."""

    call.ended_at = now
    if call.started_at is not None:
        call.status = CallStatus.COMPLETED
        call.duration_seconds = elapsed_seconds(call.started_at, now)
    else:
        call.status = CallStatus.MISSED


class DirectCallMachine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        relay: SignalRelay,
        *,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._session_factory = session_factory
        self._relay = relay
        self._clock = clock
        self._id_factory = id_factory

    async def _persist(
        self, action: str, operation: Callable[[AsyncSession], Awaitable[T]]
    ) -> T | None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await operation(session)
        except Exception:  # noqa: BLE001 - call logs are best effort
            logger.exception("Failed to persist direct call %s", action)
            return None

    async def _resolve(
        self,
        session: AsyncSession,
        *,
        call_id: str | None,
        caller_id: str,
        callee_id: str,
        statuses: tuple[CallStatus, ...],
        either_direction: bool = False,
    ) -> DirectCall | None:
        """Prefer the explicit call id; fall back to the newest matching record."""

        if call_id:
            call = await calls_repo.get_by_id(session, call_id)
            if call is not None and call.status in statuses:
                pair = {call.caller_id, call.callee_id}
                oriented = call.caller_id == caller_id and call.callee_id == callee_id
                if oriented or (either_direction and pair == {caller_id, callee_id}):
                    return call
        return await calls_repo.latest_between(
            session,
            caller_id=caller_id,
            callee_id=callee_id,
            statuses=statuses,
            either_direction=either_direction,
        )

    async def request(
        self,
        caller_id: str,
        callee_id: str,
        *,
        from_user: dict[str, Any] | None,
        call_type: str | None,
        offer: Any = None,
    ) -> DirectCallSnapshot | None:
        """Open a new ringing call and ring the callee."""

        now = self._clock()
        kind = CallType.parse(call_type)

        async def operation(session: AsyncSession) -> DirectCallSnapshot:
            call = await calls_repo.create_call(
                session,
                call_id=self._id_factory(),
                caller_id=caller_id,
                callee_id=callee_id,
                call_type=kind,
                created_at=now,
            )
            return DirectCallSnapshot.from_model(call)

        snapshot = await self._persist("request", operation)
        await self._relay.send_to_user(
            callee_id,
            EVENT_INCOMING,
            {
                "fromUser": from_user,
                "callType": call_type,
                "offer": offer,
                "callId": snapshot.id if snapshot else None,
            },
        )
        return snapshot

    async def accepted(
        self,
        callee_id: str,
        caller_id: str,
        *,
        answer: Any = None,
        call_id: str | None = None,
    ) -> DirectCallSnapshot | None:
        """The callee picked up: the newest ringing call from the caller becomes active."""

        now = self._clock()

        async def operation(session: AsyncSession) -> DirectCallSnapshot | None:
            call = await self._resolve(
                session,
                call_id=call_id,
                caller_id=caller_id,
                callee_id=callee_id,
                statuses=(CallStatus.RINGING,),
            )
            if call is None:
                return None
            call.status = CallStatus.ACTIVE
            call.started_at = now
            session.add(call)
            return DirectCallSnapshot.from_model(call)

        snapshot = await self._persist("accept", operation)
        await self._relay.send_to_user(
            caller_id,
            EVENT_ACCEPTED,
            {"answer": answer, "callId": snapshot.id if snapshot else call_id},
        )
        return snapshot

    async def declined(
        self,
        callee_id: str,
        caller_id: str,
        *,
        call_id: str | None = None,
    ) -> DirectCallSnapshot | None:
        """The callee rejected the call; it is logged as missed."""

        now = self._clock()

        async def operation(session: AsyncSession) -> DirectCallSnapshot | None:
            call = await self._resolve(
                session,
                call_id=call_id,
                caller_id=caller_id,
                callee_id=callee_id,
                statuses=LIVE_STATUSES,
            )
            if call is None:
                return None
            call.status = CallStatus.MISSED
            call.ended_at = now
            session.add(call)
            return DirectCallSnapshot.from_model(call)

        snapshot = await self._persist("decline", operation)
        await self._relay.send_to_user(
            caller_id,
            EVENT_DECLINED,
            {"fromUserId": callee_id, "callId": snapshot.id if snapshot else call_id},
        )
        return snapshot

    async def end(
        self,
        ender_id: str,
        other_id: str,
        *,
        call_id: str | None = None,
    ) -> DirectCallSnapshot | None:
        """Either party hung up; match the newest live call in both directions."""

        now = self._clock()

        async def operation(session: AsyncSession) -> DirectCallSnapshot | None:
            call = await self._resolve(
                session,
                call_id=call_id,
                caller_id=ender_id,
                callee_id=other_id,
                statuses=LIVE_STATUSES,
                either_direction=True,
            )
            if call is None:
                return None
            finish_call(call, now)
            session.add(call)
            return DirectCallSnapshot.from_model(call)

        snapshot = await self._persist("end", operation)
        await self._relay.send_to_user(
            other_id,
            EVENT_END,
            {"fromUserId": ender_id, "callId": snapshot.id if snapshot else call_id},
        )
        return snapshot

    async def end_all_for_user(self, user_id: str) -> list[DirectCallSnapshot]:
        """Close every live call of a user who went offline and tell the peers."""

        now = self._clock()

        async def operation(session: AsyncSession) -> list[DirectCallSnapshot]:
            calls = await calls_repo.list_live_for_user(session, user_id, LIVE_STATUSES)
            for call in calls:
                finish_call(call, now)
                session.add(call)
            return [DirectCallSnapshot.from_model(call) for call in calls]

        snapshots = await self._persist("disconnect cleanup", operation) or []
        for snapshot in snapshots:
            peer = snapshot.callee_id if snapshot.caller_id == user_id else snapshot.caller_id
            await self._relay.send_to_user(peer, EVENT_END, {"fromUserId": user_id, "callId": snapshot.id})
        return snapshots
