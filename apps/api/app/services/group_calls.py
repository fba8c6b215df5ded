"""Life cycle of group calls.

A group call starts active with its initiator inside and stays alive while
anyone remains in ``participants_active``; it ends the moment that list
empties. Only the newest record of a group is live, and every mutation
re-reads it instead of trusting a reference taken earlier.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.call import LIVE_STATUSES, CallStatus, CallType
from ..models.group_call import GroupCall
from ..repositories import group_calls as group_calls_repo
from .clock import Clock, elapsed_seconds, utc_now
from .signaling import MemberLookup, SignalRelay

logger = logging.getLogger(__name__)

T = TypeVar("T")

EVENT_INCOMING = "group:call:incoming"
EVENT_JOINED = "group:call:participant-joined"
EVENT_DECLINED = "group:call:participant-declined"
EVENT_LEFT = "group:call:participant-left"
EVENT_END = "group:call:end"


@dataclass(slots=True)
class GroupCallSnapshot:
    id: str
    group_id: str
    initiator_id: str
    type: CallType
    status: CallStatus
    participants_accepted: list[str] = field(default_factory=list)
    participants_active: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_seconds: int | None = None

    @classmethod
    def from_model(cls, call: GroupCall) -> "GroupCallSnapshot":
        return cls(
            id=call.id,
            group_id=call.group_id,
            initiator_id=call.initiator_id,
            type=call.type,
            status=call.status,
            participants_accepted=list(call.participants_accepted or []),
            participants_active=list(call.participants_active or []),
            started_at=call.started_at,
            ended_at=call.ended_at,
            duration_seconds=call.duration_seconds,
        )


@dataclass(slots=True)
class LeaveResult:
    call: GroupCallSnapshot | None
    ended: bool = False


def _with_member(members: list[str] | None, user_id: str) -> list[str]:
    current = [str(member) for member in members or []]
    if user_id not in current:
        current.append(user_id)
    return current


def _without_member(members: list[str] | None, user_id: str) -> list[str]:
    return [str(member) for member in members or [] if str(member) != user_id]


class GroupCallMachine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        relay: SignalRelay,
        groups: MemberLookup,
        *,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._session_factory = session_factory
        self._relay = relay
        self._groups = groups
        self._clock = clock
        self._id_factory = id_factory
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, group_id: str) -> asyncio.Lock:
        """One lock per group: each transition reads and rewrites the participant lists."""

        lock = self._locks.get(group_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[group_id] = lock
        return lock

    async def _persist(
        self, action: str, operation: Callable[[AsyncSession], Awaitable[T]]
    ) -> T | None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await operation(session)
        except Exception:  # noqa: BLE001 - call logs are best effort
            logger.exception("Failed to persist group call %s", action)
            return None

    async def _members(self, group_id: str) -> list[str] | None:
        try:
            return await self._groups.get_members(group_id)
        except Exception:  # noqa: BLE001 - treat lookup failures as an unknown group
            logger.exception("Group member lookup failed for %s", group_id)
            return None

    async def request(
        self,
        initiator_id: str,
        group_id: str,
        *,
        from_user: dict[str, Any] | None,
        call_type: str | None,
    ) -> GroupCallSnapshot | None:
        """Start a call in the group and ring every other member."""

        members = await self._members(group_id)
        if members is None:
            logger.debug("Ignoring group call request for unknown group %s", group_id)
            return None

        now = self._clock()

        async def operation(session: AsyncSession) -> GroupCallSnapshot:
            call = await group_calls_repo.create_group_call(
                session,
                call_id=self._id_factory(),
                group_id=group_id,
                initiator_id=initiator_id,
                call_type=CallType.parse(call_type),
                started_at=now,
            )
            return GroupCallSnapshot.from_model(call)

        async with self._lock_for(group_id):
            snapshot = await self._persist("request", operation)
        await self._relay.send_to_group(
            group_id,
            EVENT_INCOMING,
            {
                "groupId": group_id,
                "fromUser": from_user,
                "callType": call_type,
                "callId": snapshot.id if snapshot else None,
            },
            exclude=initiator_id,
            members=members,
        )
        return snapshot

    async def accepted(
        self,
        group_id: str,
        user_id: str,
        *,
        user: dict[str, Any] | None = None,
    ) -> GroupCallSnapshot | None:
        """Add a participant to the live call; accepting twice changes nothing."""

        now = self._clock()

        async def operation(session: AsyncSession) -> GroupCallSnapshot | None:
            call = await group_calls_repo.latest_for_group(session, group_id)
            if call is None:
                return None
            if call.status not in LIVE_STATUSES:
                # An ended call cannot be rejoined; the next request opens a new one.
                return GroupCallSnapshot.from_model(call)
            if call.started_at is None:
                call.status = CallStatus.ACTIVE
                call.started_at = now
            call.participants_accepted = _with_member(call.participants_accepted, user_id)
            call.participants_active = _with_member(call.participants_active, user_id)
            session.add(call)
            return GroupCallSnapshot.from_model(call)

        async with self._lock_for(group_id):
            snapshot = await self._persist("accept", operation)
        if snapshot is not None and snapshot.status not in LIVE_STATUSES:
            logger.debug("Ignoring join of ended call %s by %s", snapshot.id, user_id)
            return snapshot
        # The joiner is included so their other devices stay in sync.
        await self._relay.send_to_group(group_id, EVENT_JOINED, {"groupId": group_id, "user": user})
        return snapshot

    async def declined(self, group_id: str, *, user: dict[str, Any] | None = None) -> None:
        await self._relay.send_to_group(group_id, EVENT_DECLINED, {"groupId": group_id, "user": user})

    async def left(self, group_id: str, user_id: str) -> LeaveResult:
        """Remove a participant; the call ends when nobody is left."""

        now = self._clock()

        async def operation(session: AsyncSession) -> LeaveResult:
            call = await group_calls_repo.latest_for_group(session, group_id)
            if call is None:
                return LeaveResult(call=None)
            if call.status not in LIVE_STATUSES:
                return LeaveResult(call=GroupCallSnapshot.from_model(call))
            call.participants_active = _without_member(call.participants_active, user_id)
            ended = not call.participants_active
            if ended:
                call.ended_at = now
                if call.started_at is not None:
                    call.status = CallStatus.COMPLETED
                    call.duration_seconds = elapsed_seconds(call.started_at, now)
                else:
                    call.status = CallStatus.MISSED
            session.add(call)
            return LeaveResult(call=GroupCallSnapshot.from_model(call), ended=ended)

        async with self._lock_for(group_id):
            result = await self._persist("leave", operation) or LeaveResult(call=None)

        members = await self._members(group_id)
        await self._relay.send_to_group(
            group_id, EVENT_LEFT, {"groupId": group_id, "userId": user_id}, members=members
        )
        if result.ended:
            await self._relay.send_to_group(group_id, EVENT_END, {"groupId": group_id}, members=members)
        return result

    async def disconnect_cleanup(self, user_id: str) -> list[str]:
        """Leave every running call the user was present in, once per group."""

        async def operation(session: AsyncSession) -> list[str]:
            calls = await group_calls_repo.list_active_with_participant(session, user_id)
            return [call.group_id for call in calls]

        group_ids = await self._persist("disconnect lookup", operation) or []
        processed: list[str] = []
        for group_id in group_ids:
            if group_id in processed:
                continue
            processed.append(group_id)
            try:
                await self.left(group_id, user_id)
            except Exception:  # noqa: BLE001 - keep cleaning up the remaining groups
                logger.exception("Disconnect cleanup failed for group %s", group_id)
        return processed
