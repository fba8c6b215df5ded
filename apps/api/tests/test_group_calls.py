"""Tests for the group call state machine."""
from __future__ import annotations

import asyncio
from itertools import count

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from app.models.call import CallStatus
from app.models.group_call import GroupCall
from app.repositories.group_calls import active_with_participant_stmt
from app.services.group_calls import GroupCallMachine
from app.services.groups import GroupDirectory
from app.services.presence import PresenceRegistry
from app.services.signaling import SignalRelay

from conftest import DummyConnection, seed_group


def _sequential_ids():
    counter = count(1)
    return lambda: f"gcall-{next(counter)}"


@pytest.fixture
def registry() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture
def machine(session_factory, registry, clock) -> GroupCallMachine:
    groups = GroupDirectory(session_factory)
    relay = SignalRelay(registry, groups)
    return GroupCallMachine(session_factory, relay, groups, clock=clock, id_factory=_sequential_ids())


async def _connect(registry: PresenceRegistry, *user_ids: str) -> dict[str, DummyConnection]:
    connections = {}
    for user_id in user_ids:
        connections[user_id] = DummyConnection(user_id)
        await registry.register(user_id, connections[user_id].handle)
    return connections


@pytest.mark.asyncio
async def test_request_rings_everyone_but_initiator(machine, registry, session_factory):
    await seed_group(session_factory, "g1", ["a", "b", "c"])
    conns = await _connect(registry, "a", "b", "c")

    snapshot = await machine.request("a", "g1", from_user={"_id": "a"}, call_type="video")

    assert snapshot is not None
    assert snapshot.status is CallStatus.ACTIVE
    assert snapshot.participants_accepted == ["a"]
    assert snapshot.participants_active == ["a"]
    assert snapshot.started_at is not None
    assert conns["a"].messages == []
    expected = {"groupId": "g1", "fromUser": {"_id": "a"}, "callType": "video", "callId": "gcall-1"}
    assert conns["b"].events("group:call:incoming")[0]["data"] == expected
    assert conns["c"].events("group:call:incoming")[0]["data"] == expected


@pytest.mark.asyncio
async def test_unknown_group_request_is_ignored(machine, registry, session_factory):
    conns = await _connect(registry, "a", "b")

    assert await machine.request("a", "nope", from_user=None, call_type="audio") is None

    async with session_factory() as session:
        rows = (await session.execute(select(GroupCall))).scalars().all()
    assert rows == []
    assert conns["b"].messages == []


@pytest.mark.asyncio
async def test_three_members_converge_and_call_completes(machine, registry, clock, session_factory):
    await seed_group(session_factory, "g1", ["a", "b", "c"])
    conns = await _connect(registry, "a", "b", "c")

    await machine.request("a", "g1", from_user={"_id": "a"}, call_type="audio")
    clock.advance(1)
    await machine.accepted("g1", "b", user={"_id": "b"})
    joined = await machine.accepted("g1", "c", user={"_id": "c"})
    assert joined is not None
    assert joined.participants_active == ["a", "b", "c"]
    assert len(conns["a"].events("group:call:participant-joined")) == 2

    clock.advance(10)
    first = await machine.left("g1", "a")
    second = await machine.left("g1", "b")
    assert not first.ended and not second.ended
    assert conns["c"].events("group:call:end") == []

    clock.advance(20)
    last = await machine.left("g1", "c")

    assert last.ended
    assert last.call is not None
    assert last.call.status is CallStatus.COMPLETED
    assert last.call.participants_active == []
    assert last.call.participants_accepted == ["a", "b", "c"]
    assert last.call.duration_seconds == 31
    left_events = conns["a"].events("group:call:participant-left")
    assert [event["data"]["userId"] for event in left_events] == ["a", "b", "c"]
    for user_id in ("a", "b", "c"):
        assert conns[user_id].events("group:call:end") == [
            {"event": "group:call:end", "data": {"groupId": "g1"}}
        ]


@pytest.mark.asyncio
async def test_accept_is_idempotent(machine, registry, session_factory):
    await seed_group(session_factory, "g1", ["a", "b"])
    await _connect(registry, "a", "b")
    await machine.request("a", "g1", from_user=None, call_type="audio")

    await machine.accepted("g1", "b")
    again = await machine.accepted("g1", "b")

    assert again is not None
    assert again.participants_accepted == ["a", "b"]
    assert again.participants_active == ["a", "b"]


@pytest.mark.asyncio
async def test_ended_call_is_not_rejoined_or_refinished(machine, registry, clock, session_factory):
    await seed_group(session_factory, "g1", ["a", "b"])
    conns = await _connect(registry, "a", "b")
    await machine.request("a", "g1", from_user=None, call_type="audio")
    clock.advance(3)
    finished = await machine.left("g1", "a")
    assert finished.ended

    clock.advance(60)
    joined_before = len(conns["a"].events("group:call:participant-joined"))
    late_join = await machine.accepted("g1", "b")
    late_leave = await machine.left("g1", "b")

    assert late_join is not None
    assert late_join.status is CallStatus.COMPLETED
    assert late_join.participants_active == []
    assert not late_leave.ended
    assert late_leave.call is not None
    assert late_leave.call.duration_seconds == 3
    assert len(conns["a"].events("group:call:participant-joined")) == joined_before


@pytest.mark.asyncio
async def test_leave_without_any_call(machine, registry, session_factory):
    await seed_group(session_factory, "g1", ["a", "b"])
    conns = await _connect(registry, "a", "b")

    result = await machine.left("g1", "a")

    assert result.call is None
    assert not result.ended
    assert len(conns["b"].events("group:call:participant-left")) == 1
    assert conns["b"].events("group:call:end") == []


@pytest.mark.asyncio
async def test_declined_is_relay_only(machine, registry, session_factory):
    await seed_group(session_factory, "g1", ["a", "b"])
    conns = await _connect(registry, "a", "b")
    await machine.request("a", "g1", from_user=None, call_type="audio")

    await machine.declined("g1", user={"_id": "b"})

    assert conns["a"].events("group:call:participant-declined")[0]["data"] == {
        "groupId": "g1",
        "user": {"_id": "b"},
    }
    async with session_factory() as session:
        call = await session.get(GroupCall, "gcall-1")
    assert call is not None
    assert call.participants_active == ["a"]


@pytest.mark.asyncio
async def test_disconnect_cleanup_leaves_each_group_once(machine, registry, session_factory):
    await seed_group(session_factory, "g1", ["a", "b"])
    await seed_group(session_factory, "g2", ["a", "c"])
    conns = await _connect(registry, "a", "b", "c")
    await machine.request("b", "g1", from_user=None, call_type="audio")
    await machine.accepted("g1", "a")
    await machine.request("c", "g2", from_user=None, call_type="audio")
    await machine.accepted("g2", "a")

    processed = await machine.disconnect_cleanup("a")

    assert sorted(processed) == ["g1", "g2"]
    assert len(conns["b"].events("group:call:participant-left")) == 1
    assert len(conns["c"].events("group:call:participant-left")) == 1
    assert await machine.disconnect_cleanup("a") == []


@pytest.mark.asyncio
async def test_simultaneous_accepts_keep_both_participants(machine, registry, session_factory):
    await seed_group(session_factory, "g1", ["a", "b", "c"])
    await _connect(registry, "a", "b", "c")
    await machine.request("a", "g1", from_user=None, call_type="audio")

    await asyncio.gather(machine.accepted("g1", "b"), machine.accepted("g1", "c"))

    async with session_factory() as session:
        call = await session.get(GroupCall, "gcall-1")
    assert call is not None
    assert sorted(call.participants_active) == ["a", "b", "c"]
    assert sorted(call.participants_accepted) == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_simultaneous_leaves_end_the_call(machine, registry, session_factory):
    await seed_group(session_factory, "g1", ["a", "b"])
    conns = await _connect(registry, "a", "b")
    await machine.request("a", "g1", from_user=None, call_type="audio")
    await machine.accepted("g1", "b")

    results = await asyncio.gather(machine.left("g1", "a"), machine.left("g1", "b"))

    assert [result.ended for result in results].count(True) == 1
    async with session_factory() as session:
        call = await session.get(GroupCall, "gcall-1")
    assert call is not None
    assert call.status is CallStatus.COMPLETED
    assert call.participants_active == []
    assert len(conns["a"].events("group:call:end")) == 1


def test_postgres_participant_lookup_uses_containment():
    stmt = active_with_participant_stmt("a", "postgresql")
    sql = str(stmt.compile(dialect=postgresql.dialect()))

    assert "@>" in sql
    assert "@>" not in str(active_with_participant_stmt("a", "sqlite"))
