"""Tests for event dispatch through the signaling hub."""
from __future__ import annotations

import pytest
from sqlalchemy import func, select

from app.models.call import CallStatus, DirectCall
from app.services.clock import epoch_millis
from app.services.hub import build_hub

from conftest import DummyConnection, seed_group


@pytest.fixture
def hub(session_factory, clock):
    return build_hub(session_factory, clock=clock)


async def _connect(hub, user_id: str) -> DummyConnection:
    connection = DummyConnection(user_id)
    await hub.connect(connection.handle)
    return connection


async def _direct_call_count(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(DirectCall))).scalar_one()


@pytest.mark.asyncio
async def test_presence_changes_are_broadcast(hub):
    alice = await _connect(hub, "alice")
    bob = await _connect(hub, "bob")

    assert alice.events("online-users-changed")[-1]["data"] == {"userIds": ["alice", "bob"]}

    await hub.disconnect(bob.handle)
    assert alice.events("online-users-changed")[-1]["data"] == {"userIds": ["alice"]}


@pytest.mark.asyncio
async def test_call_request_rings_callee_and_acks_caller(hub, session_factory):
    alice = await _connect(hub, "alice")
    bob = await _connect(hub, "bob")

    await hub.dispatch(alice.handle, "call:request", {"toUserId": "bob", "callType": "audio", "offer": "sdp"})

    incoming = bob.events("call:incoming")
    assert len(incoming) == 1
    call_id = incoming[0]["data"]["callId"]
    assert alice.events("call:ringing") == [
        {"event": "call:ringing", "data": {"callId": call_id, "toUserId": "bob"}}
    ]
    assert await _direct_call_count(session_factory) == 1


@pytest.mark.asyncio
async def test_malformed_payloads_are_dropped(hub, session_factory):
    alice = await _connect(hub, "alice")
    bob = await _connect(hub, "bob")
    before = len(bob.messages)

    await hub.dispatch(alice.handle, "call:request", {"callType": "audio"})
    await hub.dispatch(alice.handle, "call:request", None)
    await hub.dispatch(alice.handle, "group:typing", {"groupId": ""})
    await hub.dispatch(alice.handle, "no-such-event", {"toUserId": "bob"})

    assert len(bob.messages) == before
    assert await _direct_call_count(session_factory) == 0


@pytest.mark.asyncio
async def test_numeric_ids_are_accepted(hub):
    alice = await _connect(hub, "alice")
    user_42 = await _connect(hub, "42")

    await hub.dispatch(alice.handle, "chat:typing", {"toUserId": 42})

    assert user_42.events("chat:typing") == [{"event": "chat:typing", "data": {"fromUserId": "alice"}}]


@pytest.mark.asyncio
async def test_sender_identity_comes_from_connection(hub, session_factory):
    alice = await _connect(hub, "alice")
    bob = await _connect(hub, "bob")
    await hub.dispatch(alice.handle, "call:request", {"toUserId": "bob", "fromUser": {"_id": "mallory"}})

    await hub.dispatch(bob.handle, "call:end", {"toUserId": "alice", "fromUserId": "mallory"})

    assert alice.events("call:end")[0]["data"]["fromUserId"] == "bob"
    async with session_factory() as session:
        call = (await session.execute(select(DirectCall))).scalar_one()
    assert call.caller_id == "alice"
    assert call.status is CallStatus.MISSED


@pytest.mark.asyncio
async def test_ice_candidates_and_peer_signals_are_forwarded(hub, session_factory):
    await seed_group(session_factory, "g1", ["alice", "bob"])
    alice = await _connect(hub, "alice")
    bob = await _connect(hub, "bob")

    await hub.dispatch(alice.handle, "webrtc:ice-candidate", {"toUserId": "bob", "candidate": {"c": 1}})
    await hub.dispatch(alice.handle, "group:webrtc:offer", {"toUserId": "bob", "groupId": "g1", "offer": "o"})
    await hub.dispatch(bob.handle, "group:webrtc:answer", {"toUserId": "alice", "groupId": "g1", "answer": "a"})

    assert bob.events("webrtc:ice-candidate")[0]["data"] == {"candidate": {"c": 1}, "fromUserId": "alice"}
    assert bob.events("group:webrtc:offer")[0]["data"] == {"fromUserId": "alice", "groupId": "g1", "offer": "o"}
    assert alice.events("group:webrtc:answer")[0]["data"] == {"fromUserId": "bob", "groupId": "g1", "answer": "a"}


@pytest.mark.asyncio
async def test_group_typing_excludes_sender(hub, session_factory):
    await seed_group(session_factory, "g1", ["a", "b", "c"])
    a = await _connect(hub, "a")
    b = await _connect(hub, "b")
    c = await _connect(hub, "c")

    await hub.dispatch(a.handle, "group:typing", {"groupId": "g1"})
    await hub.dispatch(a.handle, "group:stopTyping", {"groupId": "g1"})

    assert a.events("group:typing") == []
    for member in (b, c):
        assert member.events("group:typing") == [
            {"event": "group:typing", "data": {"groupId": "g1", "fromUserId": "a"}}
        ]
        assert len(member.events("group:stopTyping")) == 1


@pytest.mark.asyncio
async def test_heartbeat_is_acknowledged(hub, clock):
    alice = await _connect(hub, "alice")

    await hub.dispatch(alice.handle, "heartbeat", None)

    assert alice.events("heartbeat:ack") == [
        {"event": "heartbeat:ack", "data": {"t": epoch_millis(clock())}}
    ]


@pytest.mark.asyncio
async def test_group_cleanup_runs_once_when_last_socket_closes(hub, session_factory):
    await seed_group(session_factory, "g1", ["a", "b"])
    a = await _connect(hub, "a")
    b_phone = await _connect(hub, "b")
    b_laptop = await _connect(hub, "b")
    await hub.dispatch(a.handle, "group:call:request", {"groupId": "g1", "callType": "audio"})
    await hub.dispatch(b_laptop.handle, "group:call:accepted", {"groupId": "g1", "user": {"_id": "b"}})

    await hub.disconnect(b_phone.handle)
    assert a.events("group:call:participant-left") == []

    await hub.disconnect(b_laptop.handle)
    assert a.events("group:call:participant-left") == [
        {"event": "group:call:participant-left", "data": {"groupId": "g1", "userId": "b"}}
    ]
    assert a.events("group:call:end") == []


@pytest.mark.asyncio
async def test_direct_calls_survive_disconnect_by_default(hub, session_factory):
    alice = await _connect(hub, "alice")
    bob = await _connect(hub, "bob")
    await hub.dispatch(alice.handle, "call:request", {"toUserId": "bob"})

    await hub.disconnect(alice.handle)

    assert bob.events("call:end") == []
    async with session_factory() as session:
        call = (await session.execute(select(DirectCall))).scalar_one()
    assert call.status is CallStatus.RINGING


@pytest.mark.asyncio
async def test_direct_calls_end_on_disconnect_when_enabled(session_factory, clock):
    hub = build_hub(session_factory, end_direct_calls_on_disconnect=True, clock=clock)
    alice = await _connect(hub, "alice")
    bob = await _connect(hub, "bob")
    await hub.dispatch(alice.handle, "call:request", {"toUserId": "bob"})
    call_id = bob.events("call:incoming")[0]["data"]["callId"]

    await hub.disconnect(alice.handle)

    assert bob.events("call:end") == [
        {"event": "call:end", "data": {"fromUserId": "alice", "callId": call_id}}
    ]
