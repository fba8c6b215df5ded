"""Dispatch of client signaling events to the relay and the call machines."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..schemas import signaling as events
from .clock import Clock, epoch_millis, utc_now
from .direct_calls import DirectCallMachine
from .group_calls import GroupCallMachine
from .groups import GroupDirectory
from .presence import PresenceRegistry, SignalingConnection
from .signaling import SignalRelay

logger = logging.getLogger(__name__)

EVENT_ONLINE_USERS = "online-users-changed"
EVENT_CALL_RINGING = "call:ringing"
EVENT_HEARTBEAT_ACK = "heartbeat:ack"

Handler = Callable[[SignalingConnection, Any], Awaitable[None]]
P = TypeVar("P", bound=BaseModel)


def _parse(model: type[P], data: Any) -> P:
    return model.model_validate(data if data is not None else {})


class SignalingHub:
    """Owns the live presence map and routes every inbound event.

    A handler failure is confined to the event that caused it: invalid
    payloads are dropped and unexpected errors are logged, so one client can
    never take down another client's session.
    """

    def __init__(
        self,
        registry: PresenceRegistry,
        relay: SignalRelay,
        direct_calls: DirectCallMachine,
        group_calls: GroupCallMachine,
        *,
        end_direct_calls_on_disconnect: bool = False,
        clock: Clock = utc_now,
    ) -> None:
        self.registry = registry
        self.relay = relay
        self.direct_calls = direct_calls
        self.group_calls = group_calls
        self.end_direct_calls_on_disconnect = end_direct_calls_on_disconnect
        self._clock = clock
        self._handlers: Dict[str, Handler] = {
            "call:request": self._on_call_request,
            "call:accepted": self._on_call_accepted,
            "call:declined": self._on_call_declined,
            "call:end": self._on_call_end,
            "webrtc:ice-candidate": self._on_ice_candidate,
            "group:call:request": self._on_group_call_request,
            "group:call:accepted": self._on_group_call_accepted,
            "group:call:declined": self._on_group_call_declined,
            "group:call:left": self._on_group_call_left,
            "group:webrtc:offer": self._peer_signal("group:webrtc:offer", "offer"),
            "group:webrtc:answer": self._peer_signal("group:webrtc:answer", "answer"),
            "group:webrtc:ice-candidate": self._peer_signal("group:webrtc:ice-candidate", "candidate"),
            "chat:typing": self._direct_typing("chat:typing"),
            "chat:stopTyping": self._direct_typing("chat:stopTyping"),
            "group:typing": self._group_typing("group:typing"),
            "group:stopTyping": self._group_typing("group:stopTyping"),
            "heartbeat": self._on_heartbeat,
        }
        registry.add_listener(self._broadcast_presence)

    async def _broadcast_presence(self, online: list[str]) -> None:
        await self.relay.broadcast(EVENT_ONLINE_USERS, {"userIds": online})

    async def connect(self, connection: SignalingConnection) -> None:
        await self.registry.register(connection.user_id, connection)

    async def disconnect(self, connection: SignalingConnection) -> None:
        """Drop the connection; the user's last one triggers call cleanup."""

        was_last = await self.registry.unregister(connection.user_id, connection)
        if not was_last:
            return
        try:
            await self.group_calls.disconnect_cleanup(connection.user_id)
        except Exception:  # noqa: BLE001
            logger.exception("Group call cleanup failed for %s", connection.user_id)
        if self.end_direct_calls_on_disconnect:
            try:
                await self.direct_calls.end_all_for_user(connection.user_id)
            except Exception:  # noqa: BLE001
                logger.exception("Direct call cleanup failed for %s", connection.user_id)

    async def dispatch(self, connection: SignalingConnection, event: str, data: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("Ignoring unknown event %r from %s", event, connection.user_id)
            return
        try:
            await handler(connection, data)
        except ValidationError as exc:
            logger.debug("Dropping malformed %s from %s: %s", event, connection.user_id, exc.errors())
        except Exception:  # noqa: BLE001 - never let one event kill the socket
            logger.exception("Handler for %s failed", event)

    # --- direct calls ---

    async def _on_call_request(self, connection: SignalingConnection, data: Any) -> None:
        payload = _parse(events.CallRequest, data)
        snapshot = await self.direct_calls.request(
            connection.user_id,
            payload.to_user_id,
            from_user=payload.from_user,
            call_type=payload.call_type,
            offer=payload.offer,
        )
        if snapshot is not None:
            await self.relay.send_to_connection(
                connection,
                EVENT_CALL_RINGING,
                {"callId": snapshot.id, "toUserId": payload.to_user_id},
            )

    async def _on_call_accepted(self, connection: SignalingConnection, data: Any) -> None:
        payload = _parse(events.CallAnswer, data)
        await self.direct_calls.accepted(
            connection.user_id, payload.to_user_id, answer=payload.answer, call_id=payload.call_id
        )

    async def _on_call_declined(self, connection: SignalingConnection, data: Any) -> None:
        payload = _parse(events.CallTarget, data)
        await self.direct_calls.declined(connection.user_id, payload.to_user_id, call_id=payload.call_id)

    async def _on_call_end(self, connection: SignalingConnection, data: Any) -> None:
        payload = _parse(events.CallTarget, data)
        await self.direct_calls.end(connection.user_id, payload.to_user_id, call_id=payload.call_id)

    async def _on_ice_candidate(self, connection: SignalingConnection, data: Any) -> None:
        payload = _parse(events.IceCandidate, data)
        await self.relay.send_to_user(
            payload.to_user_id,
            "webrtc:ice-candidate",
            {"candidate": payload.candidate, "fromUserId": connection.user_id},
        )

    # --- group calls ---

    async def _on_group_call_request(self, connection: SignalingConnection, data: Any) -> None:
        payload = _parse(events.GroupCallRequest, data)
        await self.group_calls.request(
            connection.user_id,
            payload.group_id,
            from_user=payload.from_user,
            call_type=payload.call_type,
        )

    async def _on_group_call_accepted(self, connection: SignalingConnection, data: Any) -> None:
        payload = _parse(events.GroupCallMember, data)
        await self.group_calls.accepted(payload.group_id, connection.user_id, user=payload.user)

    async def _on_group_call_declined(self, connection: SignalingConnection, data: Any) -> None:
        payload = _parse(events.GroupCallMember, data)
        await self.group_calls.declined(payload.group_id, user=payload.user)

    async def _on_group_call_left(self, connection: SignalingConnection, data: Any) -> None:
        payload = _parse(events.GroupCallLeave, data)
        await self.group_calls.left(payload.group_id, connection.user_id)

    def _peer_signal(self, event: str, field: str) -> Handler:
        async def handler(connection: SignalingConnection, data: Any) -> None:
            payload = _parse(events.GroupPeerSignal, data)
            await self.relay.send_to_user(
                payload.to_user_id,
                event,
                {
                    "fromUserId": connection.user_id,
                    "groupId": payload.group_id,
                    field: getattr(payload, field),
                },
            )

        return handler

    # --- typing indicators ---

    def _direct_typing(self, event: str) -> Handler:
        async def handler(connection: SignalingConnection, data: Any) -> None:
            payload = _parse(events.DirectTyping, data)
            await self.relay.send_to_user(
                payload.to_user_id, event, {"fromUserId": connection.user_id}
            )

        return handler

    def _group_typing(self, event: str) -> Handler:
        async def handler(connection: SignalingConnection, data: Any) -> None:
            payload = _parse(events.GroupTyping, data)
            sender = connection.user_id
            await self.relay.send_to_group(
                payload.group_id,
                event,
                {"groupId": payload.group_id, "fromUserId": sender},
                exclude=sender,
            )

        return handler

    async def _on_heartbeat(self, connection: SignalingConnection, data: Any) -> None:
        await self.relay.send_to_connection(
            connection, EVENT_HEARTBEAT_ACK, {"t": epoch_millis(self._clock())}
        )


def build_hub(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    end_direct_calls_on_disconnect: bool = False,
    clock: Clock = utc_now,
) -> SignalingHub:
    """Wire the registry, relay and call machines around one session factory."""

    registry = PresenceRegistry()
    relay = SignalRelay(registry, GroupDirectory(session_factory))
    return SignalingHub(
        registry,
        relay,
        DirectCallMachine(session_factory, relay, clock=clock),
        GroupCallMachine(session_factory, relay, relay.groups, clock=clock),
        end_direct_calls_on_disconnect=end_direct_calls_on_disconnect,
        clock=clock,
    )
