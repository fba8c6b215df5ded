"""Stateless relay of signaling events to connected users."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable, Protocol

from .presence import PresenceRegistry, SignalingConnection

logger = logging.getLogger(__name__)


class MemberLookup(Protocol):
    def get_members(self, group_id: str) -> Awaitable[list[str] | None]: ...


def envelope(event: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
    """Wire format shared by every server-to-client frame."""

    return {"event": event, "data": payload or {}}


class SignalRelay:
    """Forward events to users through their newest live connection.

    Offline targets are dropped silently: there is no queueing and no retry.
    """

    def __init__(self, registry: PresenceRegistry, groups: MemberLookup) -> None:
        self.registry = registry
        self.groups = groups

    async def send_to_connection(
        self, connection: SignalingConnection, event: str, payload: dict[str, Any] | None = None
    ) -> bool:
        try:
            await connection.send(envelope(event, payload))
        except Exception as exc:  # noqa: BLE001 - a dead socket counts as a dropped message
            logger.debug("Dropping %s for connection %s: %s", event, connection.connection_id, exc)
            return False
        return True

    async def send_to_user(self, user_id: str | None, event: str, payload: dict[str, Any] | None = None) -> bool:
        """Deliver to one live connection of the user; False when the user is offline."""

        if not user_id:
            return False
        connection = self.registry.get_delivery_handle(str(user_id))
        if connection is None:
            logger.debug("Dropping %s for offline user %s", event, user_id)
            return False
        return await self.send_to_connection(connection, event, payload)

    async def send_to_users(
        self,
        user_ids: Iterable[str],
        event: str,
        payload: dict[str, Any] | None = None,
        *,
        exclude: str | None = None,
    ) -> int:
        delivered = 0
        for user_id in user_ids:
            if exclude is not None and str(user_id) == str(exclude):
                continue
            if await self.send_to_user(str(user_id), event, payload):
                delivered += 1
        return delivered

    async def send_to_group(
        self,
        group_id: str | None,
        event: str,
        payload: dict[str, Any] | None = None,
        *,
        exclude: str | None = None,
        members: list[str] | None = None,
    ) -> int:
        """Fan out to every online member of the group except ``exclude``.

        Members are looked up at event time unless the caller already holds
        the list for this same event.
        """

        if not group_id:
            return 0
        if members is None:
            members = await self.groups.get_members(str(group_id))
        if not members:
            return 0
        return await self.send_to_users(members, event, payload, exclude=exclude)

    async def broadcast(self, event: str, payload: dict[str, Any] | None = None) -> None:
        """Send to every open connection of every user."""

        connections = self.registry.connections()
        if not connections:
            return
        frame = envelope(event, payload)
        results = await asyncio.gather(*(conn.send(frame) for conn in connections), return_exceptions=True)
        for conn, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.debug("Broadcast %s to %s failed: %s", event, conn.connection_id, result)
