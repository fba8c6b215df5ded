"""In-memory registry of live connections per user."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List
from uuid import uuid4

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]
PresenceListener = Callable[[List[str]], Awaitable[None]]


@dataclass(slots=True, eq=False)
class SignalingConnection:
    """One live transport channel belonging to a user."""

    user_id: str
    send: SendCallable
    connection_id: str = field(default_factory=lambda: uuid4().hex)


class PresenceRegistry:
    """Map user ids to their open connections and notify observers on change.

    A user id is present exactly while it owns at least one connection. All
    mutations finish before the first await, so the event loop never observes
    a half-updated map.
    """

    def __init__(self) -> None:
        # Inner dicts keep insertion order, so the last entry is the newest connection.
        self._connections: Dict[str, Dict[str, SignalingConnection]] = {}
        self._listeners: list[PresenceListener] = []

    def add_listener(self, listener: PresenceListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PresenceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def register(self, user_id: str, connection: SignalingConnection) -> None:
        """Add a connection for the user, creating the entry if needed."""

        key = str(user_id)
        self._connections.setdefault(key, {})[connection.connection_id] = connection
        logger.info("Registered connection %s for user %s", connection.connection_id, key)
        await self._notify()

    async def unregister(self, user_id: str, connection: SignalingConnection) -> bool:
        """Remove exactly this connection; return True if it was the user's last one."""

        key = str(user_id)
        was_last = False
        handles = self._connections.get(key)
        if handles is not None:
            handles.pop(connection.connection_id, None)
            if not handles:
                self._connections.pop(key, None)
                was_last = True
        logger.info("Unregistered connection %s for user %s", connection.connection_id, key)
        await self._notify()
        return was_last

    def get_delivery_handle(self, user_id: str) -> SignalingConnection | None:
        """Return the most recently registered connection for the user, if any."""

        handles = self._connections.get(str(user_id))
        if not handles:
            return None
        return next(reversed(handles.values()))

    def list_online_user_ids(self) -> list[str]:
        return list(self._connections.keys())

    def is_online(self, user_id: str) -> bool:
        return str(user_id) in self._connections

    def connection_count(self, user_id: str) -> int:
        return len(self._connections.get(str(user_id), {}))

    def connections(self) -> list[SignalingConnection]:
        return [conn for handles in self._connections.values() for conn in handles.values()]

    async def _notify(self) -> None:
        online = self.list_online_user_ids()
        for listener in list(self._listeners):
            try:
                await listener(online)
            except Exception:  # noqa: BLE001 - a failing observer must not break presence
                logger.exception("Presence listener failed")
