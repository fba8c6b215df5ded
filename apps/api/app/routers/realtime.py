"""WebSocket transport for presence and call signaling."""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect, status

from ..schemas.calls import OnlineUsersResponse
from ..services.hub import SignalingHub
from ..services.presence import SignalingConnection

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/presence/online", response_model=OnlineUsersResponse, tags=["presence"])
async def online_users(request: Request) -> OnlineUsersResponse:
    """Return every user with at least one open connection."""

    hub: SignalingHub = request.app.state.hub
    return OnlineUsersResponse(user_ids=hub.registry.list_online_user_ids())


@router.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket) -> None:
    """Bind the socket to ``userId`` and feed every frame to the hub.

    Frames are ``{"event": name, "data": payload}`` in both directions.
    Frames from one socket are handled strictly in order.
    """

    user_id = (websocket.query_params.get("userId") or websocket.query_params.get("user_id") or "").strip()
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    hub: SignalingHub = websocket.app.state.hub
    connection = SignalingConnection(user_id=user_id, send=websocket.send_json)
    await hub.connect(connection)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE))
            raw = frame.get("text")
            if raw is None:
                logger.debug("Ignoring binary frame from %s", user_id)
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON frame from %s", user_id)
                continue
            if not isinstance(message, dict):
                continue
            event = message.get("event")
            if not isinstance(event, str):
                continue
            await hub.dispatch(connection, event, message.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(connection)
