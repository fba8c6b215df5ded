"""Caller identity as resolved by the upstream authentication layer."""
from __future__ import annotations

from fastapi import HTTPException, Request, status


def request_user_id(request: Request) -> str | None:
    """Return the authenticated user id, if the auth layer resolved one.

    The auth middleware stores it on ``request.state.user_id``; internal
    callers behind the gateway may pass ``X-User-Id`` instead.
    """

    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return str(user_id)
    header = (request.headers.get("x-user-id") or "").strip()
    return header or None


async def require_user_id(request: Request) -> str:
    """FastAPI dependency rejecting anonymous callers."""

    user_id = request_user_id(request)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user_id
