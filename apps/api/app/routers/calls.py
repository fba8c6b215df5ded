"""Call history endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.identity import require_user_id
from ..db.session import get_session
from ..repositories import calls as calls_repo
from ..repositories import group_calls as group_calls_repo
from ..repositories import groups as groups_repo
from ..schemas.calls import DirectCallOut, GroupCallOut

router = APIRouter()
group_router = APIRouter()


@router.get("/{other_user_id}", response_model=list[DirectCallOut])
async def list_calls_with_user(
    other_user_id: str,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session),
) -> list[DirectCallOut]:
    """Return the call log between the caller and another user, newest first."""

    calls = await calls_repo.list_between(session, user_id, other_user_id)
    return [DirectCallOut.model_validate(call) for call in calls]


@group_router.get("/active/me", response_model=list[GroupCallOut])
async def list_my_active_group_calls(
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session),
) -> list[GroupCallOut]:
    """Return running calls across every group the caller belongs to."""

    group_ids = await groups_repo.list_group_ids_for_user(session, user_id)
    calls = await group_calls_repo.list_active_for_groups(session, group_ids)
    return [GroupCallOut.model_validate(call) for call in calls]


@group_router.get("/{group_id}", response_model=list[GroupCallOut])
async def list_group_calls(
    group_id: str,
    user_id: str = Depends(require_user_id),
    session: AsyncSession = Depends(get_session),
) -> list[GroupCallOut]:
    """Return the call log of a group the caller is a member of."""

    members = await groups_repo.get_member_ids(session, group_id)
    if members is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found")
    if user_id not in members:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You are not a member of this group")
    calls = await group_calls_repo.list_for_group(session, group_id)
    return [GroupCallOut.model_validate(call) for call in calls]
