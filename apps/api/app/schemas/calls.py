"""Response models for call history endpoints."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ..models.call import CallStatus, CallType


class DirectCallOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    caller_id: str
    callee_id: str
    type: CallType
    status: CallStatus
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    created_at: datetime


class GroupCallOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    group_id: str
    initiator_id: str
    type: CallType
    status: CallStatus
    participants_accepted: list[str] = Field(default_factory=list)
    participants_active: list[str] = Field(default_factory=list)
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    created_at: datetime


class OnlineUsersResponse(BaseModel):
    user_ids: list[str] = Field(..., serialization_alias="userIds")
