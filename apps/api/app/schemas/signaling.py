"""Payload contracts for client-to-server signaling events.

Field names follow the camelCase wire format used by the web client. The
sender is always the user bound to the connection; client-supplied user
objects are relayed as-is and never used for identity.
"""
from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _coerce_id(value: object) -> object:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


Identifier = Annotated[str, BeforeValidator(_coerce_id), Field(min_length=1)]
OptionalIdentifier = Annotated[str | None, BeforeValidator(_coerce_id)]


class EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CallRequest(EventPayload):
    to_user_id: Identifier = Field(alias="toUserId")
    from_user: dict[str, Any] | None = Field(default=None, alias="fromUser")
    call_type: str | None = Field(default=None, alias="callType")
    offer: Any = None


class CallAnswer(EventPayload):
    to_user_id: Identifier = Field(alias="toUserId")
    answer: Any = None
    call_id: OptionalIdentifier = Field(default=None, alias="callId")


class CallTarget(EventPayload):
    to_user_id: Identifier = Field(alias="toUserId")
    call_id: OptionalIdentifier = Field(default=None, alias="callId")


class IceCandidate(EventPayload):
    to_user_id: Identifier = Field(alias="toUserId")
    candidate: Any = None


class GroupCallRequest(EventPayload):
    group_id: Identifier = Field(alias="groupId")
    from_user: dict[str, Any] | None = Field(default=None, alias="fromUser")
    call_type: str | None = Field(default=None, alias="callType")


class GroupCallMember(EventPayload):
    group_id: Identifier = Field(alias="groupId")
    user: dict[str, Any] | None = None


class GroupCallLeave(EventPayload):
    group_id: Identifier = Field(alias="groupId")


class GroupPeerSignal(EventPayload):
    to_user_id: Identifier = Field(alias="toUserId")
    group_id: OptionalIdentifier = Field(default=None, alias="groupId")
    offer: Any = None
    answer: Any = None
    candidate: Any = None


class DirectTyping(EventPayload):
    to_user_id: Identifier = Field(alias="toUserId")


class GroupTyping(EventPayload):
    group_id: Identifier = Field(alias="groupId")
