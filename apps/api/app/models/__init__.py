"""Expose ORM models."""
from .call import CallStatus, CallType, DirectCall
from .group import Group, GroupMember
from .group_call import GroupCall

__all__ = [
    "CallStatus",
    "CallType",
    "DirectCall",
    "Group",
    "GroupCall",
    "GroupMember",
]
