"""Group call model."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow
from .call import CallStatus, CallType, enum_values

# Participant lists are replaced wholesale on every change so the ORM sees the write.
ParticipantList = JSON().with_variant(JSONB(), "postgresql")


class GroupCall(Base):
    """A call held in a group; only the newest record per group is live."""

    __tablename__ = "group_calls"
    __table_args__ = (Index("ix_group_calls_group_created", "group_id", "created_at"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    group_id: Mapped[str] = mapped_column(String, nullable=False)
    initiator_id: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[CallType] = mapped_column(
        Enum(CallType, name="group_call_type", values_callable=enum_values), nullable=False
    )
    status: Mapped[CallStatus] = mapped_column(
        Enum(CallStatus, name="group_call_status", values_callable=enum_values),
        default=CallStatus.RINGING,
        nullable=False,
    )
    participants_accepted: Mapped[list[str]] = mapped_column(ParticipantList, default=list, nullable=False)
    participants_active: Mapped[list[str]] = mapped_column(ParticipantList, default=list, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
