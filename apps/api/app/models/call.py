"""Direct (one-to-one) call model."""
from __future__ import annotations

from datetime import datetime
import enum

from sqlalchemy import DateTime, Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class CallType(str, enum.Enum):
    AUDIO = "audio"
    VIDEO = "video"

    @classmethod
    def parse(cls, value: object) -> "CallType":
        """Anything other than an explicit video request is an audio call."""

        return cls.VIDEO if value == cls.VIDEO.value else cls.AUDIO


class CallStatus(str, enum.Enum):
    RINGING = "ringing"
    ACTIVE = "active"
    COMPLETED = "completed"
    MISSED = "missed"


LIVE_STATUSES: tuple[CallStatus, ...] = (CallStatus.RINGING, CallStatus.ACTIVE)


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class DirectCall(Base):
    """One call attempt between a caller and a callee."""

    __tablename__ = "direct_calls"
    __table_args__ = (
        Index("ix_direct_calls_pair_created", "caller_id", "callee_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    caller_id: Mapped[str] = mapped_column(String, nullable=False)
    callee_id: Mapped[str] = mapped_column(String, nullable=False)
    type: Mapped[CallType] = mapped_column(
        Enum(CallType, name="direct_call_type", values_callable=enum_values), nullable=False
    )
    status: Mapped[CallStatus] = mapped_column(
        Enum(CallStatus, name="direct_call_status", values_callable=enum_values),
        default=CallStatus.RINGING,
        nullable=False,
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )
