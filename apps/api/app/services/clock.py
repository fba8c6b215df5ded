"""Time helpers shared by the call state machines."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_tz(value: datetime) -> datetime:
    """Ensure the provided datetime is timezone-aware in UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_seconds(started_at: datetime, ended_at: datetime) -> int:
    """Whole seconds between two instants, floored and never negative."""

    delta = ensure_tz(ended_at) - ensure_tz(started_at)
    return max(0, math.floor(delta.total_seconds()))


def epoch_millis(value: datetime) -> int:
    return int(ensure_tz(value).timestamp() * 1000)
