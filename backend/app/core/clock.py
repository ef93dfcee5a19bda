from __future__ import annotations

from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Slot timestamps are stored as naive wall-clock times in the tenant's timezone.
Clock = Callable[[], datetime]


def tenant_clock(timezone: str) -> Clock:
    try:
        tz = ZoneInfo(timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        tz = ZoneInfo("UTC")

    def now() -> datetime:
        return datetime.now(tz).replace(tzinfo=None, microsecond=0)

    return now
