"""Clock helpers shared by the domain and application layers."""

from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the database columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def wall_clock(utc_clock: Callable[[], datetime], tz_name: str) -> Callable[[], datetime]:
    """Wrap a naive-UTC clock so it reads the operator's local wall time.

    Tour dates and start times are local, so "today" and "now" for booking
    validation come from this clock. Stored timestamps stay UTC.
    """
    zone = ZoneInfo(tz_name)

    def now() -> datetime:
        return utc_clock().replace(tzinfo=timezone.utc).astimezone(zone).replace(tzinfo=None)

    return now
