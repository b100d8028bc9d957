"""
Wall-clock access.

The accounting core never reads the time itself; it is handed a Clock.
This is the production one. "Today" is the calendar date in the
trainer's timezone, since a due date is a local date.
"""

from datetime import date, datetime, timezone, tzinfo
from zoneinfo import ZoneInfo


class SystemClock:
    """Clock backed by the system time."""

    def __init__(self, tz_name: str = "UTC") -> None:
        self._tz = ZoneInfo(tz_name)

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return datetime.now(self._tz).date()
