"""
Business Calendar.

Single source of "now" and "today" for the ledger. Every day boundary is
derived from one operating timezone so that the resolver, the mutator and the
rollover job always agree on which calendar date a write belongs to.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterator, Optional
from zoneinfo import ZoneInfo

from backend.app.core.config import settings


class BusinessCalendar:
    """
    Converts timestamps to calendar dates in the operating timezone.

    Args:
        timezone_name: IANA timezone name, e.g. "Asia/Karachi"
        clock: Optional zero-arg callable returning an aware UTC datetime.
            Tests inject a fixed clock here.
    """

    def __init__(self, timezone_name: str, clock: Optional[Callable[[], datetime]] = None):
        self.timezone_name = timezone_name
        self.tz = ZoneInfo(timezone_name)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        """Aware wall-clock time in the operating timezone."""
        return self._clock().astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def to_business_date(self, ts: datetime) -> date:
        """
        Canonical calendar date for a timestamp.

        Naive timestamps are treated as UTC, which is how the store returns
        timezone-less columns.
        """
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(self.tz).date()

    @staticmethod
    def previous_day(day: date) -> date:
        return day - timedelta(days=1)

    @staticmethod
    def next_day(day: date) -> date:
        return day + timedelta(days=1)

    @staticmethod
    def days_between(start: date, end: date) -> Iterator[date]:
        """Inclusive iteration over [start, end]."""
        current = start
        while current <= end:
            yield current
            current += timedelta(days=1)


calendar = BusinessCalendar(settings.business_timezone)


def get_calendar() -> BusinessCalendar:
    """FastAPI dependency; overridden in tests with a fixed clock."""
    return calendar
