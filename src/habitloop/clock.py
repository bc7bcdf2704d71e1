"""Injected time source.

All calendar logic (check-in days, "yesterday", week starts) goes through a
``Clock`` bound to the single application timezone. Tests pass a ``FixedClock``.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from habitloop.config import get_settings


class Clock:
    """Wall clock in the application timezone."""

    def __init__(self, tz: str | ZoneInfo = "UTC") -> None:
        self.tz = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)

    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""
        return datetime.now(timezone.utc)

    def today(self) -> date:
        """Current calendar day in the application timezone."""
        return self.now().astimezone(self.tz).date()

    def yesterday(self) -> date:
        return self.today() - timedelta(days=1)

    def week_start(self) -> date:
        """Monday of the current application-local week."""
        today = self.today()
        return today - timedelta(days=today.weekday())

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """[start, end) of a local calendar day, as UTC instants."""
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        end = start + timedelta(days=1)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


class FixedClock(Clock):
    """Clock frozen at a given instant; ``advance`` moves it forward."""

    def __init__(self, at: datetime, tz: str | ZoneInfo = "UTC") -> None:
        super().__init__(tz)
        if at.tzinfo is None:
            msg = "FixedClock needs a timezone-aware datetime"
            raise ValueError(msg)
        self._at = at

    def now(self) -> datetime:
        return self._at.astimezone(timezone.utc)

    def advance(self, **delta: float) -> None:
        self._at = self._at + timedelta(**delta)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_clock() -> Clock:
    """Clock in the configured application timezone (FastAPI dependency)."""
    return Clock(get_settings().app_timezone)
