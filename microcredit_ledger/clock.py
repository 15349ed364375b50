"""
Clock Module

Source of "now" for the ledger, plus the calendar-day helpers used by penalty
accrual, reminders and risk bucketing. Every day comparison goes through
local_day() so that day counting does not depend on time of day.
"""

from abc import ABC, abstractmethod
from datetime import datetime, date, time, timedelta, timezone
from typing import List
from zoneinfo import ZoneInfo


class Clock(ABC):
    """Abstract clock"""

    def __init__(self, tz: str = "Africa/Maputo"):
        self.tzinfo = ZoneInfo(tz)

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware datetime"""
        pass

    def today(self) -> date:
        """Current local calendar day"""
        return self.local_day(self.now())

    def local_day(self, moment: datetime) -> date:
        """Calendar day of a moment in the ledger's time zone"""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=self.tzinfo)
        return moment.astimezone(self.tzinfo).date()

    def local_midnight(self, day: date) -> datetime:
        """Local midnight at the start of a calendar day"""
        return datetime.combine(day, time.min, tzinfo=self.tzinfo)


class SystemClock(Clock):
    """Wall clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone(self.tzinfo)


class FixedClock(Clock):
    """Clock pinned to a given moment; advance() moves it forward"""

    def __init__(self, moment: datetime, tz: str = "Africa/Maputo"):
        super().__init__(tz)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=self.tzinfo)
        self._now = moment

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=self.tzinfo)
        self._now = moment

    def advance(self, days: int = 0, hours: int = 0) -> datetime:
        self._now = self._now + timedelta(days=days, hours=hours)
        return self._now


def calendar_days_between(start: date, end: date) -> int:
    """Whole calendar days from start to end (negative when end is earlier)"""
    return (end - start).days


def overdue_days(due_day: date, today: date) -> List[date]:
    """
    Calendar days a loan has been overdue: due_day + 1 through today.

    Empty when the loan is not overdue. The range is bounded by the day count,
    so the result never extends past today.
    """
    count = calendar_days_between(due_day, today)
    return [due_day + timedelta(days=offset) for offset in range(1, count + 1)]
