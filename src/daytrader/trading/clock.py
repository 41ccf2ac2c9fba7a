"""
Calendar-aware daily triggers.

A DailyTrigger fires at a wall-clock time on selected weekdays in an IANA
timezone. It only computes fire times; the scheduler owns the sleeping.
"""

from datetime import datetime, time, timedelta
from typing import FrozenSet, Iterable, Optional
from zoneinfo import ZoneInfo

from ..config import parse_clock_time

WEEKDAYS: FrozenSet[int] = frozenset(range(5))


class DailyTrigger:
    """Wall-clock time of day on a set of weekdays (Monday == 0)."""

    def __init__(self, at: time, tz: ZoneInfo, weekdays: Iterable[int] = WEEKDAYS):
        self.at = at
        self.tz = tz
        self.weekdays = frozenset(weekdays)
        if not self.weekdays:
            raise ValueError("DailyTrigger needs at least one weekday")

    @classmethod
    def parse(cls, clock: str, timezone: str, weekdays: Iterable[int] = WEEKDAYS) -> "DailyTrigger":
        return cls(parse_clock_time(clock), ZoneInfo(timezone), weekdays)

    def next_fire(self, now: datetime) -> datetime:
        """First fire time strictly after `now`, as an aware datetime in the trigger's zone."""
        local = now.astimezone(self.tz)
        day = local.date()
        for _ in range(8):
            candidate = datetime.combine(day, self.at, tzinfo=self.tz)
            if candidate > local and candidate.weekday() in self.weekdays:
                return candidate
            day += timedelta(days=1)
        raise RuntimeError("unreachable: no fire time within a week")

    def seconds_until(self, now: datetime, after: Optional[datetime] = None) -> float:
        reference = max(now, after) if after is not None else now
        return max(0.0, (self.next_fire(reference) - now).total_seconds())

    def __repr__(self) -> str:
        return f"DailyTrigger({self.at.strftime('%H:%M')}, {self.tz.key}, weekdays={sorted(self.weekdays)})"


def seconds_until_time_today(now: datetime, at: time, tz: ZoneInfo) -> float:
    """Seconds from `now` until `at` today in `tz`; zero or negative once it has passed."""
    local = now.astimezone(tz)
    target = datetime.combine(local.date(), at, tzinfo=tz)
    return (target - local).total_seconds()
