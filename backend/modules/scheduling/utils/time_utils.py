"""
Date and time-of-day arithmetic for scheduling.

Shift times are stored as times of day without a date, and a shift may run
past midnight (end time earlier than, or equal to, its start time). Before any
comparison a window is placed on a single minute timeline where the end is
pushed forward by a day when needed. Two windows on the same scheduling date
are then compared on the 24-hour cycle, so the early-morning tail of an
overnight shift collides with a morning shift on that date.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, List

from ..enums.scheduling_enums import Weekday
from ..exceptions.scheduling_exceptions import ValidationFailed

MINUTES_PER_DAY = 24 * 60


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class TimeWindow:
    """A half-open [start, end) window measured in minutes from midnight"""

    start: int
    end: int

    @classmethod
    def from_times(cls, start_time: time, end_time: time) -> "TimeWindow":
        start = minutes_of_day(start_time)
        end = minutes_of_day(end_time)
        if end <= start:
            end += MINUTES_PER_DAY
        return cls(start, end)

    @property
    def crosses_midnight(self) -> bool:
        return self.end > MINUTES_PER_DAY

    @property
    def duration_minutes(self) -> int:
        return self.end - self.start

    def shifted(self, minutes: int) -> "TimeWindow":
        return TimeWindow(self.start + minutes, self.end + minutes)


def _intervals_overlap(a: TimeWindow, b: TimeWindow) -> bool:
    return a.start < b.end and a.end > b.start


def windows_overlap(a: TimeWindow, b: TimeWindow) -> bool:
    """
    Overlap test for two windows on the same scheduling date.

    ``b`` is also tried one day earlier and one day later so that a window
    wrapping past midnight is matched against the part of the day it spills
    into. The result is symmetric in its arguments. Touching windows
    (one ends exactly when the other starts) do not overlap.
    """
    return any(
        _intervals_overlap(a, b.shifted(offset))
        for offset in (-MINUTES_PER_DAY, 0, MINUTES_PER_DAY)
    )


def times_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    return windows_overlap(TimeWindow.from_times(start_a, end_a), TimeWindow.from_times(start_b, end_b))


def iter_dates(start_date: date, end_date: date) -> Iterator[date]:
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def expand_date_range(start_date: date, end_date: date) -> List[date]:
    """Every date from start_date to end_date inclusive"""
    if end_date < start_date:
        raise ValueError(f"End date {end_date} is before start date {start_date}")
    return list(iter_dates(start_date, end_date))


def range_length_days(start_date: date, end_date: date) -> int:
    return (end_date - start_date).days + 1


def week_start(value: date, week_start_weekday: int = 0) -> date:
    """First day of the scheduling week containing ``value`` (0 = Monday)"""
    return value - timedelta(days=(value.weekday() - week_start_weekday) % 7)


def week_bounds(value: date, week_start_weekday: int = 0):
    start = week_start(value, week_start_weekday)
    return start, start + timedelta(days=6)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def check_date_range(start_date: date, end_date: date, max_days: int) -> None:
    """Reject reversed or oversized ranges before any work starts"""
    if end_date < start_date:
        raise ValidationFailed(
            f"End date {end_date.isoformat()} is before start date {start_date.isoformat()}",
            start_date=start_date,
            end_date=end_date,
        )
    if range_length_days(start_date, end_date) > max_days:
        raise ValidationFailed(
            f"Date range of {range_length_days(start_date, end_date)} days exceeds the limit of {max_days}",
            start_date=start_date,
            end_date=end_date,
        )


def weekday_tag(value: date) -> Weekday:
    return Weekday.from_date(value)
