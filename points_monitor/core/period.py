"""
Billing cycle boundaries.

A cycle runs from local midnight on the cycle start day of one month to the
same day of the next month. When the start day does not exist in a month
(day 31 in April, day 30 in February) it is clamped to that month's last day,
for the start and the end alike, so consecutive cycles always meet.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime
from typing import Tuple, Union

Instant = Union[datetime, int]


@dataclass(frozen=True)
class CyclePeriod:
    """Half-open billing window ``[start, end)`` in local time."""
    start: datetime
    end: datetime

    def __post_init__(self):
        """Validate the window is not empty."""
        if self.end <= self.start:
            raise ValueError("cycle end must be after cycle start")

    @property
    def start_micros(self) -> int:
        return to_micros(self.start)

    @property
    def end_micros(self) -> int:
        return to_micros(self.end)

    @property
    def label(self) -> str:
        """Human readable window, e.g. ``03.15 - 04.15``."""
        return f"{self.start:%m.%d} - {self.end:%m.%d}"

    def contains(self, instant: Instant) -> bool:
        """True if ``instant`` falls inside the window (start inclusive)."""
        return self.start_micros <= _as_micros(instant) < self.end_micros


def to_micros(moment: datetime) -> int:
    """Convert a local naive datetime to microseconds since epoch."""
    return int(moment.timestamp()) * 1_000_000 + moment.microsecond


def from_micros(micros: int) -> datetime:
    """Convert microseconds since epoch to a local naive datetime."""
    return datetime.fromtimestamp(micros // 1_000_000).replace(microsecond=micros % 1_000_000)


def _as_micros(instant: Instant) -> int:
    if isinstance(instant, datetime):
        return to_micros(instant)
    return int(instant)


def _as_datetime(instant: Instant) -> datetime:
    if isinstance(instant, datetime):
        return instant
    return from_micros(int(instant))


def _validate_day(cycle_start_day: int) -> None:
    if not 1 <= cycle_start_day <= 31:
        raise ValueError("cycle_start_day must be between 1 and 31")


def effective_day(year: int, month: int, cycle_start_day: int) -> int:
    """Cycle start day clamped to the number of days in ``(year, month)``."""
    return min(cycle_start_day, calendar.monthrange(year, month)[1])


def shift_month(year: int, month: int, offset: int) -> Tuple[int, int]:
    """Move ``(year, month)`` by ``offset`` months, normalizing across years."""
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def cycle_period(year: int, month: int, cycle_start_day: int) -> CyclePeriod:
    """Compute the billing cycle that starts in ``(year, month)``.

    Args:
        year: Calendar year of the cycle start
        month: Calendar month (1-12) of the cycle start
        cycle_start_day: Day of month the cycle rolls over (1-31)

    Returns:
        CyclePeriod from the start day of this month to the start day of the next

    Raises:
        ValueError: If month or cycle_start_day is out of range
    """
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    _validate_day(cycle_start_day)

    next_year, next_month = shift_month(year, month, 1)
    start = datetime(year, month, effective_day(year, month, cycle_start_day))
    end = datetime(next_year, next_month, effective_day(next_year, next_month, cycle_start_day))
    return CyclePeriod(start=start, end=end)


def current_cycle_for(cycle_start_day: int, instant: Instant) -> CyclePeriod:
    """Find the billing cycle containing ``instant``.

    Before the (clamped) start day of its month, an instant still belongs to
    the cycle that began in the previous month.

    Args:
        cycle_start_day: Day of month the cycle rolls over (1-31)
        instant: Local datetime or microsecond timestamp

    Returns:
        The CyclePeriod whose half-open window contains ``instant``
    """
    _validate_day(cycle_start_day)
    moment = _as_datetime(instant)
    year, month = moment.year, moment.month
    if moment.day < effective_day(year, month, cycle_start_day):
        year, month = shift_month(year, month, -1)
    return cycle_period(year, month, cycle_start_day)


def resolve_cycle(cycle_start_day: int, cycle_offset: int, now: datetime) -> CyclePeriod:
    """Resolve the cycle ``cycle_offset`` months away from ``now``.

    The offset moves the calendar month of ``now``. Only for the current
    cycle (offset 0) is ``now`` checked against the start day, in which case
    the previous month's cycle is used.
    """
    _validate_day(cycle_start_day)
    year, month = shift_month(now.year, now.month, cycle_offset)
    if cycle_offset == 0 and now.day < effective_day(now.year, now.month, cycle_start_day):
        year, month = shift_month(year, month, -1)
    return cycle_period(year, month, cycle_start_day)
