"""
Time-bucketed usage aggregation.

Groups the records of one billing cycle into minute, hour, half-day or day
buckets, either as per-bucket values or as a running total.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from .errors import InvalidInput
from .period import CyclePeriod, resolve_cycle
from points_monitor.storage.models import AggregateBucket
from points_monitor.storage.repository import UsageRepository

_LOCAL_TIME = "datetime(creation_time / 1000000, 'unixepoch', 'localtime')"


class Granularity(Enum):
    """Bucket size for aggregation."""
    MINUTE = "minute"
    HOUR = "hour"
    HALF_DAY = "halfday"
    DAY = "day"

    @property
    def bucket_expr(self) -> str:
        """SQL expression mapping ``creation_time`` to this granularity's bucket key."""
        return _BUCKET_EXPRESSIONS[self]

    @classmethod
    def parse(cls, value: Union[str, "Granularity"]) -> "Granularity":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "").replace("_", "")
        for member in cls:
            if member.value == normalized:
                return member
        raise InvalidInput(
            f"Invalid granularity '{value}', must be one of: {[m.value for m in cls]}"
        )


# Half-day keys sort "AM" before "PM" within a date
_BUCKET_EXPRESSIONS = {
    Granularity.MINUTE: f"strftime('%Y-%m-%d %H:%M', {_LOCAL_TIME})",
    Granularity.HOUR: f"strftime('%Y-%m-%d %H:00', {_LOCAL_TIME})",
    Granularity.HALF_DAY: (
        f"strftime('%Y-%m-%d', {_LOCAL_TIME}) || "
        f"CASE WHEN CAST(strftime('%H', {_LOCAL_TIME}) AS INTEGER) < 12 "
        f"THEN ' AM' ELSE ' PM' END"
    ),
    Granularity.DAY: f"strftime('%Y-%m-%d', {_LOCAL_TIME})",
}


class ChartMode(Enum):
    """Presentation of aggregated buckets."""
    DISCRETE = "discrete"
    CUMULATIVE = "cumulative"

    @classmethod
    def parse(cls, value: Union[str, "ChartMode"]) -> "ChartMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidInput(
                f"Invalid chart mode '{value}', must be one of: {[m.value for m in cls]}"
            )


@dataclass(frozen=True)
class AggregateResult:
    """Buckets for one billing cycle."""
    buckets: List[AggregateBucket]
    cycle: CyclePeriod
    label: str
    in_progress: bool = False

    @property
    def cycle_start(self) -> int:
        return self.cycle.start_micros

    @property
    def cycle_end(self) -> int:
        return self.cycle.end_micros


def accumulate(buckets: List[AggregateBucket]) -> List[AggregateBucket]:
    """Replace each bucket's values with the running totals up to and including it."""
    running_cost = 0
    running_count = 0
    cumulative = []
    for bucket in buckets:
        running_cost += bucket.point_cost
        running_count += bucket.record_count
        cumulative.append(AggregateBucket(
            bucket=bucket.bucket,
            point_cost=running_cost,
            record_count=running_count,
        ))
    return cumulative


def aggregate(
    repository: UsageRepository,
    cycle_start_day: int,
    granularity: Union[str, Granularity] = Granularity.HOUR,
    mode: Union[str, ChartMode] = ChartMode.DISCRETE,
    cycle_offset: int = 0,
    now: Optional[datetime] = None
) -> AggregateResult:
    """Aggregate one billing cycle's usage into time buckets.

    Args:
        repository: Record store to query
        cycle_start_day: Day of month the billing cycle rolls over
        granularity: Bucket size
        mode: Discrete per-bucket values or cumulative running totals
        cycle_offset: Months relative to the current cycle (0 = current, -1 = previous)
        now: Reference time (defaults to now)

    Returns:
        AggregateResult with buckets ordered by key ascending

    Raises:
        InvalidInput: Unknown granularity or mode, or cycle day out of range
    """
    granularity = Granularity.parse(granularity)
    mode = ChartMode.parse(mode)
    if not 1 <= cycle_start_day <= 31:
        raise InvalidInput("cycle_start_day must be between 1 and 31")

    now = now or datetime.now()
    cycle = resolve_cycle(cycle_start_day, cycle_offset, now)
    buckets = repository.range_grouped_sum(
        cycle.start_micros, cycle.end_micros, granularity.bucket_expr
    )
    if mode is ChartMode.CUMULATIVE:
        buckets = accumulate(buckets)

    return AggregateResult(
        buckets=buckets,
        cycle=cycle,
        label=cycle.label,
        in_progress=cycle.contains(now),
    )
