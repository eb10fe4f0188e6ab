"""
Points balance projection.

Combines the balance reported by the feed with locally stored spend to
estimate how long the remaining points will last.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .period import to_micros
from points_monitor.feed.client import PointsInfo
from points_monitor.storage.repository import UsageRepository

MICROS_PER_DAY = 24 * 60 * 60 * 1_000_000

# The feed only reports the next grant; the current grant is assumed 30 days earlier
GRANT_PERIOD_DAYS = 30

# Reported when there is no spend to project from
UNLIMITED_DAYS = 999


@dataclass(frozen=True)
class BalanceSummary:
    """Balance figures plus spend projections."""
    total_allotment: int
    current_balance: int
    used_points: int
    usage_percentage: float
    avg_per_day: int
    remaining_days: int
    next_grant_time: int
    expires_time: Optional[int]
    subscription_name: Optional[str]


def summarize_balance(
    info: PointsInfo,
    repository: UsageRepository,
    now: Optional[datetime] = None
) -> BalanceSummary:
    """Project remaining days from the average daily spend of this grant period."""
    current_micros = to_micros(now or datetime.now())
    grant_start = info.next_grant_time - GRANT_PERIOD_DAYS * MICROS_PER_DAY

    spent = repository.sum_since(grant_start)
    days_elapsed = max((current_micros - grant_start) / MICROS_PER_DAY, 1.0)
    avg_per_day = int(spent / days_elapsed)

    if avg_per_day > 0:
        remaining_days = int(info.current_balance / avg_per_day)
    else:
        remaining_days = UNLIMITED_DAYS

    used = info.total_allotment - info.current_balance
    percentage = used / info.total_allotment * 100 if info.total_allotment else 0.0

    return BalanceSummary(
        total_allotment=info.total_allotment,
        current_balance=info.current_balance,
        used_points=used,
        usage_percentage=percentage,
        avg_per_day=avg_per_day,
        remaining_days=remaining_days,
        next_grant_time=info.next_grant_time,
        expires_time=info.expires_time,
        subscription_name=info.subscription_name,
    )
