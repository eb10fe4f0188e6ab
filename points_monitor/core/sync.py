"""
Points history synchronization.

Pulls the remote feed page by page (newest first) and merges each event into
the local store. A run ends at the first of four stop conditions:

1. Cycle boundary - an event at or before the current cycle start
2. Duplicate - an already stored event, in incremental mode only
3. Exhausted - the feed reports no further page
4. Budget - the page budget for this run is spent

Transport and parse errors abort the run. A store error on a single record
is logged and the record skipped.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .errors import InvalidInput, ParseFailure, StoreFailure
from .period import current_cycle_for
from points_monitor.storage.models import FeedCredentials
from points_monitor.storage.repository import UsageRepository

logger = logging.getLogger(__name__)


class StopReason(Enum):
    """Why a synchronization run ended."""
    BOUNDARY = "boundary"
    DUPLICATE = "duplicate"
    EXHAUSTED = "exhausted"
    BUDGET = "budget"


@dataclass
class SyncResult:
    """Outcome of one synchronization run."""
    new_count: int = 0
    updated_count: int = 0
    pages_fetched: int = 0
    skipped_count: int = 0
    stop_reason: Optional[StopReason] = None

    @property
    def message(self) -> str:
        """Human readable summary of the run."""
        if self.updated_count:
            return (
                f"Successfully fetched {self.new_count} new records, "
                f"updated {self.updated_count} existing records"
            )
        return f"Successfully fetched {self.new_count} new records"


def validate_credentials(credentials: FeedCredentials) -> None:
    """Reject an incomplete credential bundle before any request is made."""
    missing = credentials.missing_fields()
    if missing:
        raise InvalidInput(f"Missing required credentials: {', '.join(missing)}")


def sync_points_history(
    client,
    repository: UsageRepository,
    credentials: FeedCredentials,
    cycle_start_day: int,
    full_sync: bool = False,
    page_budget: Optional[int] = None,
    now: Optional[datetime] = None,
    page_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep
) -> SyncResult:
    """Synchronize the current billing cycle's events into the store.

    Args:
        client: Feed client exposing ``fetch_page(credentials, cursor)``
        repository: Record store to merge into
        credentials: Feed credentials
        cycle_start_day: Day of month the billing cycle rolls over
        full_sync: Update existing records instead of stopping at the first one
        page_budget: Maximum pages to fetch; None for no limit
        now: Reference time for the current cycle (defaults to now)
        page_delay: Seconds to wait between page requests
        sleep: Sleep function, replaceable in tests

    Returns:
        SyncResult with counts and the stop reason

    Raises:
        InvalidInput: Credentials incomplete, cycle day or budget out of range
        TransportFailure: Feed unreachable or non-2xx on any page
        ParseFailure: Malformed feed response on any page
    """
    validate_credentials(credentials)
    if not 1 <= cycle_start_day <= 31:
        raise InvalidInput("cycle_start_day must be between 1 and 31")
    if page_budget is not None and page_budget <= 0:
        raise InvalidInput("page_budget must be > 0")

    cycle = current_cycle_for(cycle_start_day, now or datetime.now())
    subscription_start = cycle.start_micros
    mode = "full" if full_sync else "incremental"
    logger.info("Starting %s sync for cycle %s", mode, cycle.label)

    result = SyncResult()
    cursor: Optional[str] = None

    while True:
        page = client.fetch_page(credentials, cursor)
        result.pages_fetched += 1

        stop = None
        for event in page.events:
            # Equal to the cycle start counts as the previous cycle
            if event.creation_time <= subscription_start:
                logger.info("Reached cycle start %s", cycle.start.strftime("%Y-%m-%d %H:%M:%S"))
                stop = StopReason.BOUNDARY
                break

            try:
                exists = repository.exists(event.id)
                if not exists:
                    repository.insert(event)
                    result.new_count += 1
                elif full_sync:
                    repository.update(event)
                    result.updated_count += 1
                else:
                    stop = StopReason.DUPLICATE
                    break
            except StoreFailure as e:
                logger.warning("Skipping record %s: %s", event.id, e)
                result.skipped_count += 1

        if stop is None and not page.has_more:
            stop = StopReason.EXHAUSTED
        if stop is None and page_budget is not None and result.pages_fetched >= page_budget:
            stop = StopReason.BUDGET
        if stop is not None:
            result.stop_reason = stop
            break

        if not page.next_cursor:
            raise ParseFailure("Feed reported more pages without a continuation cursor")
        cursor = page.next_cursor
        logger.debug("Page %d merged, advancing cursor", result.pages_fetched)
        sleep(page_delay)

    logger.info(
        "Sync finished after %d page(s): %d new, %d updated, %d skipped (%s)",
        result.pages_fetched, result.new_count, result.updated_count,
        result.skipped_count, result.stop_reason.value
    )
    return result
