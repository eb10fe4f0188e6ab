"""
Points monitor service.

Wires the feed client, the stores and the scheduler together and exposes the
operations a caller (the CLI, or any thin API layer) needs.
"""

import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from .aggregation import AggregateResult, ChartMode, Granularity, aggregate
from .balance import BalanceSummary, summarize_balance
from .errors import InvalidInput
from .scheduler import AutoSyncScheduler, SyncRunState
from .sync import SyncResult, sync_points_history, validate_credentials
from points_monitor.config.loader import MonitorSettings
from points_monitor.feed.client import PointsFeedClient
from points_monitor.storage.models import (
    DEFAULT_CYCLE_START_DAY,
    ConsumerTotal,
    FeedCredentials,
    SyncConfig,
    UsageEvent,
)
from points_monitor.storage.repository import (
    ConfigRepository,
    UsageRepository,
    initialize_schema,
)

logger = logging.getLogger(__name__)


class PointsMonitor:
    """Facade over synchronization, aggregation and scheduling."""

    def __init__(
        self,
        settings: Optional[MonitorSettings] = None,
        client=None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.settings = settings or MonitorSettings()
        db_path = self.settings.database_path
        initialize_schema(db_path)

        feed = self.settings.feed
        self.client = client or PointsFeedClient(
            endpoint=feed.endpoint,
            page_size=feed.page_size,
            timeout=feed.timeout_seconds,
        )
        self.usage_repository = UsageRepository(db_path)
        self.config_repository = ConfigRepository(db_path)
        self.scheduler = AutoSyncScheduler(
            self.client,
            self.usage_repository,
            self.config_repository,
            settings=self.settings.sync,
            page_delay=feed.page_delay_seconds,
        )
        self._sleep = sleep

    def trigger_manual_sync(
        self,
        credentials: FeedCredentials,
        cycle_start_day: int = DEFAULT_CYCLE_START_DAY,
        full_sync: bool = False,
        now: Optional[datetime] = None
    ) -> SyncResult:
        """Run an unbounded sync and remember the credentials that worked.

        Feed errors propagate unchanged. The credentials and cycle day are
        saved after the page loop completes, keeping the stored auto-sync
        settings; a failure to save them is raised to the caller.
        """
        validate_credentials(credentials)
        if not 1 <= cycle_start_day <= 31:
            raise InvalidInput("cycle_start_day must be between 1 and 31")
        credentials = credentials.with_defaults()

        result = sync_points_history(
            self.client,
            self.usage_repository,
            credentials,
            cycle_start_day,
            full_sync=full_sync,
            page_budget=None,
            now=now,
            page_delay=self.settings.feed.page_delay_seconds,
            sleep=self._sleep,
        )
        self._remember_credentials(credentials, cycle_start_day)
        return result

    def _remember_credentials(self, credentials: FeedCredentials, cycle_start_day: int) -> None:
        current = self.config_repository.load_latest()
        if current is not None:
            interval = current.auto_sync_interval_minutes
            enabled = current.auto_sync_enabled
        else:
            interval = self.settings.sync.default_interval_minutes
            enabled = False
        self.config_repository.upsert(SyncConfig(
            credentials=credentials,
            cycle_start_day=cycle_start_day,
            auto_sync_interval_minutes=interval,
            auto_sync_enabled=enabled,
            updated_at=datetime.now(),
        ))

    def get_aggregates(
        self,
        granularity: str = "hour",
        mode: str = "discrete",
        cycle_offset: int = 0,
        now: Optional[datetime] = None
    ) -> AggregateResult:
        """Aggregate a billing cycle using the stored cycle start day."""
        granularity = Granularity.parse(granularity)
        mode = ChartMode.parse(mode)
        config = self.config_repository.load_latest()
        cycle_start_day = config.cycle_start_day if config else DEFAULT_CYCLE_START_DAY
        return aggregate(
            self.usage_repository,
            cycle_start_day,
            granularity=granularity,
            mode=mode,
            cycle_offset=cycle_offset,
            now=now,
        )

    def get_run_status(self) -> SyncRunState:
        """Return the scheduler state, falling back to the last run stored by any process."""
        state = self.scheduler.status()
        if state.last_run_at is None:
            last_run = self.config_repository.load_last_run()
            if last_run is not None:
                state = replace(
                    state,
                    last_run_at=last_run.finished_at,
                    last_run_result=last_run.result,
                )
        return state

    def latest_records(self, limit: int = 20) -> List[UsageEvent]:
        if limit <= 0:
            raise InvalidInput("limit must be > 0")
        return self.usage_repository.recent(limit)

    def consumer_totals(self) -> List[ConsumerTotal]:
        return self.usage_repository.grouped_sum_by_consumer()

    def load_config(self) -> SyncConfig:
        """Return the stored configuration, or the defaults if none was saved."""
        config = self.config_repository.load_latest()
        if config is None:
            return SyncConfig(
                credentials=FeedCredentials(cookie="", form_key="", channel=""),
                auto_sync_interval_minutes=self.settings.sync.default_interval_minutes,
            )
        return config

    def save_config(self, config: SyncConfig) -> None:
        """Persist a configuration and apply its auto-sync settings."""
        self.config_repository.upsert(config)
        self.scheduler.restart(config)

    def start_auto_sync(self) -> bool:
        """Start the scheduler from the stored configuration.

        Returns:
            True if auto sync is enabled and the timer is running
        """
        self.scheduler.restart(self.config_repository.load_latest())
        return self.scheduler.is_active

    def shutdown(self) -> None:
        self.scheduler.stop()

    def points_balance(self, now: Optional[datetime] = None) -> BalanceSummary:
        """Fetch the account balance with the stored credentials and project it."""
        config = self.config_repository.load_latest()
        if config is None or not config.credentials.is_complete:
            raise InvalidInput("No config found, run a sync or set credentials first")
        info = self.client.fetch_points_info(config.credentials)
        return summarize_balance(info, self.usage_repository, now=now)
