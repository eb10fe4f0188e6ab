"""
Background auto-sync scheduler.

Runs an incremental sync every N minutes on a daemon thread. At most one
scheduled run is in flight; a tick that arrives while a run is in progress
is dropped, not queued.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional

from .errors import PointsMonitorError
from .sync import sync_points_history
from points_monitor.config.loader import SyncSettings
from points_monitor.storage.models import SyncConfig
from points_monitor.storage.repository import ConfigRepository, UsageRepository

logger = logging.getLogger(__name__)


@dataclass
class SyncRunState:
    """Process-wide record of scheduled sync activity."""
    running: bool = False
    last_run_at: Optional[datetime] = None
    last_run_result: str = ""


class AutoSyncScheduler:
    """Owns the auto-sync timer thread and the run state.

    All access to the state goes through ``_lock``; callers only ever see
    snapshots from ``status()``.
    """

    def __init__(
        self,
        client,
        usage_repository: UsageRepository,
        config_repository: ConfigRepository,
        settings: Optional[SyncSettings] = None,
        page_delay: float = 1.0,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.client = client
        self.usage_repository = usage_repository
        self.config_repository = config_repository
        self.settings = settings or SyncSettings()
        self.page_delay = page_delay
        self._clock = clock

        self._lock = threading.Lock()
        self._state = SyncRunState()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self.interval_minutes: Optional[int] = None

    @property
    def is_active(self) -> bool:
        """True while the timer thread is scheduled."""
        with self._lock:
            return self._thread is not None

    def status(self) -> SyncRunState:
        """Return a snapshot of the run state."""
        with self._lock:
            return replace(self._state)

    def start(self, interval_minutes: int) -> None:
        """Start ticking every ``interval_minutes``, replacing any running timer."""
        if interval_minutes <= 0:
            interval_minutes = self.settings.default_interval_minutes

        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run_loop,
            args=(interval_minutes * 60, stop_event),
            name="points-auto-sync",
            daemon=True,
        )
        # One lock hold for swap and start; the replaced timer is halted outside it
        with self._lock:
            previous = (self._thread, self._stop_event)
            self._thread = thread
            self._stop_event = stop_event
            self.interval_minutes = interval_minutes
            thread.start()
        self._halt(*previous)
        logger.info("Auto sync timer started with %d minutes interval", interval_minutes)

    def stop(self) -> None:
        """Stop the timer. A run already in progress finishes on its own."""
        with self._lock:
            previous = (self._thread, self._stop_event)
            self._thread = None
            self._stop_event = None
            self.interval_minutes = None
        if self._halt(*previous):
            logger.info("Auto sync timer stopped")

    def _halt(self, thread: Optional[threading.Thread], stop_event: Optional[threading.Event]) -> bool:
        if thread is None:
            return False
        stop_event.set()
        if thread is not threading.current_thread():
            thread.join(timeout=1.0)
        return True

    def restart(self, config: Optional[SyncConfig]) -> None:
        """Apply a configuration: run the timer iff auto sync is enabled."""
        self.stop()
        if config is not None and config.auto_sync_enabled:
            self.start(config.auto_sync_interval_minutes)

    def _run_loop(self, interval_seconds: float, stop_event: threading.Event) -> None:
        while not stop_event.wait(interval_seconds):
            try:
                self.tick()
            except Exception:
                # The timer thread must outlive any single failed run
                logger.exception("Unexpected error in scheduled sync")

    def tick(self) -> bool:
        """Perform one scheduled sync.

        Returns:
            False if the tick was dropped because a run is in progress
        """
        with self._lock:
            if self._state.running:
                logger.info("Auto sync already in progress, skipping tick")
                return False
            self._state.running = True

        outcome = "Error: run aborted"
        try:
            outcome = self._run_once()
        finally:
            finished_at = self._clock()
            with self._lock:
                self._state.running = False
                self._state.last_run_at = finished_at
                self._state.last_run_result = outcome

        # Other processes read the last run from the store
        try:
            self.config_repository.record_run(finished_at, outcome)
        except PointsMonitorError as e:
            logger.warning("Could not record auto sync result: %s", e)
        return True

    def _run_once(self) -> str:
        logger.info("Starting auto sync...")
        try:
            config = self.config_repository.load_latest()
        except PointsMonitorError as e:
            logger.error("Auto sync could not read config: %s", e)
            return f"Error: {e}"

        if config is None or not config.auto_sync_enabled:
            logger.info("Auto sync disabled or no config")
            return "Disabled or no config"
        if not config.credentials.is_complete:
            logger.warning("Auto sync: invalid config")
            return "Invalid config"

        try:
            result = sync_points_history(
                self.client,
                self.usage_repository,
                config.credentials,
                config.cycle_start_day,
                full_sync=False,
                page_budget=self.settings.scheduled_page_budget,
                now=self._clock(),
                page_delay=self.page_delay,
            )
        except PointsMonitorError as e:
            logger.error("Auto sync error: %s", e)
            return f"Error: {e}"

        logger.info("Auto sync completed: %d new records", result.new_count)
        return f"Success: {result.new_count} new records"
