"""
Unit tests for storage layer.

Tests schema creation, record upserts, and aggregate reads.
"""

import os
import tempfile
from datetime import datetime

import pytest

from points_monitor.core.errors import StoreFailure
from points_monitor.core.period import to_micros
from points_monitor.storage.db import get_connection
from points_monitor.storage.models import (
    DEFAULT_REVISION,
    FeedCredentials,
    SyncConfig,
    UsageEvent,
)
from points_monitor.storage.repository import (
    ConfigRepository,
    UsageRepository,
    initialize_schema,
)


def make_event(event_id="evt_1", cost=100, when=datetime(2024, 3, 20, 12, 0), bot="Claude"):
    return UsageEvent(
        id=event_id,
        point_cost=cost,
        creation_time=to_micros(when),
        bot_name=bot,
        bot_id=f"bot_{bot.lower()}",
        cursor="cursor_0",
    )


def find_event(repo, event_id):
    return next((e for e in repo.recent(limit=1000) if e.id == event_id), None)

class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                tables = {
                    row[0] for row in conn.execute(
                        "SELECT name FROM sqlite_master WHERE type='table'"
                    ).fetchall()
                }
                assert {"points_history", "sync_config", "sync_runs"} <= tables

                columns = [col[1] for col in conn.execute("PRAGMA table_info(points_history)")]
                assert columns == [
                    'id', 'point_cost', 'creation_time', 'bot_name',
                    'bot_id', 'cursor', 'recorded_at'
                ]
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        """Initializing twice keeps existing data."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            UsageRepository(db_path).insert(make_event())
            initialize_schema(db_path)
            assert UsageRepository(db_path).exists("evt_1")

    def test_missing_table_is_store_failure(self):
        """Queries against an uninitialized database raise StoreFailure."""
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = UsageRepository(os.path.join(temp_dir, "empty.db"))
            with pytest.raises(StoreFailure):
                repo.exists("evt_1")


class TestUsageRepository:
    """Test points history operations."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = UsageRepository(self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_insert_and_exists(self):
        """Inserted records are found by id."""
        assert not self.repo.exists("evt_1")
        self.repo.insert(make_event())
        assert self.repo.exists("evt_1")

        stored = find_event(self.repo, "evt_1")
        assert stored == make_event()
        assert stored.recorded_at == datetime(2024, 3, 20, 12, 0)

    def test_recorded_at_truncates_to_seconds(self):
        """recorded_at drops the sub-second part of creation_time."""
        event = UsageEvent(
            id="evt_frac", point_cost=1,
            creation_time=to_micros(datetime(2024, 3, 20, 12, 0, 5)) + 999_999,
            bot_name="A", bot_id="a",
        )
        assert event.recorded_at == datetime(2024, 3, 20, 12, 0, 5)

    def test_duplicate_insert_fails(self):
        """The same id can't be inserted twice."""
        self.repo.insert(make_event())
        with pytest.raises(StoreFailure):
            self.repo.insert(make_event(cost=5))
        assert find_event(self.repo, "evt_1").point_cost == 100

    def test_update_overwrites_mutable_fields(self):
        """update() rewrites cost, bot and cursor of an existing record."""
        self.repo.insert(make_event())
        changed = UsageEvent(
            id="evt_1",
            point_cost=250,
            creation_time=make_event().creation_time,
            bot_name="GPT",
            bot_id="bot_gpt",
            cursor="cursor_9",
        )
        self.repo.update(changed)
        assert find_event(self.repo, "evt_1") == changed

    def test_update_missing_record_fails(self):
        """Updating an unknown id raises StoreFailure."""
        with pytest.raises(StoreFailure):
            self.repo.update(make_event("nope"))

    def test_recent_orders_newest_first(self):
        """recent() returns records by creation time, newest first, up to limit."""
        for hour in range(5):
            self.repo.insert(make_event(f"evt_{hour}", when=datetime(2024, 3, 20, hour)))

        events = self.repo.recent(limit=3)
        assert [e.id for e in events] == ["evt_4", "evt_3", "evt_2"]

    def test_grouped_sum_by_consumer(self):
        """Totals per bot are ordered by total cost descending."""
        self.repo.insert(make_event("a1", cost=10, bot="Alpha"))
        self.repo.insert(make_event("a2", cost=15, bot="Alpha"))
        self.repo.insert(make_event("b1", cost=40, bot="Beta"))

        totals = self.repo.grouped_sum_by_consumer()
        assert [(t.bot_name, t.total_cost, t.count) for t in totals] == [
            ("Beta", 40, 1),
            ("Alpha", 25, 2),
        ]

    def test_range_grouped_sum_is_half_open(self):
        """Records at the range start are included, at the range end excluded."""
        start = datetime(2024, 3, 15)
        end = datetime(2024, 4, 15)
        self.repo.insert(make_event("at_start", cost=1, when=start))
        self.repo.insert(make_event("inside", cost=2, when=datetime(2024, 3, 16)))
        self.repo.insert(make_event("at_end", cost=4, when=end))

        buckets = self.repo.range_grouped_sum(to_micros(start), to_micros(end), "'all'")
        assert len(buckets) == 1
        assert buckets[0].point_cost == 3
        assert buckets[0].record_count == 2

    def test_sum_since(self):
        """sum_since totals records at or after the cutoff."""
        self.repo.insert(make_event("old", cost=5, when=datetime(2024, 3, 1)))
        self.repo.insert(make_event("new", cost=7, when=datetime(2024, 3, 10)))

        assert self.repo.sum_since(to_micros(datetime(2024, 3, 10))) == 7
        assert self.repo.sum_since(to_micros(datetime(2024, 4, 1))) == 0


class TestConfigRepository:
    """Test sync configuration persistence."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = ConfigRepository(self.db_path)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _config(self, cookie="c1", day=1, interval=30, enabled=False):
        return SyncConfig(
            credentials=FeedCredentials(cookie=cookie, form_key="fk", channel="ch"),
            cycle_start_day=day,
            auto_sync_interval_minutes=interval,
            auto_sync_enabled=enabled,
        )

    def test_load_latest_empty(self):
        """No saved config loads as None."""
        assert self.repo.load_latest() is None

    def test_upsert_creates_then_replaces(self):
        """The first save inserts; later saves replace the single row."""
        self.repo.upsert(self._config())
        self.repo.upsert(self._config(cookie="c2", day=15, interval=10, enabled=True))

        loaded = self.repo.load_latest()
        assert loaded.credentials.cookie == "c2"
        assert loaded.credentials.revision == DEFAULT_REVISION
        assert loaded.cycle_start_day == 15
        assert loaded.auto_sync_interval_minutes == 10
        assert loaded.auto_sync_enabled is True
        assert loaded.updated_at is not None

        conn = get_connection(self.db_path)
        try:
            assert conn.execute("SELECT COUNT(*) FROM sync_config").fetchone()[0] == 1
        finally:
            conn.close()

    def test_sync_config_validation(self):
        """SyncConfig rejects out-of-range values."""
        with pytest.raises(ValueError):
            self._config(day=0)
        with pytest.raises(ValueError):
            self._config(day=32)
        with pytest.raises(ValueError):
            self._config(interval=0)

    def test_run_record_round_trip(self):
        """The last scheduled run is kept as a single replaceable row."""
        assert self.repo.load_last_run() is None

        self.repo.record_run(datetime(2024, 3, 20, 12, 0), "Success: 3 new records")
        self.repo.record_run(datetime(2024, 3, 20, 12, 30), "Error: HTTP 502")

        last = self.repo.load_last_run()
        assert last.finished_at == datetime(2024, 3, 20, 12, 30)
        assert last.result == "Error: HTTP 502"

        conn = get_connection(self.db_path)
        try:
            assert conn.execute("SELECT COUNT(*) FROM sync_runs").fetchone()[0] == 1
        finally:
            conn.close()

    def test_credentials_completeness_ignores_whitespace(self):
        """Whitespace-only credentials count as missing."""
        creds = FeedCredentials(cookie="   ", form_key="fk", channel="\t")
        assert creds.is_complete is False
        assert creds.missing_fields() == ["cookie", "channel"]
        assert FeedCredentials(cookie="c", form_key="fk", channel="ch").is_complete
