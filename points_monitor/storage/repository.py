"""
Repository pattern for data access.

Handles database operations and data persistence logic.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from points_monitor.core.errors import StoreFailure
from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    DEFAULT_AUTO_SYNC_INTERVAL,
    DEFAULT_CYCLE_START_DAY,
    AggregateBucket,
    ConsumerTotal,
    FeedCredentials,
    RunRecord,
    SyncConfig,
    UsageEvent,
)


@contextmanager
def _session(db_path: str) -> Iterator[sqlite3.Connection]:
    """Open a connection, commit on success, and translate SQLite errors.

    Each session is one transaction, so a reader never observes a
    half-applied write.
    """
    try:
        conn = get_connection(db_path)
    except sqlite3.Error as e:
        raise StoreFailure(f"Cannot open database {db_path}: {e}") from e
    try:
        yield conn
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        raise StoreFailure(str(e)) from e
    finally:
        conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the points history, sync config and sync run tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    with _session(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS points_history (
                id TEXT PRIMARY KEY,
                point_cost INTEGER NOT NULL,
                creation_time INTEGER NOT NULL,
                bot_name TEXT NOT NULL,
                bot_id TEXT NOT NULL,
                cursor TEXT NOT NULL,
                recorded_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_creation_time ON points_history(creation_time);

            CREATE TABLE IF NOT EXISTS sync_config (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                cookie TEXT,
                form_key TEXT,
                tchannel TEXT,
                revision TEXT,
                tag_id TEXT,
                cycle_start_day INTEGER DEFAULT 1,
                auto_sync_interval INTEGER DEFAULT 30,
                auto_sync_enabled INTEGER DEFAULT 0,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS sync_runs (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                finished_at TEXT NOT NULL,
                result TEXT NOT NULL
            );
        """)


def _row_to_event(row) -> UsageEvent:
    return UsageEvent(
        id=row[0],
        point_cost=row[1],
        creation_time=row[2],
        bot_name=row[3],
        bot_id=row[4],
        cursor=row[5],
    )


class UsageRepository:
    """Repository for points history records.

    Every method opens its own connection and runs as one transaction;
    SQLite failures surface as StoreFailure.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def exists(self, event_id: str) -> bool:
        """Return True if a record with this id is already stored."""
        with _session(self.db_path) as conn:
            row = conn.execute(
                "SELECT EXISTS(SELECT 1 FROM points_history WHERE id = ?)",
                (event_id,),
            ).fetchone()
            return bool(row[0])

    def insert(self, event: UsageEvent) -> None:
        """Insert a new record. Fails with StoreFailure if the id is taken."""
        with _session(self.db_path) as conn:
            conn.execute("""
                INSERT INTO points_history
                (id, point_cost, creation_time, bot_name, bot_id, cursor, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                event.id,
                event.point_cost,
                event.creation_time,
                event.bot_name,
                event.bot_id,
                event.cursor,
                event.recorded_at.isoformat(),
            ))

    def update(self, event: UsageEvent) -> None:
        """Overwrite the mutable fields of an existing record."""
        with _session(self.db_path) as conn:
            cursor = conn.execute("""
                UPDATE points_history
                SET point_cost = ?, creation_time = ?, bot_name = ?, bot_id = ?,
                    cursor = ?, recorded_at = ?
                WHERE id = ?
            """, (
                event.point_cost,
                event.creation_time,
                event.bot_name,
                event.bot_id,
                event.cursor,
                event.recorded_at.isoformat(),
                event.id,
            ))
            if cursor.rowcount == 0:
                raise StoreFailure(f"No record with id {event.id} to update")

    def recent(self, limit: int = 20) -> List[UsageEvent]:
        """Get the newest records.

        Args:
            limit: Maximum number of records to return

        Returns:
            Records ordered by creation time (newest first)
        """
        with _session(self.db_path) as conn:
            rows = conn.execute("""
                SELECT id, point_cost, creation_time, bot_name, bot_id, cursor
                FROM points_history
                ORDER BY creation_time DESC
                LIMIT ?
            """, (limit,)).fetchall()
        return [_row_to_event(row) for row in rows]

    def range_grouped_sum(
        self,
        start_micros: int,
        end_micros: int,
        bucket_expr: str
    ) -> List[AggregateBucket]:
        """Sum cost and count records per bucket over a half-open time range.

        Args:
            start_micros: Inclusive lower bound on creation_time
            end_micros: Exclusive upper bound on creation_time
            bucket_expr: SQL expression over ``creation_time`` yielding the bucket key.
                Only trusted, module-defined expressions may be passed here.

        Returns:
            Buckets ordered by key ascending
        """
        query = f"""
            SELECT {bucket_expr} AS bucket,
                   SUM(point_cost) AS point_cost,
                   COUNT(*) AS record_count
            FROM points_history
            WHERE creation_time >= ? AND creation_time < ?
            GROUP BY bucket
            ORDER BY bucket
        """
        with _session(self.db_path) as conn:
            rows = conn.execute(query, (start_micros, end_micros)).fetchall()
        return [
            AggregateBucket(bucket=row[0], point_cost=row[1], record_count=row[2])
            for row in rows
        ]

    def grouped_sum_by_consumer(self) -> List[ConsumerTotal]:
        """Total cost and count per bot, most expensive first."""
        with _session(self.db_path) as conn:
            rows = conn.execute("""
                SELECT bot_name, SUM(point_cost) AS total_cost, COUNT(*) AS count
                FROM points_history
                GROUP BY bot_name
                ORDER BY total_cost DESC
            """).fetchall()
        return [ConsumerTotal(bot_name=row[0], total_cost=row[1], count=row[2]) for row in rows]

    def sum_since(self, start_micros: int) -> int:
        """Total cost of all records created at or after ``start_micros``."""
        with _session(self.db_path) as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(point_cost), 0) FROM points_history WHERE creation_time >= ?",
                (start_micros,),
            ).fetchone()
        return int(row[0])


class ConfigRepository:
    """Repository for the single active SyncConfig row."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def load_latest(self) -> Optional[SyncConfig]:
        """Return the current configuration, or None if none was ever saved."""
        with _session(self.db_path) as conn:
            row = conn.execute("""
                SELECT COALESCE(cookie, ''), COALESCE(form_key, ''), COALESCE(tchannel, ''),
                       COALESCE(revision, ''), COALESCE(tag_id, ''),
                       COALESCE(cycle_start_day, ?), COALESCE(auto_sync_interval, ?),
                       COALESCE(auto_sync_enabled, 0), updated_at
                FROM sync_config ORDER BY id DESC LIMIT 1
            """, (DEFAULT_CYCLE_START_DAY, DEFAULT_AUTO_SYNC_INTERVAL)).fetchone()
        if row is None:
            return None

        try:
            return SyncConfig(
                credentials=FeedCredentials(
                    cookie=row[0],
                    form_key=row[1],
                    channel=row[2],
                    revision=row[3],
                    tag_id=row[4],
                ),
                cycle_start_day=row[5],
                auto_sync_interval_minutes=row[6],
                auto_sync_enabled=bool(row[7]),
                updated_at=datetime.fromisoformat(row[8]) if row[8] else None,
            )
        except ValueError as e:
            raise StoreFailure(f"Stored sync config is invalid: {e}") from e

    def upsert(self, config: SyncConfig) -> None:
        """Replace the current configuration, creating it on first save."""
        creds = config.credentials
        values = (
            creds.cookie,
            creds.form_key,
            creds.channel,
            creds.revision,
            creds.tag_id,
            config.cycle_start_day,
            config.auto_sync_interval_minutes,
            1 if config.auto_sync_enabled else 0,
            (config.updated_at or datetime.now()).isoformat(),
        )
        with _session(self.db_path) as conn:
            row = conn.execute("SELECT id FROM sync_config ORDER BY id DESC LIMIT 1").fetchone()
            if row is None:
                conn.execute("""
                    INSERT INTO sync_config
                    (cookie, form_key, tchannel, revision, tag_id, cycle_start_day,
                     auto_sync_interval, auto_sync_enabled, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, values)
            else:
                conn.execute("""
                    UPDATE sync_config
                    SET cookie = ?, form_key = ?, tchannel = ?, revision = ?, tag_id = ?,
                        cycle_start_day = ?, auto_sync_interval = ?, auto_sync_enabled = ?,
                        updated_at = ?
                    WHERE id = ?
                """, values + (row[0],))

    def record_run(self, finished_at: datetime, result: str) -> None:
        """Store the outcome of a scheduled run, replacing the previous one."""
        with _session(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_runs (id, finished_at, result) VALUES (1, ?, ?)",
                (finished_at.isoformat(), result),
            )

    def load_last_run(self) -> Optional[RunRecord]:
        """Return the last recorded scheduled run, from any process."""
        with _session(self.db_path) as conn:
            row = conn.execute("SELECT finished_at, result FROM sync_runs WHERE id = 1").fetchone()
        if row is None:
            return None
        return RunRecord(finished_at=datetime.fromisoformat(row[0]), result=row[1])
