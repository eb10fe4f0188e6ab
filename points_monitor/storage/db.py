"""
Database connection management.

Provides SQLite connection for data persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "points_monitor.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection set up for one writer, many readers.

    WAL journaling lets aggregation queries read while a sync is writing;
    the busy timeout makes a second writer wait instead of failing.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection in WAL mode
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=5.0, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn
