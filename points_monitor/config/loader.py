"""
Configuration management and loading.

Handles application settings from an optional YAML file.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from points_monitor.feed.client import DEFAULT_ENDPOINT, DEFAULT_PAGE_SIZE, DEFAULT_TIMEOUT
from points_monitor.storage.db import DEFAULT_DB_PATH
from points_monitor.storage.models import DEFAULT_AUTO_SYNC_INTERVAL

SETTINGS_ENV_VAR = "POINTS_MONITOR_SETTINGS"

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class FeedSettings:
    """How to reach the remote points feed."""
    endpoint: str = DEFAULT_ENDPOINT
    page_size: int = DEFAULT_PAGE_SIZE
    timeout_seconds: float = DEFAULT_TIMEOUT
    page_delay_seconds: float = 1.0

    def __post_init__(self):
        """Validate feed values."""
        if not self.endpoint:
            raise ValueError("feed.endpoint must not be empty")
        if self.page_size <= 0:
            raise ValueError("feed.page_size must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("feed.timeout_seconds must be > 0")
        if self.page_delay_seconds < 0:
            raise ValueError("feed.page_delay_seconds must be >= 0")


@dataclass(frozen=True)
class SyncSettings:
    """Limits for scheduled synchronization."""
    scheduled_page_budget: int = 10
    default_interval_minutes: int = DEFAULT_AUTO_SYNC_INTERVAL

    def __post_init__(self):
        """Validate sync limits are positive."""
        if self.scheduled_page_budget <= 0:
            raise ValueError("sync.scheduled_page_budget must be > 0")
        if self.default_interval_minutes <= 0:
            raise ValueError("sync.default_interval_minutes must be > 0")


@dataclass(frozen=True)
class MonitorSettings:
    """Complete application settings."""
    database_path: str = DEFAULT_DB_PATH
    feed: FeedSettings = field(default_factory=FeedSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate database path and log level."""
        if not self.database_path:
            raise ValueError("database_path must not be empty")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {sorted(LOG_LEVELS)}")


_SECTION_KEYS = {
    "feed": {"endpoint", "page_size", "timeout_seconds", "page_delay_seconds"},
    "sync": {"scheduled_page_budget", "default_interval_minutes"},
    "logging": {"level"},
}


def load_settings(path: Optional[str] = None) -> MonitorSettings:
    """Load and validate settings from a YAML file.

    With no path, the ``POINTS_MONITOR_SETTINGS`` environment variable is
    consulted; with neither, defaults are returned. Every key is optional but
    unknown keys are rejected so typos don't silently fall back to defaults.

    Args:
        path: Path to YAML settings file

    Returns:
        Validated MonitorSettings object

    Raises:
        FileNotFoundError: If settings file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If settings are invalid
    """
    path = path or os.environ.get(SETTINGS_ENV_VAR)
    if not path:
        return MonitorSettings()

    settings_path = Path(path)
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(settings_path, 'r', encoding='utf-8') as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in settings file {path}: {e}")

    if raw is None:
        return MonitorSettings()
    if not isinstance(raw, dict):
        raise ValueError("Settings file must contain a mapping")

    allowed_top_keys = {"database_path"} | set(_SECTION_KEYS)
    unknown_keys = set(raw.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown settings keys: {unknown_keys}")

    feed_data = _section(raw, "feed")
    sync_data = _section(raw, "sync")
    logging_data = _section(raw, "logging")

    feed = FeedSettings(
        endpoint=_typed(feed_data, "endpoint", str, "feed", DEFAULT_ENDPOINT),
        page_size=_typed(feed_data, "page_size", int, "feed", DEFAULT_PAGE_SIZE),
        timeout_seconds=float(_typed(feed_data, "timeout_seconds", (int, float), "feed", DEFAULT_TIMEOUT)),
        page_delay_seconds=float(_typed(feed_data, "page_delay_seconds", (int, float), "feed", 1.0)),
    )
    sync = SyncSettings(
        scheduled_page_budget=_typed(sync_data, "scheduled_page_budget", int, "sync", 10),
        default_interval_minutes=_typed(
            sync_data, "default_interval_minutes", int, "sync", DEFAULT_AUTO_SYNC_INTERVAL
        ),
    )
    level = _typed(logging_data, "level", str, "logging", "INFO").upper()

    return MonitorSettings(
        database_path=_typed(raw, "database_path", str, "settings", DEFAULT_DB_PATH),
        feed=feed,
        sync=sync,
        log_level=level,
    )


def _section(raw: Dict, name: str) -> Dict:
    """Return a validated settings section, empty if absent."""
    data = raw.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - _SECTION_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _typed(data: Dict, key: str, kind, path: str, default: Any) -> Any:
    """Return ``data[key]`` checked against ``kind``, or ``default`` if missing."""
    if key not in data or data[key] is None:
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, kind):
        raise ValueError(f"'{key}' in {path} has the wrong type")
    return value
