"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

# Published defaults for the optional feed headers
DEFAULT_REVISION = "59988163982a4ac4be7c7e7784f006dc48cafcf5"
DEFAULT_TAG_ID = "8a0df086c2034f5e97dcb01c426029ee"

DEFAULT_CYCLE_START_DAY = 1
DEFAULT_AUTO_SYNC_INTERVAL = 30


@dataclass(frozen=True)
class UsageEvent:
    """One billed action pulled from the points history feed.

    Keyed by ``id``. A full sync may rewrite cost, bot and cursor of an
    existing row, but never stores the same id twice.
    """
    id: str
    point_cost: int
    creation_time: int  # microseconds since epoch
    bot_name: str
    bot_id: str
    cursor: str = ""

    @property
    def recorded_at(self) -> datetime:
        """Local ingestion timestamp: creation time truncated to seconds."""
        return datetime.fromtimestamp(self.creation_time // 1_000_000)


@dataclass(frozen=True)
class FeedCredentials:
    """Opaque credential bundle passed through to the feed unchanged."""
    cookie: str
    form_key: str
    channel: str
    revision: str = DEFAULT_REVISION
    tag_id: str = DEFAULT_TAG_ID

    @property
    def is_complete(self) -> bool:
        """True when every required credential is non-blank."""
        return not self.missing_fields()

    def missing_fields(self) -> List[str]:
        """Names of required credentials that are empty or whitespace."""
        return [
            name for name, value in (
                ("cookie", self.cookie),
                ("form_key", self.form_key),
                ("channel", self.channel),
            )
            if not value or not value.strip()
        ]

    def with_defaults(self) -> "FeedCredentials":
        """Return a copy with empty optional headers replaced by the defaults."""
        return FeedCredentials(
            cookie=self.cookie,
            form_key=self.form_key,
            channel=self.channel,
            revision=self.revision or DEFAULT_REVISION,
            tag_id=self.tag_id or DEFAULT_TAG_ID,
        )


@dataclass(frozen=True)
class SyncConfig:
    """The single active synchronization configuration."""
    credentials: FeedCredentials
    cycle_start_day: int = DEFAULT_CYCLE_START_DAY
    auto_sync_interval_minutes: int = DEFAULT_AUTO_SYNC_INTERVAL
    auto_sync_enabled: bool = False
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate cycle day and interval ranges."""
        if not 1 <= self.cycle_start_day <= 31:
            raise ValueError("cycle_start_day must be between 1 and 31")
        if self.auto_sync_interval_minutes <= 0:
            raise ValueError("auto_sync_interval_minutes must be > 0")


@dataclass(frozen=True)
class AggregateBucket:
    """Summed usage for one time bucket."""
    bucket: str
    point_cost: int
    record_count: int


@dataclass(frozen=True)
class ConsumerTotal:
    """Lifetime usage for one bot."""
    bot_name: str
    total_cost: int
    count: int


@dataclass(frozen=True)
class RunRecord:
    """Outcome of the most recent scheduled sync, as persisted."""
    finished_at: datetime
    result: str
