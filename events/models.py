"""Data models for calendar events and storage modes."""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional


def normalize_timestamp(value: datetime) -> datetime:
    """Convert to UTC (naive values are taken to be UTC) and truncate to milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


class EventType(str, Enum):
    """Kind of calendar event. Declaration order matters: the first member is the decode fallback."""
    ORDER = 'order'
    INVENTORY = 'inventory'
    MARKETING = 'marketing'
    PROMOTION = 'promotion'


class EventStatus(str, Enum):
    """Lifecycle status of a calendar event."""
    PENDING = 'pending'
    ACTIVE = 'active'
    COMPLETED = 'completed'


class StorageMode(str, Enum):
    """Where event records live for the current session."""
    LOCAL_ONLY = 'local-only'
    REMOTE_ONLY = 'remote-only'
    HYBRID = 'hybrid'

    @property
    def uses_remote(self) -> bool:
        return self is not StorageMode.LOCAL_ONLY


@dataclass
class Event:
    """A single calendar event as seen by the UI."""
    id: str
    title: str
    start: datetime
    end: datetime
    type: EventType = EventType.ORDER
    status: EventStatus = EventStatus.PENDING
    description: str = ''
    remote_id: Optional[str] = None

    def __post_init__(self):
        # Stored timestamps are UTC with millisecond precision
        if isinstance(self.start, datetime):
            self.start = normalize_timestamp(self.start)
        if isinstance(self.end, datetime):
            self.end = normalize_timestamp(self.end)

    @property
    def is_new(self) -> bool:
        return not self.id


def sort_by_start(events: Iterable[Event]) -> List[Event]:
    """Return events ordered by start time, ascending."""
    return sorted(events, key=lambda event: event.start)
