"""Shared pytest fixtures."""
from datetime import datetime, timedelta, timezone

import pytest

from events.issues import IssueSink
from events.models import Event, EventStatus, EventType
from storage.local_cache import FileSlot, LocalCacheStore

T0 = datetime(2024, 1, 15, 19, 0, tzinfo=timezone.utc)


def make_event(event_id: str = 'evt-1', title: str = 'Restock shelves', hours: int = 0, **kwargs) -> Event:
    """Return a well-formed Event starting ``hours`` after T0."""
    start = T0 + timedelta(hours=hours)
    values = dict(
        id=event_id,
        title=title,
        description='Weekly restock',
        start=start,
        end=start + timedelta(hours=1),
        type=EventType.INVENTORY,
        status=EventStatus.ACTIVE,
    )
    values.update(kwargs)
    return Event(**values)


@pytest.fixture
def sink():
    return IssueSink()


@pytest.fixture
def file_slot(tmp_path):
    return FileSlot(tmp_path / 'cache')


@pytest.fixture
def local_store(file_slot, sink):
    return LocalCacheStore(file_slot, sink=sink)
