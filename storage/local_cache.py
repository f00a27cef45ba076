"""Local cache store for the full event collection."""
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence

from events.codec import from_local_form, to_local_form
from events.errors import InvalidRecord, LocalStoreCorrupt, LocalStoreError
from events.issues import IssueSink
from events.models import Event

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION_KEY = 'calendar_events'


class CacheSlot(ABC):
    """A key-value primitive holding one serialized payload per key."""

    @abstractmethod
    def read(self, key: str) -> Optional[str]:
        """Return the payload stored under key, or None if nothing is stored."""
        ...

    @abstractmethod
    def write(self, key: str, payload: str) -> None:
        """Replace the payload stored under key."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Missing keys are not an error."""
        ...


class FileSlot(CacheSlot):
    """Stores each key as a JSON file inside a directory."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def read(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except OSError as e:
            raise LocalStoreError(f"Cannot read {path}: {e}") from e

    def write(self, key: str, payload: str) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file and swap it in so readers never see a partial file
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                    handle.write(payload)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise LocalStoreError(f"Cannot write {path}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise LocalStoreError(f"Cannot delete {self._path(key)}: {e}") from e


class LocalCacheStore:
    """
    Last-known-good copy of the whole event collection.

    The cache is never authoritative: load() never raises and save() only
    reports failures through the logger and the issue sink.
    """

    def __init__(
        self,
        slot: CacheSlot,
        collection_key: str = DEFAULT_COLLECTION_KEY,
        sink: Optional[IssueSink] = None
    ):
        """
        Initialize the cache store.

        Args:
            slot: Storage primitive holding the serialized collection
            collection_key: Name of the single slot this store uses
            sink: Where absorbed failures are recorded
        """
        self.slot = slot
        self.collection_key = collection_key
        self.sink = sink if sink is not None else IssueSink()
        self.last_dropped_count = 0

    def load(self) -> List[Event]:
        """
        Load all events from the cache.

        Records that fail to decode are dropped, and if any were dropped the
        cleaned collection is written back immediately.

        Returns:
            List of Event objects, empty if nothing usable is stored
        """
        self.last_dropped_count = 0
        try:
            payload = self.slot.read(self.collection_key)
        except LocalStoreError as e:
            self.sink.record('load', 'local', e)
            return []

        if payload is None:
            return []

        try:
            records = self._decode_payload(payload)
        except LocalStoreCorrupt as e:
            self.sink.record('load', 'local', e)
            logger.warning(f"Discarding unreadable cache slot '{self.collection_key}'")
            self.save([])
            return []

        events = []
        for record in records:
            try:
                events.append(from_local_form(record))
            except InvalidRecord as e:
                logger.debug(f"Dropping cached record: {e}")
                self.last_dropped_count += 1

        if self.last_dropped_count:
            logger.warning(
                f"Dropped {self.last_dropped_count} invalid cached events, "
                f"rewriting cache with {len(events)} events"
            )
            self.save(events)

        logger.info(f"Loaded {len(events)} events from local cache")
        return events

    def save(self, events: Sequence[Event]) -> bool:
        """
        Replace the cached collection.

        Args:
            events: Full event collection to store

        Returns:
            True if the write succeeded, False if it failed and was absorbed
        """
        try:
            payload = json.dumps([to_local_form(event) for event in events])
            self.slot.write(self.collection_key, payload)
        except (LocalStoreError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to save {len(events)} events to local cache: {e}")
            self.sink.record('save', 'local', e)
            return False

        logger.debug(f"Saved {len(events)} events to local cache")
        return True

    def clear(self) -> None:
        """Remove the cached collection entirely."""
        try:
            self.slot.delete(self.collection_key)
        except LocalStoreError as e:
            self.sink.record('clear', 'local', e)

    def _decode_payload(self, payload: str) -> list:
        try:
            records = json.loads(payload)
        except ValueError as e:
            raise LocalStoreCorrupt(f"Cache slot is not valid JSON: {e}") from e
        if not isinstance(records, list):
            raise LocalStoreCorrupt(
                f"Cache slot holds {type(records).__name__}, expected a list"
            )
        return records
