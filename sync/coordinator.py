"""Coordinator deciding which store serves each operation and reconciling them."""
import logging
import time
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Sequence

from events.errors import RemoteError, RemoteRejected, RemoteUnavailable
from events.issues import IssueSink
from events.models import Event, StorageMode
from remote.airtable_client import AirtableClient
from storage.dynamodb_slot import DynamoDBSlot
from storage.local_cache import FileSlot, LocalCacheStore
from sync.config import SyncConfig

logger = logging.getLogger(__name__)


class IdGenerator:
    """Increasing id tokens derived from wall-clock milliseconds."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last = 0

    def next_id(self, taken: Iterable[str] = ()) -> str:
        taken = set(taken)
        candidate = max(int(self._clock() * 1000), self._last + 1)
        while str(candidate) in taken:
            candidate += 1
        self._last = candidate
        return str(candidate)


class SyncCoordinator:
    """
    Single entry point for loading and persisting calendar events.

    The storage mode is fixed at construction. In hybrid mode Airtable is
    authoritative when reachable and the local cache is both a write-through
    backup and the fallback read source.
    """

    def __init__(
        self,
        mode: StorageMode,
        local: LocalCacheStore,
        remote: Optional[AirtableClient] = None,
        sink: Optional[IssueSink] = None,
        id_generator: Optional[IdGenerator] = None
    ):
        """
        Initialize the coordinator.

        Args:
            mode: Storage mode for the whole session
            local: Local cache store, always used for writes
            remote: Airtable client, required unless mode is local-only
            sink: Where absorbed failures are recorded (defaults to the cache's sink)
            id_generator: Source of ids for new events
        """
        if mode.uses_remote and remote is None:
            raise ValueError(f"Storage mode {mode.value} requires a remote store")
        self.mode = mode
        self.local = local
        self.remote = remote if mode.uses_remote else None
        self.sink = sink if sink is not None else local.sink
        self.ids = id_generator or IdGenerator()
        logger.info(f"Initialized SyncCoordinator in {mode.value} mode")

    def load(self) -> List[Event]:
        """
        Load the event collection from the authoritative store.

        Returns:
            List of Event objects (unordered)

        Raises:
            RemoteUnavailable: In remote-only mode when Airtable cannot be reached
            RemoteRejected: When Airtable refuses the request
        """
        if self.mode is StorageMode.LOCAL_ONLY:
            return self.local.load()

        if self.mode is StorageMode.REMOTE_ONLY:
            return self.remote.list_events()

        try:
            events = self.remote.list_events()
        except RemoteUnavailable as e:
            self.sink.record('load', 'remote', e)
            logger.info("Airtable unavailable, falling back to local cache")
            return self.local.load()

        self.local.save(events)
        return events

    def save_all(self, events: Sequence[Event]) -> None:
        """
        Persist the whole collection.

        The local cache is written first. With a remote store, events whose id
        is not yet present remotely are created there; existing remote records
        are never deleted or overwritten.

        Args:
            events: Full event collection as committed by the UI
        """
        events = self._assign_missing_ids(events)
        self.local.save(events)

        if self.remote is None:
            return

        try:
            linked = self._reconcile(events)
        except RemoteError as e:
            if self.mode is StorageMode.REMOTE_ONLY:
                raise
            self.sink.record('save_all', 'remote', e)
            return

        if linked != events:
            self.local.save(linked)

    def create_one(self, event: Event) -> Event:
        """
        Persist a new event.

        Args:
            event: Event to create; an empty id is replaced with a generated one

        Returns:
            The stored event, with its id (and remote id when created remotely)
        """
        current = self.local.load()
        if event.is_new:
            event = replace(event, id=self.ids.next_id(e.id for e in current))

        if self.remote is not None:
            try:
                event = self.remote.create_event(event)
            except RemoteUnavailable as e:
                if self.mode is StorageMode.REMOTE_ONLY:
                    raise
                self.sink.record('create_one', 'remote', e)
                logger.info(f"Stored event {event.id} in local cache only")

        self.local.save(_upsert(current, event))
        return event

    def update_one(self, event: Event) -> Event:
        """
        Replace an existing event, matched by id.

        Args:
            event: Event holding the new values

        Returns:
            The updated event
        """
        if event.is_new:
            logger.warning("Ignoring update for an event without an id")
            return event

        current = self.local.load()
        cached = _find(current, event.id)
        if not event.remote_id and cached is not None and cached.remote_id:
            event = replace(event, remote_id=cached.remote_id)

        self.local.save([event if e.id == event.id else e for e in current])

        if self.remote is None:
            return event

        try:
            record_id = self._resolve_record_id(event.id, event.remote_id)
            if record_id is None:
                raise RemoteRejected(f"No Airtable record with ID {event.id}", 404)
            updated = self.remote.update_event(event, record_id)
        except RemoteError as e:
            if self.mode is StorageMode.REMOTE_ONLY:
                raise
            self.sink.record('update_one', 'remote', e)
            return event

        if updated.remote_id != event.remote_id and cached is not None:
            self.local.save([updated if e.id == updated.id else e for e in current])
        return updated

    def delete_one(self, event_id: str) -> None:
        """
        Remove an event permanently.

        Args:
            event_id: Domain id of the event to delete
        """
        if not event_id:
            logger.warning("Ignoring delete for an empty event id")
            return

        current = self.local.load()
        cached = _find(current, event_id)
        self.local.save([e for e in current if e.id != event_id])

        if self.remote is None:
            return

        try:
            record_id = self._resolve_record_id(event_id, cached.remote_id if cached else None)
            if record_id is None:
                logger.info(f"No Airtable record with ID {event_id}, nothing to delete")
                return
            self.remote.delete_event(record_id)
        except RemoteError as e:
            if self.mode is StorageMode.REMOTE_ONLY:
                raise
            self.sink.record('delete_one', 'remote', e)

    def _assign_missing_ids(self, events: Sequence[Event]) -> List[Event]:
        taken = {event.id for event in events if event.id}
        assigned = []
        for event in events:
            if event.is_new:
                event = replace(event, id=self.ids.next_id(taken))
                taken.add(event.id)
            assigned.append(event)
        return assigned

    def _reconcile(self, events: List[Event]) -> List[Event]:
        """Create the events Airtable lacks and return events linked to their remote ids."""
        remote_ids = {event.id: event.remote_id for event in self.remote.list_events()}
        to_create = [event for event in events if event.id not in remote_ids]

        logger.info(
            f"Sync plan: {len(to_create)} to create, "
            f"{len(events) - len(to_create)} already in Airtable"
        )
        for created in self.remote.create_events(to_create):
            remote_ids[created.id] = created.remote_id

        linked = []
        for event in events:
            remote_id = remote_ids.get(event.id)
            if remote_id and remote_id != event.remote_id:
                event = replace(event, remote_id=remote_id)
            linked.append(event)
        return linked

    def _resolve_record_id(self, event_id: str, remote_id: Optional[str]) -> Optional[str]:
        if remote_id:
            return remote_id
        return self.remote.find_record_id(event_id)


def _find(events: Iterable[Event], event_id: str) -> Optional[Event]:
    return next((event for event in events if event.id == event_id), None)


def _upsert(events: List[Event], event: Event) -> List[Event]:
    if _find(events, event.id) is None:
        return events + [event]
    return [event if e.id == event.id else e for e in events]


def build_coordinator(config: SyncConfig, sink: Optional[IssueSink] = None) -> SyncCoordinator:
    """
    Wire the cache, the Airtable client and the coordinator from configuration.

    Args:
        config: Session configuration
        sink: Issue sink shared by every component

    Returns:
        Ready-to-use SyncCoordinator
    """
    sink = sink if sink is not None else IssueSink()
    if config.cache_table_name:
        slot = DynamoDBSlot(config.cache_table_name)
    else:
        slot = FileSlot(config.cache_dir)
    local = LocalCacheStore(slot, config.collection_key, sink)

    remote = None
    if config.mode.uses_remote:
        remote = AirtableClient(
            base_id=config.airtable_base_id,
            api_key=config.airtable_api_key,
            table_name=config.airtable_table_name,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries
        )

    return SyncCoordinator(config.mode, local, remote, sink)
