"""Unit tests for SyncCoordinator."""
from dataclasses import replace
from datetime import datetime

import pytest

from events.errors import RemoteRejected, RemoteUnavailable
from events.models import StorageMode
from remote.airtable_client import AirtableClient
from storage.local_cache import FileSlot
from sync.config import SyncConfig
from sync.coordinator import IdGenerator, SyncCoordinator, build_coordinator
from tests.conftest import make_event
from tests.fake_airtable import FakeAirtableClient


@pytest.fixture
def remote():
    return FakeAirtableClient()


def coordinator_for(mode, local_store, remote=None):
    return SyncCoordinator(mode, local_store, remote, id_generator=IdGenerator(clock=lambda: 1700000000.0))


class TestIdGenerator:
    """Test cases for IdGenerator."""

    def test_ids_increase_with_fixed_clock(self):
        """Test ids keep increasing even when the clock does not move."""
        ids = IdGenerator(clock=lambda: 1700000000.0)

        first = ids.next_id()
        second = ids.next_id()

        assert first == '1700000000000'
        assert int(second) > int(first)

    def test_skips_taken_ids(self):
        """Test generated ids avoid ids already in the collection."""
        ids = IdGenerator(clock=lambda: 1.0)

        assert ids.next_id({'1000', '1001'}) == '1002'


class TestConstruction:
    """Test cases for building a coordinator."""

    @pytest.mark.parametrize('mode', [StorageMode.REMOTE_ONLY, StorageMode.HYBRID])
    def test_remote_modes_require_remote(self, mode, local_store):
        """Test a remote mode without a remote store is refused."""
        with pytest.raises(ValueError):
            SyncCoordinator(mode, local_store)

    def test_shares_cache_sink_by_default(self, local_store):
        """Test absorbed failures land in a single sink."""
        coordinator = SyncCoordinator(StorageMode.LOCAL_ONLY, local_store)
        assert coordinator.sink is local_store.sink

    def test_build_local_only(self, tmp_path):
        """Test a configuration without credentials builds a file-backed local coordinator."""
        config = SyncConfig.from_env({'CACHE_DIR': str(tmp_path)})

        coordinator = build_coordinator(config)

        assert coordinator.mode is StorageMode.LOCAL_ONLY
        assert coordinator.remote is None
        assert isinstance(coordinator.local.slot, FileSlot)

    def test_build_hybrid(self, tmp_path):
        """Test credentials produce an Airtable-backed hybrid coordinator."""
        config = SyncConfig.from_env({
            'AIRTABLE_BASE_ID': 'app123',
            'AIRTABLE_API_KEY': 'pat-secret',
            'AIRTABLE_TABLE_NAME': 'Events',
            'CACHE_DIR': str(tmp_path),
        })

        coordinator = build_coordinator(config)

        assert coordinator.mode is StorageMode.HYBRID
        assert isinstance(coordinator.remote, AirtableClient)
        assert coordinator.remote.table_url.endswith('/app123/Events')


class TestLoad:
    """Test cases for load."""

    def test_local_only_reads_cache(self, local_store):
        """Test local-only mode returns the cache contents."""
        local_store.save([make_event('a')])

        assert [e.id for e in coordinator_for(StorageMode.LOCAL_ONLY, local_store).load()] == ['a']

    def test_remote_only_reads_remote(self, local_store, remote):
        """Test remote-only mode ignores the cache on read."""
        local_store.save([make_event('stale')])
        remote.create_events([make_event('fresh')])

        events = coordinator_for(StorageMode.REMOTE_ONLY, local_store, remote).load()

        assert [e.id for e in events] == ['fresh']

    def test_remote_only_failure_raises(self, local_store, remote):
        """Test remote-only mode has no fallback."""
        local_store.save([make_event('a')])
        remote.fail_with = RemoteUnavailable('offline')

        with pytest.raises(RemoteUnavailable):
            coordinator_for(StorageMode.REMOTE_ONLY, local_store, remote).load()

    def test_hybrid_writes_through(self, local_store, remote):
        """Test a successful remote load refreshes the cache."""
        local_store.save([make_event('stale')])
        remote.create_events([make_event('a'), make_event('b', hours=1)])

        events = coordinator_for(StorageMode.HYBRID, local_store, remote).load()

        assert sorted(e.id for e in events) == ['a', 'b']
        assert local_store.load() == events
        assert all(e.remote_id for e in local_store.load())

    def test_hybrid_falls_back_to_cache(self, local_store, remote):
        """Test remote unavailability returns exactly the cached events without raising."""
        cached = [make_event('a'), make_event('b', hours=2)]
        local_store.save(cached)
        remote.fail_with = RemoteUnavailable('connection refused')
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        events = coordinator.load()

        assert events == cached
        issues = coordinator.sink.for_operation('load')
        assert len(issues) == 1
        assert issues[0].error_type == 'RemoteUnavailable'

    def test_hybrid_rejection_is_surfaced(self, local_store, remote):
        """Test a rejected request is not silently replaced by cached data."""
        local_store.save([make_event('a')])
        remote.fail_with = RemoteRejected('invalid token', 401)

        with pytest.raises(RemoteRejected):
            coordinator_for(StorageMode.HYBRID, local_store, remote).load()


class TestSaveAll:
    """Test cases for save_all."""

    def test_hybrid_creates_only_missing_events(self, local_store, remote):
        """Test reconciliation creates exactly the events Airtable lacks."""
        remote.create_events([make_event('a')])
        remote.create_calls.clear()
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        coordinator.save_all([make_event('a'), make_event('b', hours=1)])

        assert remote.create_calls == [['b']]
        assert remote.ids == ['a', 'b']
        assert all(e.remote_id for e in local_store.load())

    def test_reconciliation_is_additive(self, local_store, remote):
        """Test remote-only records are kept and differing content is not overwritten."""
        remote.create_events([make_event('a', title='Remote title'), make_event('extra')])
        remote.create_calls.clear()
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        coordinator.save_all([make_event('a', title='Local title')])

        assert remote.create_calls == []
        assert remote.updates == []
        assert remote.deletes == []
        assert remote.get('a').title == 'Remote title'
        assert [e.title for e in local_store.load()] == ['Local title']

    def test_bulk_create_is_batched(self, local_store, remote):
        """Test 23 new events are created in batches of 10, 10 and 3."""
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        coordinator.save_all([make_event(f"e{i:02d}", hours=i) for i in range(23)])

        assert [len(batch) for batch in remote.create_calls] == [10, 10, 3]

    def test_local_written_first_in_hybrid_failure(self, local_store, remote):
        """Test remote failure in hybrid is absorbed after the cache is written."""
        remote.fail_with = RemoteUnavailable('offline')
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        coordinator.save_all([make_event('a')])

        assert [e.id for e in local_store.load()] == ['a']
        assert coordinator.sink.for_operation('save_all')[0].store == 'remote'

    def test_hybrid_absorbs_rejection(self, local_store, remote):
        """Test a rejected reconciliation does not fail the save in hybrid mode."""
        remote.fail_with = RemoteRejected('bad field', 422)
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        coordinator.save_all([make_event('a')])

        assert coordinator.sink.for_operation('save_all')[0].error_type == 'RemoteRejected'

    def test_remote_only_failure_raises(self, local_store, remote):
        """Test remote-only mode re-raises but the cache is still written."""
        remote.fail_with = RemoteUnavailable('offline')
        coordinator = coordinator_for(StorageMode.REMOTE_ONLY, local_store, remote)

        with pytest.raises(RemoteUnavailable):
            coordinator.save_all([make_event('a')])

        assert [e.id for e in local_store.load()] == ['a']

    def test_local_only_never_touches_remote(self, local_store):
        """Test local-only save writes only the cache."""
        coordinator = coordinator_for(StorageMode.LOCAL_ONLY, local_store)

        coordinator.save_all([make_event('a'), make_event('b')])

        assert [e.id for e in local_store.load()] == ['a', 'b']

    def test_new_events_get_ids(self, local_store):
        """Test events without ids are assigned unique ids on save."""
        coordinator = coordinator_for(StorageMode.LOCAL_ONLY, local_store)

        coordinator.save_all([make_event(''), make_event(''), make_event('1700000000000')])

        ids = [e.id for e in local_store.load()]
        assert all(ids)
        assert len(set(ids)) == 3


class TestCreateOne:
    """Test cases for create_one."""

    @pytest.mark.parametrize('start', [
        datetime(2024, 1, 15, 19, 0),
        datetime(2024, 1, 15, 19, 0, 0, 123456),
    ])
    def test_created_event_matches_next_load(self, local_store, start):
        """Test the returned event equals what a following load yields."""
        coordinator = coordinator_for(StorageMode.LOCAL_ONLY, local_store)

        created = coordinator.create_one(make_event('', title='X', start=start, end=start))

        assert coordinator.load() == [created]

    def test_local_only_assigns_id(self, local_store):
        """Test a new event gets a generated id and is the only event loaded."""
        coordinator = coordinator_for(StorageMode.LOCAL_ONLY, local_store)

        created = coordinator.create_one(make_event('', title='X'))

        assert created.id
        assert coordinator.load() == [created]

    def test_keeps_caller_id(self, local_store):
        """Test a caller-provided id is preserved."""
        coordinator = coordinator_for(StorageMode.LOCAL_ONLY, local_store)

        assert coordinator.create_one(make_event('mine')).id == 'mine'

    def test_hybrid_creates_remotely(self, local_store, remote):
        """Test hybrid create goes to Airtable and is cached with its remote id."""
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        created = coordinator.create_one(make_event(''))

        assert created.id
        assert created.remote_id
        assert remote.ids == [created.id]
        assert local_store.load() == [created]

    def test_hybrid_falls_back_to_local(self, local_store, remote):
        """Test an unreachable remote still yields a locally stored event."""
        remote.fail_with = RemoteUnavailable('offline')
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        created = coordinator.create_one(make_event(''))

        assert created.id
        assert created.remote_id is None
        assert local_store.load() == [created]
        assert coordinator.sink.for_operation('create_one')

    def test_hybrid_rejection_raises(self, local_store, remote):
        """Test a validation failure is surfaced instead of falling back."""
        remote.fail_with = RemoteRejected('bad field', 422)
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        with pytest.raises(RemoteRejected):
            coordinator.create_one(make_event(''))

        assert local_store.load() == []

    def test_remote_only_failure_raises(self, local_store, remote):
        """Test remote-only mode has no local fallback for creates."""
        remote.fail_with = RemoteUnavailable('offline')
        coordinator = coordinator_for(StorageMode.REMOTE_ONLY, local_store, remote)

        with pytest.raises(RemoteUnavailable):
            coordinator.create_one(make_event(''))

        assert local_store.load() == []


class TestUpdateOne:
    """Test cases for update_one."""

    def test_local_only_updates_cache(self, local_store):
        """Test the matching event is replaced in the cache."""
        local_store.save([make_event('a'), make_event('b')])
        coordinator = coordinator_for(StorageMode.LOCAL_ONLY, local_store)

        coordinator.update_one(make_event('a', title='Renamed'))

        assert [e.title for e in local_store.load()] == ['Renamed', 'Restock shelves']

    def test_empty_id_is_ignored(self, local_store, remote):
        """Test an unsaved event cannot be updated."""
        local_store.save([make_event('a')])
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        coordinator.update_one(make_event('', title='Nope'))

        assert [e.title for e in local_store.load()] == ['Restock shelves']
        assert remote.updates == []

    def test_hybrid_uses_tracked_remote_id(self, local_store, remote):
        """Test the remote record is addressed by the remote id stored in the cache."""
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)
        created = coordinator.create_one(make_event('a'))

        updated = coordinator.update_one(make_event('a', title='Renamed'))

        assert remote.updates == [created.remote_id]
        assert remote.lookups == []
        assert remote.get('a').title == 'Renamed'
        assert updated.remote_id == created.remote_id
        assert local_store.load()[0].title == 'Renamed'

    def test_hybrid_looks_up_unknown_remote_id(self, local_store, remote):
        """Test the remote id is resolved by domain id when not tracked locally."""
        stored = remote.create_events([make_event('a')])[0]
        local_store.save([make_event('a')])
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        updated = coordinator.update_one(make_event('a', title='Renamed'))

        assert remote.lookups == ['a']
        assert remote.updates == [stored.remote_id]
        assert local_store.load()[0].remote_id == stored.remote_id
        assert updated.remote_id == stored.remote_id

    def test_hybrid_remote_failure_keeps_local_update(self, local_store, remote):
        """Test a remote failure does not block the local update in hybrid mode."""
        local_store.save([make_event('a', remote_id='rec1')])
        remote.fail_with = RemoteUnavailable('offline')
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        result = coordinator.update_one(make_event('a', title='Renamed'))

        assert result.title == 'Renamed'
        assert local_store.load()[0].title == 'Renamed'
        assert coordinator.sink.for_operation('update_one')[0].error_type == 'RemoteUnavailable'

    def test_remote_only_missing_record_raises(self, local_store, remote):
        """Test updating an event Airtable does not have is rejected in remote-only mode."""
        coordinator = coordinator_for(StorageMode.REMOTE_ONLY, local_store, remote)

        with pytest.raises(RemoteRejected):
            coordinator.update_one(make_event('ghost'))


class TestDeleteOne:
    """Test cases for delete_one."""

    def test_local_only_removes_from_cache(self, local_store):
        """Test the event is removed from the cache."""
        local_store.save([make_event('a'), make_event('b')])
        coordinator = coordinator_for(StorageMode.LOCAL_ONLY, local_store)

        coordinator.delete_one('a')

        assert [e.id for e in local_store.load()] == ['b']

    def test_empty_id_is_ignored(self, local_store):
        """Test deleting an empty id changes nothing."""
        local_store.save([make_event('a')])
        coordinator = coordinator_for(StorageMode.LOCAL_ONLY, local_store)

        coordinator.delete_one('')

        assert [e.id for e in local_store.load()] == ['a']

    def test_hybrid_deletes_by_remote_id(self, local_store, remote):
        """Test the remote record is deleted using the tracked remote id."""
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)
        created = coordinator.create_one(make_event('a'))

        coordinator.delete_one('a')

        assert remote.deletes == [created.remote_id]
        assert remote.ids == []
        assert local_store.load() == []

    def test_hybrid_lookup_when_untracked(self, local_store, remote):
        """Test the remote id is looked up when the cache lacks it."""
        stored = remote.create_events([make_event('a')])[0]
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        coordinator.delete_one('a')

        assert remote.deletes == [stored.remote_id]

    def test_missing_remote_record_is_not_an_error(self, local_store, remote):
        """Test deleting an id Airtable never had succeeds."""
        local_store.save([make_event('a')])
        coordinator = coordinator_for(StorageMode.REMOTE_ONLY, local_store, remote)

        coordinator.delete_one('a')

        assert remote.deletes == []
        assert local_store.load() == []

    def test_hybrid_remote_failure_is_absorbed(self, local_store, remote):
        """Test the local delete stands when Airtable fails in hybrid mode."""
        local_store.save([replace(make_event('a'), remote_id='rec1')])
        remote.fail_with = RemoteUnavailable('offline')
        coordinator = coordinator_for(StorageMode.HYBRID, local_store, remote)

        coordinator.delete_one('a')

        assert local_store.load() == []
        assert coordinator.sink.for_operation('delete_one')

    def test_remote_only_failure_raises(self, local_store, remote):
        """Test remote-only mode surfaces delete failures."""
        local_store.save([make_event('a', remote_id='rec1')])
        remote.fail_with = RemoteRejected('not found', 404)
        coordinator = coordinator_for(StorageMode.REMOTE_ONLY, local_store, remote)

        with pytest.raises(RemoteRejected):
            coordinator.delete_one('a')
