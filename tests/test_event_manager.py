"""Unit tests for EventManager."""
import asyncio
import json

import pytest

from events.event_manager import EventManager
from events.exceptions import NotFoundError, ValidationError
from storage.backends import FileBackend, MemoryBackend
from storage.exceptions import MalformedImportError, QuotaExceededError, StorageUnavailableError
from storage.storage_manager import StorageManager


@pytest.fixture
def manager():
    """Create an EventManager without persistence."""
    return EventManager()


@pytest.fixture
def storage_manager():
    """Create a StorageManager backed by memory."""
    return StorageManager(backend=MemoryBackend())


@pytest.fixture
def persistent_manager(storage_manager):
    """Create an EventManager that writes through to storage."""
    return EventManager(storage_manager)


@pytest.fixture
def standup_data():
    return {
        'title': 'Standup',
        'date': '2025-03-10',
        'startTime': '09:00',
        'endTime': '09:15',
        'category': 'work',
    }


def snapshot(manager):
    return sorted((e.to_dict() for e in manager.get_all()), key=lambda r: r['id'])


class TestCreateAndQuery:
    """Test cases for create and the query surface."""

    def test_create_standup(self, manager, standup_data):
        """Test creating an event and finding it by date."""
        event = manager.create(standup_data)

        events = manager.get_by_date('2025-03-10')
        assert len(events) == 1
        assert events[0].title == 'Standup'
        assert events[0].id == event.id

    def test_create_then_get_by_id_round_trips(self, manager, standup_data):
        event = manager.create(dict(standup_data, description='Daily sync'))

        stored = manager.get_by_id(event.id)

        assert stored is not None
        assert stored.title == 'Standup'
        assert stored.description == 'Daily sync'
        assert stored.date == '2025-03-10'
        assert stored.start_time == '09:00'
        assert stored.end_time == '09:15'
        assert stored.category == 'work'

    def test_create_without_title_is_rejected(self, manager):
        """Test that an invalid event is never stored."""
        with pytest.raises(ValidationError) as excinfo:
            manager.create({'title': '', 'date': '2025-03-10'})

        assert 'Event title is required' in excinfo.value.errors
        assert manager.get_all() == []
        assert manager.get_by_date('2025-03-10') == []
        assert manager.get_statistics().dates_with_events == 0

    def test_create_with_existing_id_is_rejected(self, manager):
        """Test that a reused ID never lands in a second date bucket."""
        first = manager.create({'title': 'A', 'date': '2025-03-10'})

        with pytest.raises(ValidationError) as excinfo:
            manager.create({'id': first.id, 'title': 'B', 'date': '2025-03-11'})

        assert excinfo.value.errors == ['Event id already exists']
        assert manager.get_by_id(first.id).title == 'A'
        assert manager.get_by_date('2025-03-11') == []
        assert [e.id for e in manager.get_by_date_range('2025-03-10', '2025-03-11')] == [first.id]

        stats = manager.get_statistics()
        assert stats.total_events == 1
        assert stats.dates_with_events == 1

    def test_create_reports_all_errors(self, manager):
        with pytest.raises(ValidationError) as excinfo:
            manager.create({'title': '', 'date': 'tomorrow', 'startTime': '11:00', 'endTime': '10:00'})

        assert excinfo.value.errors == [
            'Event title is required',
            'Valid event date is required',
            'End time must be after start time',
        ]
        assert 'Event validation failed' in str(excinfo.value)

    def test_get_by_id_unknown_returns_none(self, manager):
        assert manager.get_by_id('event_missing') is None

    def test_get_by_date_orders_by_start_time(self, manager):
        manager.create({'title': 'Afternoon', 'date': '2025-03-10', 'startTime': '14:00'})
        manager.create({'title': 'Morning', 'date': '2025-03-10', 'startTime': '09:00'})

        times = [event.start_time for event in manager.get_by_date('2025-03-10')]

        assert times == ['09:00', '14:00']

    def test_get_by_date_puts_untimed_events_first_and_keeps_ties_stable(self, manager):
        first = manager.create({'title': 'First nine', 'date': '2025-03-10', 'startTime': '09:00'})
        second = manager.create({'title': 'Second nine', 'date': '2025-03-10', 'startTime': '09:00'})
        all_day = manager.create({'title': 'Holiday', 'date': '2025-03-10'})

        ids = [event.id for event in manager.get_by_date('2025-03-10')]

        assert ids == [all_day.id, first.id, second.id]

    def test_get_by_date_empty(self, manager):
        assert manager.get_by_date('2025-03-11') == []

    def test_get_by_date_returns_a_copy(self, manager, standup_data):
        manager.create(standup_data)

        manager.get_by_date('2025-03-10').clear()

        assert len(manager.get_by_date('2025-03-10')) == 1

    def test_get_by_date_range_spans_days_in_order(self, manager):
        manager.create({'title': 'Wed late', 'date': '2025-03-12', 'startTime': '18:00'})
        manager.create({'title': 'Mon', 'date': '2025-03-10', 'startTime': '10:00'})
        manager.create({'title': 'Wed early', 'date': '2025-03-12', 'startTime': '08:00'})
        manager.create({'title': 'Outside', 'date': '2025-03-13'})

        titles = [e.title for e in manager.get_by_date_range('2025-03-10', '2025-03-12')]

        assert titles == ['Mon', 'Wed early', 'Wed late']

    def test_get_by_date_range_crosses_month_and_year(self, manager):
        manager.create({'title': 'NYE', 'date': '2024-12-31'})
        manager.create({'title': 'New year', 'date': '2025-01-01'})

        titles = [e.title for e in manager.get_by_date_range('2024-12-30', '2025-01-02')]

        assert titles == ['NYE', 'New year']

    def test_get_by_date_range_single_day_matches_get_by_date(self, manager):
        manager.create({'title': 'B', 'date': '2025-03-10', 'startTime': '11:00'})
        manager.create({'title': 'A', 'date': '2025-03-10'})

        for day in ('2025-03-10', '2025-03-11'):
            assert manager.get_by_date_range(day, day) == manager.get_by_date(day)

    def test_get_by_date_range_reversed_or_malformed(self, manager, standup_data):
        manager.create(standup_data)

        assert manager.get_by_date_range('2025-03-11', '2025-03-09') == []
        assert manager.get_by_date_range('not-a-date', '2025-03-10') == []

    def test_search_matches_title_and_description(self, manager):
        manager.create({'title': 'Quarterly Review', 'date': '2025-03-10'})
        manager.create({'title': 'Lunch', 'description': 'review menu', 'date': '2025-03-11'})
        manager.create({'title': 'Gym', 'date': '2025-03-12'})

        titles = sorted(e.title for e in manager.search('REVIEW'))

        assert titles == ['Lunch', 'Quarterly Review']

    def test_get_by_category(self, manager, standup_data):
        manager.create(standup_data)
        manager.create({'title': 'Run', 'date': '2025-03-10', 'category': 'health'})

        assert [e.title for e in manager.get_by_category('work')] == ['Standup']
        assert manager.get_by_category('travel') == []

    def test_get_statistics(self, manager, standup_data):
        manager.create(standup_data)
        manager.create({'title': 'Review', 'date': '2025-03-10', 'category': 'work'})
        manager.create({'title': 'Run', 'date': '2025-03-11', 'category': 'health'})

        stats = manager.get_statistics()

        assert stats.total_events == 3
        assert stats.category_counts == {'work': 2, 'health': 1}
        assert stats.dates_with_events == 2

    def test_event_count_for_date(self, manager, standup_data):
        manager.create(standup_data)

        assert manager.get_event_count_for_date('2025-03-10') == 1
        assert manager.has_events_on_date('2025-03-10')
        assert not manager.has_events_on_date('2025-03-11')


class TestUpdateAndDelete:
    """Test cases for update and delete."""

    def test_update_moves_event_between_dates(self, manager, standup_data):
        event = manager.create(standup_data)

        manager.update(event.id, {'date': '2025-03-11'})

        assert manager.get_by_date('2025-03-10') == []
        assert '2025-03-10' not in manager.events_by_date
        assert [e.id for e in manager.get_by_date('2025-03-11')] == [event.id]

    def test_update_resorts_bucket(self, manager):
        early = manager.create({'title': 'Early', 'date': '2025-03-10', 'startTime': '08:00'})
        late = manager.create({'title': 'Late', 'date': '2025-03-10', 'startTime': '12:00'})

        manager.update(early.id, {'startTime': '13:00'})

        assert [e.id for e in manager.get_by_date('2025-03-10')] == [late.id, early.id]

    def test_update_returns_updated_event(self, manager, standup_data):
        event = manager.create(standup_data)

        updated = manager.update(event.id, {'title': 'Daily standup'})

        assert updated.title == 'Daily standup'
        assert updated.id == event.id
        assert updated.created_at == event.created_at
        assert manager.get_by_id(event.id).title == 'Daily standup'
        assert manager.get_by_date('2025-03-10')[0].title == 'Daily standup'

    def test_invalid_update_leaves_event_unchanged(self, manager, standup_data):
        """Test that a failed update is rolled back completely."""
        event = manager.create(standup_data)
        before = manager.get_by_id(event.id).to_dict()

        with pytest.raises(ValidationError) as excinfo:
            manager.update(event.id, {'startTime': '10:00', 'endTime': '10:00', 'date': '2025-03-11'})

        assert excinfo.value.errors == ['End time must be after start time']
        assert manager.get_by_id(event.id).to_dict() == before
        assert [e.id for e in manager.get_by_date('2025-03-10')] == [event.id]
        assert manager.get_by_date('2025-03-11') == []

    def test_update_with_unknown_field_is_rejected(self, manager, standup_data):
        event = manager.create(standup_data)
        before = snapshot(manager)

        with pytest.raises(ValidationError):
            manager.update(event.id, {'id': 'event_other'})

        assert snapshot(manager) == before

    def test_update_unknown_id(self, manager):
        with pytest.raises(NotFoundError) as excinfo:
            manager.update('event_missing', {'title': 'x'})

        assert excinfo.value.event_id == 'event_missing'

    def test_delete_removes_event_and_prunes_bucket(self, manager, standup_data):
        event = manager.create(standup_data)

        assert manager.delete(event.id) is True
        assert manager.get_by_id(event.id) is None
        assert '2025-03-10' not in manager.events_by_date

    def test_delete_keeps_other_events_on_same_day(self, manager, standup_data):
        first = manager.create(standup_data)
        second = manager.create(dict(standup_data, title='Review'))

        manager.delete(first.id)

        assert [e.id for e in manager.get_by_date('2025-03-10')] == [second.id]

    def test_delete_unknown_id_leaves_store_unchanged(self, manager, standup_data):
        manager.create(standup_data)
        before = snapshot(manager)

        with pytest.raises(NotFoundError):
            manager.delete('event_missing')

        assert len(manager.get_all()) == 1
        assert snapshot(manager) == before

    def test_clear(self, manager, standup_data):
        manager.create(standup_data)

        manager.clear()

        assert manager.get_all() == []
        assert manager.events_by_date == {}


class TestImportExport:
    """Test cases for JSON import and export."""

    def test_export_shape(self, manager, standup_data):
        manager.create(standup_data)

        payload = manager.export_to_json()

        assert set(payload) == {'events', 'exportDate'}
        assert payload['events'][0]['title'] == 'Standup'
        assert payload['events'][0]['startTime'] == '09:00'
        json.dumps(payload)

    def test_export_import_round_trip(self, manager, standup_data):
        manager.create(standup_data)
        manager.create({'title': 'Flight', 'date': '2025-04-01', 'category': 'travel'})

        restored = EventManager()
        result = restored.import_from_json(manager.export_to_json())

        assert result.imported == 2
        assert result.errors == []
        assert snapshot(restored) == snapshot(manager)
        assert restored.get_statistics() == manager.get_statistics()

    def test_import_reports_invalid_records_by_position(self, manager):
        payload = {
            'events': [
                {'title': 'Good', 'date': '2025-03-10'},
                {'title': '', 'date': '2025-03-10'},
                'not a record',
                {'title': 'Bad times', 'date': '2025-03-10', 'startTime': '12:00', 'endTime': '11:00'},
            ]
        }

        result = manager.import_from_json(payload)

        assert result.imported == 1
        assert result.errors == [
            'Event 2: Event title is required',
            'Event 3: record is not an object',
            'Event 4: End time must be after start time',
        ]
        assert [e.title for e in manager.get_all()] == ['Good']

    def test_import_overwrites_existing_id_and_reindexes(self, manager, standup_data):
        event = manager.create(standup_data)
        record = dict(event.to_dict(), title='Moved standup', date='2025-03-12')

        result = manager.import_from_json({'events': [record]})

        assert result.imported == 1
        assert len(manager.get_all()) == 1
        assert manager.get_by_id(event.id).title == 'Moved standup'
        assert '2025-03-10' not in manager.events_by_date
        assert [e.id for e in manager.get_by_date('2025-03-12')] == [event.id]

    @pytest.mark.parametrize('payload', [{}, {'events': 'nope'}, [], None])
    def test_import_malformed_payload(self, manager, payload):
        with pytest.raises(MalformedImportError):
            manager.import_from_json(payload)


class TestPersistence:
    """Test cases for the storage hooks."""

    def test_mutations_are_written_through(self, storage_manager, persistent_manager, standup_data):
        event = persistent_manager.create(standup_data)

        stored = storage_manager.load()
        assert [record['id'] for record in stored['events']] == [event.id]

        persistent_manager.update(event.id, {'title': 'Renamed'})
        assert storage_manager.load()['events'][0]['title'] == 'Renamed'

        persistent_manager.delete(event.id)
        assert storage_manager.load()['events'] == []

    def test_events_are_loaded_at_construction(self, storage_manager, persistent_manager, standup_data):
        event = persistent_manager.create(standup_data)

        reloaded = EventManager(storage_manager)

        assert reloaded.get_by_id(event.id) == event
        assert [e.id for e in reloaded.get_by_date('2025-03-10')] == [event.id]

    def test_invalid_stored_records_become_load_warnings(self, storage_manager):
        storage_manager.save({
            'events': [
                {'id': 'event_ok', 'title': 'Fine', 'date': '2025-03-10'},
                {'id': 'event_bad', 'title': '', 'date': '2025-03-10'},
            ],
            'exportDate': '2025-03-10T00:00:00.000Z',
        })

        manager = EventManager(storage_manager)

        assert [e.id for e in manager.get_all()] == ['event_ok']
        assert manager.load_warnings == ['Event 2: Event title is required']

    def test_malformed_stored_payload_loads_nothing(self, storage_manager):
        storage_manager.save({'something': 'else'})

        manager = EventManager(storage_manager)

        assert manager.get_all() == []
        assert manager.load_warnings == ['Invalid JSON format for events import']

    def test_failed_save_does_not_roll_back(self, standup_data):
        """Test that the in-memory store stays authoritative when storage is full."""
        storage_manager = StorageManager(backend=MemoryBackend(quota_bytes=64))
        manager = EventManager(storage_manager)

        event = manager.create(standup_data)

        assert manager.get_by_id(event.id) is not None
        assert isinstance(storage_manager.last_error, QuotaExceededError)
        assert storage_manager.load() is None

    def test_import_persists(self, storage_manager, persistent_manager):
        persistent_manager.import_from_json({'events': [{'title': 'Imported', 'date': '2025-03-10'}]})

        assert storage_manager.load()['events'][0]['title'] == 'Imported'

    def test_storage_status(self, manager, persistent_manager):
        assert manager.get_storage_status().enabled is False
        assert manager.get_storage_status().info is None

        status = persistent_manager.get_storage_status()
        assert status.enabled is True
        assert status.supported is True
        assert status.info.is_supported is True

    def test_undecodable_stored_bytes_do_not_break_the_manager(self, standup_data, tmp_path):
        (tmp_path / 'calendar_events.json').write_bytes(b'\xff\xfe\x00garbage')
        storage_manager = StorageManager(backend=FileBackend(tmp_path, quota_bytes=10_000))

        manager = EventManager(storage_manager)
        status = manager.get_storage_status()

        assert manager.get_all() == []
        assert status.supported is True
        assert status.info.data_size == 10

        event = manager.create(standup_data)

        assert storage_manager.load()['events'][0]['id'] == event.id

    def test_download_backup(self, persistent_manager, standup_data, tmp_path):
        persistent_manager.create(standup_data)

        path = persistent_manager.download_backup(tmp_path)

        assert path.name.startswith('calendar_backup_')
        backup = json.loads(path.read_text(encoding='utf-8'))
        assert backup['data']['events'][0]['title'] == 'Standup'

    def test_download_backup_without_storage(self, manager, tmp_path):
        assert manager.download_backup(tmp_path) is None

    def test_restore_from_file_reloads_events(self, standup_data, tmp_path):
        source_storage = StorageManager(backend=MemoryBackend())
        source = EventManager(source_storage)
        event = source.create(standup_data)
        backup_file = tmp_path / 'backup.json'
        backup_file.write_text(source_storage.create_backup(), encoding='utf-8')

        target = EventManager(StorageManager(backend=MemoryBackend()))
        target.create({'title': 'Will be replaced', 'date': '2025-01-01'})

        assert asyncio.run(target.restore_from_file(backup_file)) is True
        assert [e.id for e in target.get_all()] == [event.id]
        assert target.get_by_date('2025-01-01') == []

    def test_restore_from_invalid_file(self, persistent_manager, standup_data, tmp_path):
        event = persistent_manager.create(standup_data)
        bad_file = tmp_path / 'bad.json'
        bad_file.write_text('{"data": {}}', encoding='utf-8')

        assert asyncio.run(persistent_manager.restore_from_file(bad_file)) is False
        assert persistent_manager.get_by_id(event.id) is not None

    def test_restore_from_file_without_storage(self, manager, tmp_path):
        with pytest.raises(StorageUnavailableError):
            asyncio.run(manager.restore_from_file(tmp_path / 'backup.json'))
