"""Event manager: authoritative event collection with a date index."""
import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from events.exceptions import NotFoundError, ValidationError
from events.models import (
    Event,
    EventStatistics,
    ImportResult,
    format_date,
    parse_date_key,
    utc_now_iso,
)
from storage.exceptions import MalformedImportError, StorageUnavailableError
from storage.storage_manager import StorageInfo, StorageManager

logger = logging.getLogger(__name__)


@dataclass
class StorageStatus:
    enabled: bool
    supported: bool
    info: Optional[StorageInfo]


def _start_time_key(event: Event):
    # Events without a start time sort first; sort() is stable for ties
    return (event.start_time != '', event.start_time)


class EventManager:
    """
    Manager for creating, querying, updating and deleting events.

    Holds the primary id -> Event map and a date index mapping each date key
    to that day's events ordered by start time. Every successful mutation is
    written through to the optional StorageManager; storage failures are
    logged and never undo the in-memory change.
    """

    def __init__(self, storage_manager: Optional[StorageManager] = None):
        """
        Initialize the manager and load any stored events.

        Args:
            storage_manager: Persistence adapter, or None for a session-only store
        """
        self.events: Dict[str, Event] = {}
        self.events_by_date: Dict[str, List[Event]] = {}
        self.storage_manager = storage_manager
        self.load_warnings: List[str] = []

        self.load_from_storage()

    # Commands

    def create(self, event_data: Dict[str, Any]) -> Event:
        """
        Create and store a new event.

        Args:
            event_data: Event record (camelCase or snake_case keys)

        Returns:
            The stored Event

        Raises:
            ValidationError: If the event fails validation or its ID is already
                stored; nothing is stored in either case
        """
        event = Event.from_dict(event_data)
        validation = event.validate()
        if not validation.is_valid:
            raise ValidationError(validation.errors)

        if event.id in self.events:
            raise ValidationError(['Event id already exists'])

        self.events[event.id] = event
        self._index_event_by_date(event)
        logger.info(f"Created event {event.id} on {event.date}")

        self.save_to_storage()
        return event

    def update(self, event_id: str, changes: Any) -> Event:
        """
        Apply a partial update to an event.

        The changes are applied to a copy; the stored event is only replaced
        when the copy validates.

        Args:
            event_id: ID of the event to update
            changes: EventUpdate or mapping of updatable fields

        Returns:
            The updated Event

        Raises:
            NotFoundError: If no event has this ID
            ValidationError: If the changes are rejected or the result is invalid
        """
        current = self.events.get(event_id)
        if current is None:
            raise NotFoundError(event_id)

        # Apply changes to a working copy
        updated = current.copy()
        updated.update(changes)

        validation = updated.validate()
        if not validation.is_valid:
            raise ValidationError(validation.errors)

        # Move between date buckets
        self._remove_event_from_date_index(event_id, current.date)
        self.events[event_id] = updated
        self._index_event_by_date(updated)
        logger.info(f"Updated event {event_id}")

        self.save_to_storage()
        return updated

    def delete(self, event_id: str) -> bool:
        """
        Delete an event.

        Raises:
            NotFoundError: If no event has this ID
        """
        event = self.events.get(event_id)
        if event is None:
            raise NotFoundError(event_id)

        del self.events[event_id]
        self._remove_event_from_date_index(event_id, event.date)
        logger.info(f"Deleted event {event_id}")

        self.save_to_storage()
        return True

    def clear(self) -> None:
        """Remove every event."""
        self.events.clear()
        self.events_by_date.clear()
        self.save_to_storage()

    # Queries

    def get_by_id(self, event_id: str) -> Optional[Event]:
        return self.events.get(event_id)

    def get_all(self) -> List[Event]:
        return list(self.events.values())

    def get_by_date(self, date_key: str) -> List[Event]:
        """Events on one date ordered by start time; empty when there are none."""
        return list(self.events_by_date.get(date_key, []))

    def get_by_date_range(self, start_date: str, end_date: str) -> List[Event]:
        """
        Events on every day from start_date to end_date inclusive.

        Days are visited in date order and each day keeps its start time
        ordering.

        Args:
            start_date: First date key (YYYY-MM-DD)
            end_date: Last date key (YYYY-MM-DD)

        Returns:
            List of events; empty for malformed keys or a reversed range
        """
        try:
            day = parse_date_key(start_date)
            last = parse_date_key(end_date)
        except (TypeError, ValueError):
            logger.warning(f"Invalid date range: {start_date!r} to {end_date!r}")
            return []

        events = []
        while day <= last:
            events.extend(self.get_by_date(format_date(day.year, day.month, day.day)))
            day += timedelta(days=1)
        return events

    def get_by_category(self, category: str) -> List[Event]:
        return [event for event in self.events.values() if event.category == category]

    def search(self, query: str) -> List[Event]:
        """Events whose title or description contains query, ignoring case."""
        term = query.lower()
        return [
            event for event in self.events.values()
            if term in event.title.lower() or term in event.description.lower()
        ]

    def get_event_count_for_date(self, date_key: str) -> int:
        return len(self.events_by_date.get(date_key, []))

    def has_events_on_date(self, date_key: str) -> bool:
        return self.get_event_count_for_date(date_key) > 0

    def get_statistics(self) -> EventStatistics:
        category_counts: Dict[str, int] = {}
        for event in self.events.values():
            category_counts[event.category] = category_counts.get(event.category, 0) + 1

        return EventStatistics(
            total_events=len(self.events),
            category_counts=category_counts,
            dates_with_events=len(self.events_by_date),
        )

    # Date index

    def _index_event_by_date(self, event: Event) -> None:
        bucket = self.events_by_date.setdefault(event.date, [])

        for position, existing in enumerate(bucket):
            if existing.id == event.id:
                bucket[position] = event
                break
        else:
            bucket.append(event)

        bucket.sort(key=_start_time_key)

    def _remove_event_from_date_index(self, event_id: str, date_key: str) -> None:
        bucket = self.events_by_date.get(date_key)
        if bucket is None:
            return

        bucket[:] = [event for event in bucket if event.id != event_id]
        if not bucket:
            del self.events_by_date[date_key]

    # Import / export

    def export_to_json(self) -> Dict[str, Any]:
        """Plain payload of every event, as stored by StorageManager."""
        return {
            'events': [event.to_dict() for event in self.events.values()],
            'exportDate': utc_now_iso(),
        }

    def import_from_json(self, json_data: Any) -> ImportResult:
        """
        Import events from an exported payload.

        Each record is validated on its own: valid records are stored,
        replacing any event with the same ID, and invalid ones are reported
        by their 1-based position.

        Args:
            json_data: Payload with an "events" list

        Returns:
            ImportResult with the imported count and per-record errors

        Raises:
            MalformedImportError: If the payload has no "events" list
        """
        result = self._import_records(json_data)
        if result.imported:
            self.save_to_storage()
        return result

    def _import_records(self, json_data: Any) -> ImportResult:
        if not isinstance(json_data, dict) or not isinstance(json_data.get('events'), list):
            raise MalformedImportError('Invalid JSON format for events import')

        imported = 0
        errors = []

        for index, record in enumerate(json_data['events'], start=1):
            if not isinstance(record, dict):
                errors.append(f"Event {index}: record is not an object")
                continue

            event = Event.from_dict(record)
            validation = event.validate()
            if not validation.is_valid:
                errors.append(f"Event {index}: {', '.join(validation.errors)}")
                continue

            # Replace any event stored under the same id
            previous = self.events.get(event.id)
            if previous is not None:
                self._remove_event_from_date_index(previous.id, previous.date)

            self.events[event.id] = event
            self._index_event_by_date(event)
            imported += 1

        logger.info(f"Imported {imported} events with {len(errors)} errors")
        return ImportResult(imported=imported, errors=errors)

    # Storage integration

    def save_to_storage(self) -> bool:
        if self.storage_manager is None:
            return False

        saved = self.storage_manager.save(self.export_to_json())
        if not saved:
            logger.warning('Failed to save events to storage; changes are kept for this session only')
        return saved

    def load_from_storage(self) -> bool:
        """
        Replace the in-memory events with the stored payload.

        Records that fail validation are skipped and listed on load_warnings.

        Returns:
            True if stored data was loaded
        """
        if self.storage_manager is None:
            return False

        events_data = self.storage_manager.load()
        if events_data is None:
            return False

        self.events.clear()
        self.events_by_date.clear()

        try:
            result = self._import_records(events_data)
        except MalformedImportError as e:
            logger.error(f"Failed to load events from storage: {e}")
            self.load_warnings = [str(e)]
            return False

        self.load_warnings = result.errors
        if result.errors:
            logger.warning(f"Some events failed to load: {result.errors}")

        logger.info(f"Loaded {result.imported} events from storage")
        return True

    def get_storage_status(self) -> StorageStatus:
        if self.storage_manager is None:
            return StorageStatus(enabled=False, supported=False, info=None)

        return StorageStatus(
            enabled=True,
            supported=self.storage_manager.is_storage_supported,
            info=self.storage_manager.get_storage_info(),
        )

    def download_backup(self, directory: Union[str, Path] = '.') -> Optional[Path]:
        """Write a dated backup file of the stored events into directory."""
        if self.storage_manager is None:
            logger.warning('Storage manager not available for backup')
            return None

        return self.storage_manager.export_data(directory)

    async def restore_from_file(self, file: Any) -> bool:
        """
        Restore events from a backup file and reload the store.

        Args:
            file: Path or readable file-like object

        Returns:
            True if the backup was restored

        Raises:
            StorageUnavailableError: If no storage manager is configured
            BackupReadError: If the file cannot be read
        """
        if self.storage_manager is None:
            raise StorageUnavailableError('Storage manager not available for restore')

        success = await self.storage_manager.import_data(file)
        if success:
            self.load_from_storage()
        return success
