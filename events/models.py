"""Data models for calendar events."""
import dataclasses
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from events.exceptions import ValidationError
from events.validation import (
    CATEGORIES,
    MAX_DESCRIPTION_LENGTH,
    MAX_TITLE_LENGTH,
    is_valid_date,
    is_valid_time,
    normalize_category,
    normalize_date,
    normalize_time,
    sanitize_text,
)


def utc_now_iso() -> str:
    """Current UTC time as ISO 8601 with millisecond precision, e.g. 2025-03-10T09:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def generate_event_id() -> str:
    return f"event_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def format_date(year: int, month: int, day: int) -> str:
    """
    Build the date key used by the date index.

    Args:
        year: Four digit year
        month: Month number, 1-12
        day: Day of month

    Returns:
        Date key in YYYY-MM-DD form
    """
    return f"{year:04d}-{month:02d}-{day:02d}"


def parse_date_key(date_key: str) -> date:
    """Parse a YYYY-MM-DD key. Raises ValueError for malformed keys."""
    return datetime.strptime(date_key, '%Y-%m-%d').date()


@dataclass
class ValidationResult:
    """Outcome of Event.validate()."""
    is_valid: bool
    errors: List[str]


@dataclass
class ImportResult:
    """Result of a bulk import."""
    imported: int
    errors: List[str]


@dataclass
class EventStatistics:
    total_events: int
    category_counts: Dict[str, int]
    dates_with_events: int


class EventUpdate(BaseModel):
    """
    Partial update of an event.

    Only the fields listed here may change. Unknown keys, including the
    immutable ``id`` and ``createdAt``, are rejected. Both the stored
    camelCase names and snake_case names are accepted.
    """

    model_config = ConfigDict(extra='forbid', populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    start_time: Optional[str] = Field(default=None, alias='startTime')
    end_time: Optional[str] = Field(default=None, alias='endTime')
    category: Optional[str] = None

    @classmethod
    def coerce(cls, changes: Any) -> 'EventUpdate':
        """
        Turn a mapping into an EventUpdate.

        Raises:
            ValidationError: If the mapping holds unknown fields or values
                of the wrong type
        """
        if isinstance(changes, cls):
            return changes
        if not isinstance(changes, Mapping):
            raise ValidationError(['Event changes must be a mapping of field names to values'])

        try:
            return cls.model_validate(dict(changes))
        except PydanticValidationError as e:
            raise ValidationError(_describe_errors(e)) from e


def _describe_errors(error: PydanticValidationError) -> List[str]:
    messages = []
    for detail in error.errors():
        name = '.'.join(str(part) for part in detail['loc'])
        if detail['type'] == 'extra_forbidden':
            messages.append(f"Field '{name}' cannot be updated")
        else:
            messages.append(f"Invalid value for '{name}': {detail['msg']}")
    return messages


@dataclass
class Event:
    """
    One calendar occurrence.

    Construction never fails: text fields are sanitized, times are
    zero-padded, missing ids and timestamps are generated, and anything
    still wrong is reported by validate().
    """
    title: str = ''
    date: str = ''
    description: str = ''
    start_time: str = ''
    end_time: str = ''
    category: str = ''
    id: str = ''
    created_at: str = ''
    updated_at: str = ''

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            self.id = generate_event_id()
        self.title = sanitize_text(self.title, MAX_TITLE_LENGTH)
        self.description = sanitize_text(self.description, MAX_DESCRIPTION_LENGTH)
        self.date = normalize_date(self.date)
        self.start_time = normalize_time(self.start_time)
        self.end_time = normalize_time(self.end_time)
        self.category = normalize_category(self.category)

        now = utc_now_iso()
        if not self.created_at:
            self.created_at = now
        if not self.updated_at:
            self.updated_at = now

    @classmethod
    def from_dict(cls, data: Optional[Mapping] = None) -> 'Event':
        """
        Build an Event from a plain record.

        Reads the camelCase keys of the stored format and falls back to
        snake_case keys.

        Args:
            data: Event record

        Returns:
            Event object (possibly invalid, see validate())
        """
        data = data or {}

        def pick(camel: str, snake: str) -> Any:
            value = data.get(camel)
            if value is None:
                value = data.get(snake)
            return value

        return cls(
            id=data.get('id') or '',
            title=data.get('title') or '',
            description=data.get('description') or '',
            date=data.get('date') or '',
            start_time=pick('startTime', 'start_time') or '',
            end_time=pick('endTime', 'end_time') or '',
            category=data.get('category') or '',
            created_at=pick('createdAt', 'created_at') or '',
            updated_at=pick('updatedAt', 'updated_at') or '',
        )

    def to_dict(self) -> Dict[str, str]:
        """Plain record in the stored (camelCase) format."""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'date': self.date,
            'startTime': self.start_time,
            'endTime': self.end_time,
            'category': self.category,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }

    def validate(self) -> ValidationResult:
        """
        Check every field rule and collect all violations.

        Returns:
            ValidationResult with is_valid and the list of error messages
        """
        errors = []

        if not self.title or not self.title.strip():
            errors.append('Event title is required')

        if not is_valid_date(self.date):
            errors.append('Valid event date is required')

        if self.start_time and not is_valid_time(self.start_time):
            errors.append('Invalid start time format')

        if self.end_time and not is_valid_time(self.end_time):
            errors.append('Invalid end time format')

        if self.start_time and self.end_time and self.start_time >= self.end_time:
            errors.append('End time must be after start time')

        if self.category not in CATEGORIES:
            errors.append('Invalid event category')

        return ValidationResult(is_valid=not errors, errors=errors)

    def update(self, changes: Any) -> None:
        """
        Apply a partial update in place and refresh updated_at.

        Does not validate the result; the caller decides whether to keep it.

        Args:
            changes: EventUpdate or mapping of updatable fields

        Raises:
            ValidationError: If changes contains a field that cannot be updated
        """
        update = EventUpdate.coerce(changes)
        values = update.model_dump(exclude_unset=True)

        if 'title' in values:
            self.title = sanitize_text(values['title'], MAX_TITLE_LENGTH)
        if 'description' in values:
            self.description = sanitize_text(values['description'], MAX_DESCRIPTION_LENGTH)
        if 'date' in values:
            self.date = normalize_date(values['date'])
        if 'start_time' in values:
            self.start_time = normalize_time(values['start_time'])
        if 'end_time' in values:
            self.end_time = normalize_time(values['end_time'])
        if 'category' in values:
            self.category = normalize_category(values['category'])

        self.updated_at = utc_now_iso()

    def copy(self) -> 'Event':
        return dataclasses.replace(self)

    def is_all_day(self) -> bool:
        return not self.start_time and not self.end_time

    def get_display_time(self) -> str:
        if not self.start_time:
            return ''
        if self.end_time:
            return f"{self.start_time} - {self.end_time}"
        return self.start_time
