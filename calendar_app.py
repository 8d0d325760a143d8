"""Application context for the calendar event core."""
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional

from events.event_manager import EventManager
from events.models import Event, format_date
from storage.backends import FileBackend, KeyValueBackend
from storage.storage_manager import StorageManager, default_storage_dir


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Create new handler with JSON formatter
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    # Set log level
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class AppConfig:
    """Settings read from the environment."""
    storage_dir: Path
    storage_key: str = 'calendar_events'
    on_corruption: str = 'preserve'
    stale_after_days: int = 30
    log_level: str = 'INFO'


def load_config() -> AppConfig:
    """
    Read configuration from environment variables.

    CALENDAR_STORAGE_DIR, CALENDAR_STORAGE_KEY, CALENDAR_ON_CORRUPTION,
    CALENDAR_STALE_DAYS and LOG_LEVEL are recognised.
    """
    return AppConfig(
        storage_dir=default_storage_dir(),
        storage_key=os.environ.get('CALENDAR_STORAGE_KEY', 'calendar_events'),
        on_corruption=os.environ.get('CALENDAR_ON_CORRUPTION', 'preserve'),
        stale_after_days=int(os.environ.get('CALENDAR_STALE_DAYS', '30')),
        log_level=os.environ.get('LOG_LEVEL', 'INFO'),
    )


@dataclass
class CalendarContext:
    """
    Session state shared by the UI layer.

    Built once by create_context() and passed to whatever needs it.
    ``current_date`` is the day whose month the calendar shows.
    """
    config: AppConfig
    storage_manager: StorageManager
    event_manager: EventManager
    current_date: date = field(default_factory=date.today)

    def go_to_previous_month(self) -> date:
        first = self.current_date.replace(day=1)
        self.current_date = (first - timedelta(days=1)).replace(day=1)
        return self.current_date

    def go_to_next_month(self) -> date:
        first = self.current_date.replace(day=1)
        self.current_date = (first + timedelta(days=32)).replace(day=1)
        return self.current_date

    def go_to_today(self) -> date:
        self.current_date = date.today()
        return self.current_date

    def events_for_current_month(self) -> List[Event]:
        """Events of the displayed month in date and start time order."""
        first = self.current_date.replace(day=1)
        last = (first + timedelta(days=32)).replace(day=1) - timedelta(days=1)
        return self.event_manager.get_by_date_range(
            format_date(first.year, first.month, first.day),
            format_date(last.year, last.month, last.day),
        )


def create_context(
    config: Optional[AppConfig] = None,
    backend: Optional[KeyValueBackend] = None,
) -> CalendarContext:
    """
    Wire logging, storage and the event manager for one session.

    Args:
        config: Settings (read from the environment when omitted)
        backend: Storage mechanism (a FileBackend in config.storage_dir when omitted)

    Returns:
        CalendarContext with stored events already loaded
    """
    if config is None:
        config = load_config()

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    storage_manager = StorageManager(
        storage_key=config.storage_key,
        backend=backend if backend is not None else FileBackend(config.storage_dir),
        on_corruption=config.on_corruption,
        stale_after_days=config.stale_after_days,
    )
    event_manager = EventManager(storage_manager)

    stats = event_manager.get_statistics()
    logger.info(
        f"Calendar context ready: {stats.total_events} events on "
        f"{stats.dates_with_events} dates (storage supported: "
        f"{storage_manager.is_storage_supported})"
    )
    return CalendarContext(
        config=config,
        storage_manager=storage_manager,
        event_manager=event_manager,
    )
