"""Storage manager for persisting the event payload."""
import asyncio
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

from dateutil.parser import isoparse

from storage.backends import FileBackend, KeyValueBackend
from storage.exceptions import (
    BackupReadError,
    CorruptDataError,
    MalformedImportError,
    QuotaExceededError,
    StorageError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

CorruptionPolicy = Union[str, Callable[[CorruptDataError], bool]]

ENVELOPE_FIELDS = ('data', 'timestamp', 'version')
BACKUP_FIELDS = ('data', 'backupDate', 'version')


def default_storage_dir() -> Path:
    """
    Directory used by the default FileBackend.

    CALENDAR_STORAGE_DIR overrides the per-user default.
    """
    configured = os.environ.get('CALENDAR_STORAGE_DIR')
    if configured:
        return Path(configured)
    return Path.home() / '.calendar_events'


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _has_fields(record: Any, fields) -> bool:
    return isinstance(record, dict) and all(record.get(name) not in (None, '') for name in fields)


@dataclass
class StorageInfo:
    """Storage usage in bytes."""
    data_size: int
    total_size: int
    key_count: int
    is_supported: bool


class StorageManager:
    """
    Manager for the durable copy of the event payload.

    The payload is written as a versioned, timestamped JSON envelope under
    ``storage_key``; a companion ``<storage_key>_version`` key tracks the
    schema version of the last write. Storage failures never propagate:
    methods log, remember the error on ``last_error`` and return a
    failure value.
    """

    VERSION = '1.0'
    TEST_KEY = '__storage_test__'
    STALE_AFTER_DAYS = 30

    def __init__(
        self,
        storage_key: str = 'calendar_events',
        backend: Optional[KeyValueBackend] = None,
        on_corruption: CorruptionPolicy = 'preserve',
        stale_after_days: int = STALE_AFTER_DAYS,
    ):
        """
        Initialize the storage manager.

        Args:
            storage_key: Key holding the envelope
            backend: Storage mechanism (defaults to a FileBackend in default_storage_dir())
            on_corruption: 'preserve' keeps undecodable data in place, 'clear'
                removes it, a callable receives the CorruptDataError and
                returns True to clear
            stale_after_days: Age after which loaded data is reported as stale
        """
        if not callable(on_corruption) and on_corruption not in ('preserve', 'clear'):
            raise ValueError(f"Unknown corruption policy: {on_corruption!r}")

        self.storage_key = storage_key
        self.version_key = f"{storage_key}_version"
        self.version = self.VERSION
        self.backend = backend if backend is not None else FileBackend(default_storage_dir())
        self.on_corruption = on_corruption
        self.stale_after = timedelta(days=stale_after_days)

        self.last_error: Optional[StorageError] = None
        self.last_load_stale = False

        self.is_storage_supported = self.check_storage_support()
        self.initialize_versioning()
        logger.info(
            f"Initialized StorageManager for key: {storage_key} "
            f"(supported={self.is_storage_supported})"
        )

    def check_storage_support(self) -> bool:
        """
        Check the backend by writing and removing a sentinel key.

        Returns:
            True if the backend accepts writes
        """
        try:
            self.backend.set_item(self.TEST_KEY, 'test')
            self.backend.remove_item(self.TEST_KEY)
            return True
        except (OSError, StorageError) as e:
            logger.warning(f"Storage is not supported or is disabled: {e}")
            self.last_error = StorageUnavailableError(str(e))
            return False

    def initialize_versioning(self) -> None:
        """Record the schema version, or report a mismatch with the stored one."""
        if not self.is_storage_supported:
            return

        try:
            stored_version = self.backend.get_item(self.version_key)
            if not stored_version:
                self.backend.set_item(self.version_key, self.version)
            elif stored_version != self.version:
                logger.info(
                    f"Data version mismatch. Stored: {stored_version}, Current: {self.version}"
                )
                self.migrate(stored_version)
        except (OSError, StorageError) as e:
            logger.error(f"Failed to initialize storage versioning: {e}")
            self.last_error = e if isinstance(e, StorageError) else StorageUnavailableError(str(e))

    def migrate(self, stored_version: str) -> None:
        """
        Extension point for schema migrations.

        Version 1.0 is the only schema, so nothing is converted; the stored
        marker is left untouched so a future release can still see it.
        """
        logger.info(f"No migration registered from version {stored_version} to {self.version}")

    def _unavailable(self, action: str) -> None:
        logger.warning(f"Cannot {action}: storage not supported")
        self.last_error = StorageUnavailableError(f"Cannot {action}: storage not supported")

    def save(self, data: Any) -> bool:
        """
        Write data inside a versioned envelope.

        Args:
            data: JSON-serializable payload

        Returns:
            True if the write succeeded
        """
        if not self.is_storage_supported:
            self._unavailable('save data')
            return False

        try:
            # Wrap payload in a versioned envelope
            serialized = json.dumps({
                'data': data,
                'timestamp': _iso(_now()),
                'version': self.version,
            })
            self.backend.set_item(self.storage_key, serialized)
            self.last_error = None
            return True
        except QuotaExceededError as e:
            logger.error(f"Failed to save data: {e}")
            self.last_error = e
            self.handle_storage_quota_exceeded()
            return False
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize data for storage: {e}")
            return False
        except (OSError, StorageError) as e:
            logger.error(f"Failed to save data: {e}")
            self.last_error = e if isinstance(e, StorageError) else StorageUnavailableError(str(e))
            return False

    def load(self) -> Optional[Any]:
        """
        Read the payload written by save().

        Returns:
            The stored payload, or None if nothing usable is stored
        """
        self.last_load_stale = False
        if not self.is_storage_supported:
            self._unavailable('load data')
            return None

        try:
            serialized = self.backend.get_item(self.storage_key)
        except CorruptDataError as e:
            self.handle_corrupted_data(e)
            return None
        except OSError as e:
            logger.error(f"Failed to read stored data: {e}")
            self.last_error = StorageUnavailableError(str(e))
            return None

        if not serialized:
            return None

        # Decode the envelope
        try:
            envelope = json.loads(serialized)
        except ValueError as e:
            self.handle_corrupted_data(CorruptDataError(self.storage_key, serialized, str(e)))
            return None

        # Validate envelope structure
        if not _has_fields(envelope, ENVELOPE_FIELDS):
            logger.warning(f"Invalid data structure under key: {self.storage_key}")
            return None

        # Check data freshness
        self._check_age(envelope['timestamp'])
        return envelope['data']

    def _check_age(self, timestamp: str) -> None:
        try:
            written = isoparse(timestamp)
        except (TypeError, ValueError):
            logger.warning(f"Stored data has an unreadable timestamp: {timestamp!r}")
            return

        if written.tzinfo is None:
            written = written.replace(tzinfo=timezone.utc)

        age = _now() - written
        if age > self.stale_after:
            self.last_load_stale = True
            logger.info(f"Stored data is older than {self.stale_after.days} days ({age.days} days)")

    def clear(self) -> bool:
        """Remove the stored payload and its version marker."""
        if not self.is_storage_supported:
            self._unavailable('clear data')
            return False

        try:
            self.backend.remove_item(self.storage_key)
            self.backend.remove_item(self.version_key)
            return True
        except OSError as e:
            logger.error(f"Failed to clear storage: {e}")
            self.last_error = StorageUnavailableError(str(e))
            return False

    def get_storage_info(self) -> StorageInfo:
        """
        Report storage usage.

        Returns:
            StorageInfo; all sizes are zero when storage is unsupported
        """
        if not self.is_storage_supported:
            return StorageInfo(data_size=0, total_size=0, key_count=0, is_supported=False)

        try:
            return StorageInfo(
                data_size=self.backend.item_size(self.storage_key),
                total_size=self.backend.total_size(),
                key_count=len(self.backend),
                is_supported=True,
            )
        except (OSError, StorageError) as e:
            logger.error(f"Failed to get storage info: {e}")
            return StorageInfo(data_size=0, total_size=0, key_count=0, is_supported=True)

    def create_backup(self) -> Optional[str]:
        """
        Serialize the stored payload as a pretty-printed backup document.

        Returns:
            JSON text with data, backupDate and version, or None if nothing is stored
        """
        data = self.load()
        if data is None:
            return None

        backup = {
            'data': data,
            'backupDate': _iso(_now()),
            'version': self.version,
        }
        return json.dumps(backup, indent=2)

    def restore_from_backup(self, backup_string: str) -> bool:
        """
        Replace the stored payload with the one inside a backup document.

        Args:
            backup_string: Text produced by create_backup()

        Returns:
            True if the backup was valid and saved
        """
        try:
            backup = self._parse_backup(backup_string)
        except MalformedImportError as e:
            logger.error(f"Failed to restore from backup: {e}")
            self.last_error = e
            return False

        return self.save(backup['data'])

    def _parse_backup(self, backup_string: str) -> dict:
        try:
            backup = json.loads(backup_string)
        except (TypeError, ValueError) as e:
            raise MalformedImportError(f"Backup is not valid JSON: {e}") from e

        if not _has_fields(backup, BACKUP_FIELDS):
            raise MalformedImportError('Invalid backup format: data, backupDate and version are required')
        return backup

    def handle_storage_quota_exceeded(self) -> None:
        """Report current usage after a write was refused for lack of space."""
        logger.warning('Storage quota exceeded')

        info = self.get_storage_info()
        if info.is_supported:
            logger.info(
                f"Current storage usage: {info.total_size} bytes in {info.key_count} keys"
            )

    def handle_corrupted_data(self, error: CorruptDataError) -> None:
        """
        Apply the corruption policy to undecodable stored data.

        Args:
            error: Details of the corrupted entry
        """
        logger.error(f"Corrupted data detected: {error}")
        self.last_error = error

        if callable(self.on_corruption):
            should_clear = bool(self.on_corruption(error))
        else:
            should_clear = self.on_corruption == 'clear'

        if should_clear:
            logger.warning(f"Clearing corrupted data under key: {self.storage_key}")
            self.clear()
        else:
            logger.warning(f"Preserving corrupted data under key: {self.storage_key}")

    def export_data(self, directory: Union[str, Path] = '.') -> Optional[Path]:
        """
        Write a backup file named after the current date.

        Args:
            directory: Target directory

        Returns:
            Path of the written file, or None if there was nothing to export
        """
        backup = self.create_backup()
        if backup is None:
            return None

        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"calendar_backup_{_now().date().isoformat()}.json"
        target.write_text(backup, encoding='utf-8')

        logger.info(f"Exported backup to {target}")
        return target

    async def import_data(self, file: Any) -> bool:
        """
        Restore from a backup file.

        Args:
            file: Path or readable file-like object

        Returns:
            True if the backup was valid and saved

        Raises:
            BackupReadError: If the file cannot be read
        """
        content = await asyncio.to_thread(_read_backup_file, file)
        return self.restore_from_backup(content)


def _read_backup_file(file: Any) -> str:
    try:
        if isinstance(file, (str, Path)):
            return Path(file).read_text(encoding='utf-8')

        content = file.read()
        if isinstance(content, bytes):
            content = content.decode('utf-8')
        return content
    except (OSError, UnicodeDecodeError, AttributeError) as e:
        raise BackupReadError(f"Failed to read file: {e}") from e
