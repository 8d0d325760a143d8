"""Key-value storage mechanisms used by StorageManager."""
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote, unquote

from storage.exceptions import CorruptDataError, QuotaExceededError

logger = logging.getLogger(__name__)


class KeyValueBackend(ABC):
    """
    String key-value store with an optional byte quota.

    Implementations raise QuotaExceededError when a write would push the
    total size (UTF-8 bytes of all stored values) past ``quota_bytes``,
    CorruptDataError when a stored value cannot be decoded, and OSError when
    the medium itself fails.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None."""

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove key. Missing keys are ignored."""

    @abstractmethod
    def keys(self) -> List[str]:
        """Return all stored keys."""

    def __len__(self) -> int:
        return len(self.keys())

    def item_size(self, key: str) -> int:
        """Size in bytes of the value stored under key, 0 if missing."""
        value = self.get_item(key)
        return len(value.encode('utf-8')) if value is not None else 0

    def total_size(self) -> int:
        """Aggregate size in bytes of every stored value."""
        return sum(self.item_size(key) for key in self.keys())

    def _check_quota(self, key: str, value: str) -> None:
        if self.quota_bytes is None:
            return

        requested = self.total_size() - self.item_size(key) + len(value.encode('utf-8'))
        if requested > self.quota_bytes:
            raise QuotaExceededError(requested=requested, quota=self.quota_bytes)


class MemoryBackend(KeyValueBackend):
    """Process-local backend. Data lives only as long as the object."""

    def __init__(self, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._check_quota(key, value)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items)


class FileBackend(KeyValueBackend):
    """
    Durable backend keeping one UTF-8 file per key in a directory.

    Keys are percent-encoded into file names. Writes go to a temporary file
    that replaces the target, so a crash never leaves a half-written value.
    """

    SUFFIX = '.json'

    def __init__(self, directory, quota_bytes: Optional[int] = None):
        """
        Initialize the file backend.

        Args:
            directory: Directory holding the key files (created on first write)
            quota_bytes: Optional limit on the total size of stored values
        """
        super().__init__(quota_bytes)
        self.directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}{self.SUFFIX}"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise CorruptDataError(key, '', str(e)) from e

    def item_size(self, key: str) -> int:
        # Raw byte count; the file is never decoded
        try:
            return self._path_for(key).stat().st_size
        except FileNotFoundError:
            return 0

    def set_item(self, key: str, value: str) -> None:
        self._check_quota(key, value)
        self.directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix='.tmp-')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as handle:
                handle.write(value)
            os.replace(tmp_name, self._path_for(key))
        except OSError as e:
            logger.error(f"Failed to write key '{key}' to {self.directory}: {e}")
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def remove_item(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    def keys(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        return sorted(
            unquote(path.name[:-len(self.SUFFIX)])
            for path in self.directory.iterdir()
            if path.is_file() and path.name.endswith(self.SUFFIX)
        )
