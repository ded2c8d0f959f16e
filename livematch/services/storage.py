"""
Key-value storage for the Live Match Sync application.

Local session state (snapshot, queue, mute flag) is kept in a single keyed
map with last-writer-wins semantics per key. ``remove_many`` is the only
multi-key operation and is atomic.
"""
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Abstract interface for the local persisted map - supports DIP."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the raw string stored under ``key`` or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    def remove_many(self, keys: Iterable[str], updates: Optional[Dict[str, str]] = None) -> None:
        """Atomically delete ``keys`` and apply ``updates`` in the same write."""

    def remove(self, key: str) -> None:
        self.remove_many([key])

    def get_json(self, key: str, default: Any = None) -> Any:
        """
        Decode the JSON value under ``key``.

        A missing or unparseable value yields ``default``; corruption is never raised.
        """
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring corrupted value under %r", key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value))


class MemoryStore(KeyValueStore):
    """In-memory store, used in tests and for throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)

    def remove_many(self, keys: Iterable[str], updates: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)
            for key, value in (updates or {}).items():
                self._data[key] = str(value)

    def keys(self):
        with self._lock:
            return sorted(self._data)


class JsonFileStore(KeyValueStore):
    """
    Store persisted to a JSON file.

    Every write rewrites the whole file through a temporary file and
    ``os.replace`` so a crash never leaves a half-written snapshot behind.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._lock = threading.Lock()
        self._data: Dict[str, str] = self._load()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = str(value)
            self._flush()

    def remove_many(self, keys: Iterable[str], updates: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)
            for key, value in (updates or {}).items():
                self._data[key] = str(value)
            self._flush()

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.file_path):
            return {}
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning("State file %s is unreadable, starting empty", self.file_path)
            return {}
        if not isinstance(data, dict):
            logger.warning("State file %s has unexpected content, starting empty", self.file_path)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        # Ensure directory exists
        directory = os.path.dirname(os.path.abspath(self.file_path))
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=".livematch-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.file_path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
