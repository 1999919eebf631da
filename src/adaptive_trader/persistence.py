"""
Persistence - durable key-value storage for learned state.

Components load at start and save after every mutation.
Failures are logged and swallowed: in-memory state stays authoritative
for the running process.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal bytes-in, bytes-out store."""

    @abstractmethod
    def load(self, key: str) -> Optional[bytes]:
        """Return stored bytes, or None when the key is absent."""

    @abstractmethod
    def save(self, key: str, value: bytes) -> None:
        """Persist bytes under key, replacing any previous value."""

    def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""


class MemoryStore(KeyValueStore):
    """In-process store, used for tests and dry runs."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}

    def load(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def save(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class JsonFileStore(KeyValueStore):
    """One JSON file per key under a state directory."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.state_dir / f"{key}.json"

    def load(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def save(self, key: str, value: bytes) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(value)
        tmp_path.replace(path)

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


def load_json(store: KeyValueStore, key: str, log: Optional[logging.Logger] = None) -> Optional[Any]:
    """Load and decode a JSON document. Returns None on absence or failure."""
    log = log or logger
    try:
        raw = store.load(key)
    except OSError as e:
        log.error(f"Failed to load state '{key}': {e}")
        return None

    if raw is None:
        return None

    try:
        return json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        log.error(f"Corrupt state '{key}', ignoring: {e}")
        return None


def save_json(store: KeyValueStore, key: str, data: Any, log: Optional[logging.Logger] = None) -> bool:
    """Encode and save a JSON document. Returns False on failure."""
    log = log or logger
    try:
        store.save(key, json.dumps(data, indent=2).encode("utf-8"))
        return True
    except (OSError, TypeError, ValueError) as e:
        log.error(f"Failed to save state '{key}': {e}")
        return False
