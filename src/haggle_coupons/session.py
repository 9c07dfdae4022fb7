import json
import logging
import random
import string
import threading
import time
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

SESSION_KEY = "haggle-session-id"
ONBOARDING_SEEN_KEY = "haggle-onboarding-seen"

_BASE36 = string.digits + string.ascii_lowercase


class KeyValueStorage(Protocol):
    """Device-local string storage (the browser's localStorage, in spirit)."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class InMemoryStorage:
    """Storage that lives as long as the process. Used by tests."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage:
    """
    Storage persisted as a single JSON object on disk.

    Args:
        state_dir: Directory holding the storage file (created on first write)
        filename: Name of the JSON file inside state_dir
    """

    def __init__(self, state_dir: str | Path, filename: str = "storage.json"):
        self.path = Path(state_dir) / filename
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable storage file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)


def new_session_id() -> str:
    """Build an id like ``session_1718000000000_k3j9x0abc``."""
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def get_session_id(storage: KeyValueStorage) -> str:
    """Return the device's anonymous session id, creating it on first use."""
    session_id = storage.get_item(SESSION_KEY)
    if not session_id:
        session_id = new_session_id()
        storage.set_item(SESSION_KEY, session_id)
        logger.info(f"Created new session {session_id}")
    return session_id


def has_seen_onboarding(storage: KeyValueStorage) -> bool:
    return storage.get_item(ONBOARDING_SEEN_KEY) == "true"


def mark_onboarding_seen(storage: KeyValueStorage) -> None:
    storage.set_item(ONBOARDING_SEEN_KEY, "true")
