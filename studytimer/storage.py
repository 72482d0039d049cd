"""Key-value persistence for categories, settings, and the timer snapshot."""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .errors import StorageError

LOGGER = logging.getLogger(__name__)

KEY_CATEGORIES = "app.categories"
KEY_SETTINGS = "app.settings"
KEY_TIMER_STATE = "app.timer_state"


class KeyValueStore(Protocol):
    """Synchronous JSON key-value store."""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> bool:
        ...

    def remove(self, key: str) -> bool:
        ...


class JsonFileStore:
    """Store each key as a JSON document inside a data directory.

    Writes go to a temporary file first and are moved into place, so a
    reader never sees a half-written document.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create data directory {self.data_dir}: {exc}") from exc

    def _path_for(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path_for(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            LOGGER.exception("Failed to read %s from %s", key, path)
            return default

    def set(self, key: str, value: Any) -> bool:
        path = self._path_for(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(value, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError):
            LOGGER.exception("Failed to save %s to %s", key, path)
            return False
        LOGGER.debug("Saved %s", key)
        return True

    def remove(self, key: str) -> bool:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError:
            LOGGER.exception("Failed to remove %s", key)
            return False
        return True


class MemoryStore:
    """In-process store; values are JSON-encoded to behave like the file store."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> bool:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError):
            LOGGER.exception("Failed to save %s", key)
            return False
        return True

    def remove(self, key: str) -> bool:
        self._data.pop(key, None)
        return True


def generate_id() -> str:
    """Return a new random category id."""
    return str(uuid.uuid4())
