"""Client-local key/value storage used for small pieces of UI state."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Protocol

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)

_KV_SCHEMA_VERSION = 1


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class InMemoryKeyValueStore:
    """Process-local store, handy for tests and one-shot commands."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileKeyValueStore:
    """Persist string values in a single versioned JSON document."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._data: Dict[str, str] = {}
        if path.exists():
            try:
                payload = orjson.loads(path.read_bytes())
            except orjson.JSONDecodeError:
                LOGGER.warning("kv_store_unreadable", path=str(path))
                payload = {}
            data = None
            if isinstance(payload, dict) and payload.get("version") == _KV_SCHEMA_VERSION:
                data = payload.get("data")
            if isinstance(data, dict):
                self._data = {str(k): str(v) for k, v in data.items()}
            elif payload:
                LOGGER.warning("kv_store_ignored", path=str(path))
        else:
            path.parent.mkdir(parents=True, exist_ok=True)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        payload = {"version": _KV_SCHEMA_VERSION, "data": self._data}
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_bytes(orjson.dumps(payload))
        tmp_path.replace(self._path)
