"""Key-value stores with optional expiry.

Components never reach for global state; they receive a store exposing
``get``/``set``/``delete``. :class:`InMemoryStore` backs the tests and
single-process runs, :class:`JsonFileStore` keeps option caches, rate limit
counters and the encrypted token between command line invocations.
"""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

LOGGER = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryStore:
    """Dictionary backed store with per-entry expiry."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, tuple[Any, Optional[float]]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return default
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = self._clock() + ttl if ttl is not None else None
        self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:  # pragma: no cover - trivial utility
        return len(self._entries)


class JsonFileStore:
    """Store persisted as a single JSON document.

    Entries are written as ``{"value": ..., "expires_at": epoch|null}``.
    The file is rewritten on every mutation; this store is meant for small
    amounts of state shared by consecutive command line runs.
    """

    def __init__(self, path: Path, *, clock: Callable[[], float] = time.time) -> None:
        self.path = path
        self._clock = clock

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring unreadable key-value store %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._read().get(key)
        if not isinstance(entry, dict):
            return default
        expires_at = entry.get("expires_at")
        if expires_at is not None and self._clock() >= float(expires_at):
            self.delete(key)
            return default
        return entry.get("value", default)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        data = self._read()
        data[key] = {
            "value": value,
            "expires_at": self._clock() + ttl if ttl is not None else None,
        }
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


_MISSING = object()
