"""Durable key-value state: reference coordinates, watermarks and the hash salt."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Mapping, Protocol

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from phone_sensing.common.errors import PersistenceError
from phone_sensing.common.fs import read_json, write_json

PERSIST_ATTEMPTS = 2


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def put(self, values: Mapping[str, str]) -> None: ...

    def setdefault(self, key: str, value: str) -> str: ...


class MemoryStore:
    """Process-local store, used for tests and dry runs."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def put(self, values: Mapping[str, str]) -> None:
        with self._lock:
            self._values.update(values)

    def setdefault(self, key: str, value: str) -> str:
        with self._lock:
            return self._values.setdefault(key, value)

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._values)


class JsonFileStore:
    """Single JSON document on disk; every write is read back before returning."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._values: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = read_json(self.path)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Cannot read state file {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise PersistenceError(f"State file {self.path} does not hold a JSON object")
        return {str(k): str(v) for k, v in payload.items()}

    def _write(self, values: dict[str, str]) -> None:
        try:
            write_json(self.path, values)
            stored = read_json(self.path)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Cannot write state file {self.path}: {exc}") from exc
        for key, value in values.items():
            if stored.get(key) != value:
                raise PersistenceError(f"State key {key} did not read back from {self.path}")

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def put(self, values: Mapping[str, str]) -> None:
        with self._lock:
            merged = dict(self._values)
            merged.update(values)
            self._write(merged)
            self._values = merged

    def setdefault(self, key: str, value: str) -> str:
        with self._lock:
            existing = self._values.get(key)
            if existing is not None:
                return existing
            merged = dict(self._values)
            merged[key] = value
            self._write(merged)
            self._values = merged
            return value


_retry_once = retry(
    stop=stop_after_attempt(PERSIST_ATTEMPTS),
    wait=wait_fixed(0.1),
    retry=retry_if_exception_type((PersistenceError, OSError)),
    reraise=True,
)


def persist_with_retry(store: KeyValueStore, values: Mapping[str, str]) -> None:
    """Write ``values``, retrying once. Raises PersistenceError when both attempts fail."""
    try:
        _retry_once(store.put)(values)
    except OSError as exc:
        raise PersistenceError(str(exc)) from exc


def setdefault_with_retry(store: KeyValueStore, key: str, value: str) -> str:
    """``store.setdefault`` with the same single retry as ``persist_with_retry``."""
    try:
        return _retry_once(store.setdefault)(key, value)
    except OSError as exc:
        raise PersistenceError(str(exc)) from exc
