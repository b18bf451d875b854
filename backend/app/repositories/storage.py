from __future__ import annotations

from threading import Lock
from typing import Protocol


class StorageError(Exception):
    """Raised when the backing key-value store cannot complete an operation."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None:
        ...

    def put(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def list_keys(self, prefix: str) -> list[str]:
        ...


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def put(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def list_keys(self, prefix: str) -> list[str]:
        with self._lock:
            return sorted(key for key in self._values if key.startswith(prefix))
