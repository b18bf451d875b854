from __future__ import annotations

from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class _LockSlot:
    lock: Lock = field(default_factory=Lock)
    holders: int = 0


class KeyedLocks:
    """One mutex per key, created on demand and dropped once nobody waits on it."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._slots: dict[Hashable, _LockSlot] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            slot = self._slots.setdefault(key, _LockSlot())
            slot.holders += 1

        slot.lock.acquire()
        try:
            yield
        finally:
            slot.lock.release()
            with self._guard:
                slot.holders -= 1
                if slot.holders == 0:
                    self._slots.pop(key, None)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._slots)
