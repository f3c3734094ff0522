"""Per-entity mutual exclusion."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class _Slot:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLock:
    """Registry of mutexes addressed by free-form string keys.

    Callers build keys from an entity kind and its id (``"thread_" + id``) so
    unrelated entities never contend. A slot is created on first use and
    dropped once nobody holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[str, _Slot] = {}

    def lock(self, key: str) -> None:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.refs += 1
        slot.lock.acquire()

    def unlock(self, key: str) -> None:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                raise RuntimeError(f"unlock of unknown key {key!r}")
            slot.refs -= 1
            if slot.refs == 0:
                del self._slots[key]
        slot.lock.release()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        self.lock(key)
        try:
            yield
        finally:
            self.unlock(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

    def __contains__(self, key: object) -> bool:
        with self._guard:
            return key in self._slots
