"""Durable, cached associations between conversations, threads and tickets."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from cachetools import LRUCache

from ..transport.models import Event, Page
from .store import AccountDataStore

logger = logging.getLogger(__name__)

MAPPING_PREFIX = "relay.mapping."
TRACKER_PREFIX = "relay.tracker."
NOTE_PREFIX = "relay.tracker.note."

NOTE_SYNCED = "true"
NOTE_FAILED = "failed"


class NotMappedError(RuntimeError):
    """Raised when a mapping does not exist or only one direction of it does."""


class MappingStore:
    """Read-through cache in front of an :class:`AccountDataStore`.

    Every record is a ``{"id": target}`` map named ``prefix + source``. Writes
    go to the store first and only then into the cache; a removed mapping is
    an empty record. Misses are never cached, and a read that overlaps
    any write does not fill the cache, so a removed mapping never comes back.
    """

    def __init__(self, store: AccountDataStore, cache_size: int = 1000) -> None:
        self.store = store
        self._cache: LRUCache[str, str] = LRUCache(maxsize=max(cache_size, 1))
        self._lock = threading.Lock()
        self._writes = 0
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Generic operations

    def get(self, prefix: str, key: str) -> str:
        name = prefix + key
        with self._lock:
            cached = self._cache.get(name)
            writes = self._writes
        if cached:
            return cached
        data = self.store.get_account_data(name)
        value = (data or {}).get("id", "")
        if not value:
            raise NotMappedError(f"no mapping for {key}")
        with self._lock:
            if self._writes == writes:
                self._cache[name] = value
        return value

    def set(self, prefix: str, key: str, value: str) -> None:
        name = prefix + key
        with self._write_lock:
            self.store.set_account_data(name, {"id": value})
            with self._lock:
                self._writes += 1
                self._cache[name] = value

    def remove(self, prefix: str, key: str) -> None:
        name = prefix + key
        with self._write_lock:
            self.store.set_account_data(name, {})
            with self._lock:
                self._writes += 1
                self._cache.pop(name, None)

    def resolve_pair(self, prefix: str, key: str) -> str:
        """Return the target of ``key`` only when the reverse entry points back."""

        target = self.get(prefix, key)
        try:
            reverse = self.get(prefix, target)
        except NotMappedError:
            reverse = ""
        if reverse != key:
            logger.warning("one-sided mapping %s -> %s ignored", key, target)
            raise NotMappedError(f"mapping for {key} is incomplete")
        return target

    # ------------------------------------------------------------------
    # Conversation <-> thread

    def thread_for_conversation(self, room_id: str) -> str:
        return self.resolve_pair(MAPPING_PREFIX, room_id)

    def conversation_for_thread(self, thread_id: str) -> str:
        return self.resolve_pair(MAPPING_PREFIX, thread_id)

    def link_conversation(self, room_id: str, thread_id: str) -> None:
        self.set(MAPPING_PREFIX, room_id, thread_id)
        self.set(MAPPING_PREFIX, thread_id, room_id)

    def unlink_conversation(self, room_id: str, thread_id: str) -> None:
        self.remove(MAPPING_PREFIX, thread_id)
        self.remove(MAPPING_PREFIX, room_id)

    # ------------------------------------------------------------------
    # Thread <-> ticket

    def ticket_for_thread(self, thread_id: str) -> int:
        value = self.resolve_pair(TRACKER_PREFIX, thread_id)
        try:
            ticket_id = int(value)
        except ValueError as exc:
            raise NotMappedError(f"ticket id {value!r} of {thread_id} is invalid") from exc
        if ticket_id <= 0:
            raise NotMappedError(f"ticket id {value!r} of {thread_id} is invalid")
        return ticket_id

    def ticket_for_conversation(self, room_id: str) -> int:
        value = self.get(TRACKER_PREFIX, room_id)
        try:
            return int(value)
        except ValueError as exc:
            raise NotMappedError(f"ticket id {value!r} of {room_id} is invalid") from exc

    def link_ticket(self, room_id: str, thread_id: str, ticket_id: int) -> None:
        ticket = str(ticket_id)
        self.set(TRACKER_PREFIX, ticket, thread_id)
        self.set(TRACKER_PREFIX, thread_id, ticket)
        self.set(TRACKER_PREFIX, room_id, ticket)

    def unlink_ticket(self, room_id: str, thread_id: str, ticket_id: int) -> None:
        self.remove(TRACKER_PREFIX, thread_id)
        self.remove(TRACKER_PREFIX, room_id)
        self.remove(TRACKER_PREFIX, str(ticket_id))

    # ------------------------------------------------------------------
    # Note sync markers

    @staticmethod
    def _note_name(thread_id: str, note_id: int) -> str:
        return f"{NOTE_PREFIX}{thread_id}_{note_id}"

    def note_marker(self, thread_id: str, note_id: int) -> dict[str, str]:
        return dict(self.store.get_account_data(self._note_name(thread_id, note_id)) or {})

    def set_note_marker(self, thread_id: str, note_id: int, marker: dict[str, str]) -> None:
        self.store.set_account_data(self._note_name(thread_id, note_id), marker)

    # ------------------------------------------------------------------
    # Reference counting

    @staticmethod
    def count_references(
        fetch_page: Callable[[str | None], Page],
        *predicates: Callable[[Event], bool],
    ) -> tuple[int, ...]:
        """Count events matching each predicate across every page of a listing.

        Pages are followed through ``next_batch`` until it is empty.
        """

        counts = [0] * len(predicates)
        token: str | None = None
        while True:
            page = fetch_page(token)
            for evt in page.chunk:
                for index, predicate in enumerate(predicates):
                    if predicate(evt):
                        counts[index] += 1
            if not page.next_batch:
                return tuple(counts)
            token = page.next_batch
