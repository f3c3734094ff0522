"""In-process transport used for local development and tests."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Mapping
from dataclasses import replace

from .base import EventNotFoundError, Transport, TransportError
from .models import (
    EVENT_ENCRYPTED,
    EVENT_MESSAGE,
    EVENT_REACTION,
    REL_ANNOTATION,
    REL_THREAD,
    Event,
    MessageContent,
    Page,
    Profile,
    RelatesTo,
)


class InMemoryTransport(Transport):
    """Keeps rooms, events and account data in dictionaries.

    ``fail_rooms`` makes every send into the listed rooms raise
    :class:`TransportError`, which lets tests exercise failure paths.
    """

    def __init__(
        self,
        user_id: str = "@relay:example.org",
        *,
        page_size: int = 50,
    ) -> None:
        self.user_id = user_id
        self.page_size = page_size
        self.rooms: dict[str, list[Event]] = {}
        self.members: dict[str, set[str]] = {}
        self.account_data: dict[str, dict[str, str]] = {}
        self.display_names: dict[str, str] = {}
        self.profiles: dict[str, Profile] = {}
        self.files: dict[str, bytes] = {}
        self.read_markers: dict[str, str] = {}
        self.fail_rooms: set[str] = set()
        self.fail_account_data = False
        self._ids = itertools.count(1)
        self._room_ids = itertools.count(1)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Helpers for seeding state

    def _next_id(self) -> str:
        return f"$event{next(self._ids)}"

    def add_event(self, evt: Event) -> Event:
        with self._lock:
            self.rooms.setdefault(evt.room_id, []).append(evt)
        return evt

    def post(
        self,
        room_id: str,
        sender: str,
        content: MessageContent,
        *,
        event_type: str = EVENT_MESSAGE,
        timestamp: int | None = None,
    ) -> Event:
        """Append an event sent by ``sender`` (as if received from the network)."""

        evt = Event(
            event_id=self._next_id(),
            room_id=room_id,
            sender=sender,
            type=event_type,
            content=content,
        )
        if timestamp is not None:
            evt.timestamp = timestamp
        return self.add_event(evt)

    def messages(self, room_id: str, *, sender: str | None = None) -> list[Event]:
        with self._lock:
            events = list(self.rooms.get(room_id, []))
        return [
            evt
            for evt in events
            if evt.type == EVENT_MESSAGE and (sender is None or evt.sender == sender)
        ]

    def reactions(self, room_id: str) -> list[Event]:
        with self._lock:
            return [e for e in self.rooms.get(room_id, []) if e.type == EVENT_REACTION]

    def _paginate(self, events: list[Event], from_token: str | None) -> Page:
        start = int(from_token) if from_token else 0
        end = start + self.page_size
        next_batch = str(end) if end < len(events) else None
        return Page(chunk=events[start:end], next_batch=next_batch)

    # ------------------------------------------------------------------
    # Transport API

    def send_message(self, room_id: str, content: MessageContent) -> str:
        if room_id in self.fail_rooms:
            raise TransportError(f"sending into {room_id} is not allowed", code="M_FORBIDDEN")
        evt = self.post(room_id, self.user_id, content.copy())
        return evt.event_id

    def send_reaction(self, room_id: str, event_id: str, key: str) -> str:
        if room_id in self.fail_rooms:
            raise TransportError(f"sending into {room_id} is not allowed", code="M_FORBIDDEN")
        content = MessageContent(
            body="",
            relates_to=RelatesTo(rel_type=REL_ANNOTATION, event_id=event_id, key=key),
        )
        evt = self.post(room_id, self.user_id, content, event_type=EVENT_REACTION)
        return evt.event_id

    def get_event(self, room_id: str, event_id: str) -> Event:
        with self._lock:
            for evt in self.rooms.get(room_id, []):
                if evt.event_id == event_id:
                    return evt
        raise EventNotFoundError(f"event {event_id} not found in {room_id}", code="M_NOT_FOUND")

    def decrypt_event(self, evt: Event) -> Event:
        if evt.type != EVENT_ENCRYPTED or not isinstance(evt.ciphertext, MessageContent):
            raise TransportError(f"cannot decrypt {evt.event_id}")
        return replace(evt, type=EVENT_MESSAGE, content=evt.ciphertext, ciphertext=None)

    def threads(self, room_id: str, from_token: str | None = None) -> Page:
        with self._lock:
            events = list(self.rooms.get(room_id, []))
        roots = {
            evt.content.relates_to.event_id
            for evt in events
            if evt.content.relates_to is not None
            and evt.content.relates_to.rel_type == REL_THREAD
        }
        chunk = [evt for evt in reversed(events) if evt.event_id in roots]
        return self._paginate(chunk, from_token)

    def relations(
        self,
        room_id: str,
        event_id: str,
        rel_type: str,
        from_token: str | None = None,
    ) -> Page:
        with self._lock:
            events = list(self.rooms.get(room_id, []))
        related = [
            evt
            for evt in events
            if evt.content.relates_to is not None
            and evt.content.relates_to.rel_type == rel_type
            and evt.content.relates_to.event_id == event_id
        ]
        return self._paginate(related, from_token)

    def find_event_by(self, room_id: str, fields: Mapping[str, str]) -> Event | None:
        with self._lock:
            events = list(self.rooms.get(room_id, []))
        for evt in reversed(events):
            if all(evt.content.extra.get(k) == v for k, v in fields.items()):
                return evt
        return None

    def get_display_name(self, user_id: str) -> str | None:
        if user_id not in self.display_names:
            raise TransportError(f"profile of {user_id} not found", code="M_NOT_FOUND")
        return self.display_names[user_id]

    def get_profile(self, user_id: str) -> Profile:
        profile = self.profiles.get(user_id)
        if profile is None:
            raise TransportError(f"profile of {user_id} not found", code="M_NOT_FOUND")
        return profile

    def mark_read(self, room_id: str, event_id: str) -> None:
        self.read_markers[room_id] = event_id

    def join_room(self, room_id: str) -> None:
        with self._lock:
            self.members.setdefault(room_id, set()).add(self.user_id)

    def leave_room(self, room_id: str) -> None:
        with self._lock:
            joined = self.members.setdefault(room_id, set())
            if self.user_id not in joined:
                raise TransportError(f"not a member of {room_id}", code="M_FORBIDDEN")
            joined.discard(self.user_id)

    def invite_user(self, room_id: str, user_id: str, reason: str = "") -> None:
        with self._lock:
            self.members.setdefault(room_id, set()).add(user_id)

    def create_room(self, invite: str) -> str:
        room_id = f"!room{next(self._room_ids)}:{self.user_id.partition(':')[2]}"
        with self._lock:
            self.rooms[room_id] = []
            self.members[room_id] = {self.user_id, invite}
        return room_id

    def joined_or_invited_members(self, room_id: str) -> list[str]:
        with self._lock:
            return sorted(self.members.get(room_id, set()))

    def download(self, url: str) -> bytes:
        if url not in self.files:
            raise TransportError(f"media {url} not found", code="M_NOT_FOUND")
        return self.files[url]

    def get_account_data(self, name: str) -> dict[str, str] | None:
        if self.fail_account_data:
            raise TransportError("account data is unavailable")
        with self._lock:
            data = self.account_data.get(name)
            return dict(data) if data is not None else None

    def set_account_data(self, name: str, data: Mapping[str, str]) -> None:
        if self.fail_account_data:
            raise TransportError("account data is unavailable")
        with self._lock:
            self.account_data[name] = dict(data)
