"""Domain models exchanged with the messaging transport."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any

EVENT_MESSAGE = "message"
EVENT_REACTION = "reaction"
EVENT_MEMBER = "member"
EVENT_ENCRYPTED = "encrypted"

MSG_TEXT = "text"
MSG_NOTICE = "notice"
MSG_FILE = "file"
MSG_IMAGE = "image"

REL_THREAD = "thread"
REL_REPLACE = "replace"
REL_ANNOTATION = "annotation"

MEMBERSHIP_JOIN = "join"
MEMBERSHIP_INVITE = "invite"
MEMBERSHIP_LEAVE = "leave"
MEMBERSHIP_BAN = "ban"

FORMAT_HTML = "html"

#: Metadata field carrying the id of the counterpart event on the other side.
SOURCE_EVENT_FIELD = "event_id"
#: Per-message profile of the original sender, attached to forwarded copies.
PROFILE_FIELD = "com.beeper.per_message_profile"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RelatesTo:
    """Relation of an event to another one (thread, edit, reaction, reply)."""

    rel_type: str | None = None
    event_id: str | None = None
    key: str | None = None
    in_reply_to: str | None = None


def relates_to_thread(thread_id: str, in_reply_to: str | None = None) -> RelatesTo:
    return RelatesTo(rel_type=REL_THREAD, event_id=thread_id, in_reply_to=in_reply_to)


@dataclass
class MessageContent:
    """Body of a message event as seen by the relay."""

    body: str = ""
    msgtype: str = MSG_TEXT
    formatted_body: str = ""
    format: str | None = None
    relates_to: RelatesTo | None = None
    new_content: MessageContent | None = None
    url: str | None = None
    file_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def copy(self) -> MessageContent:
        return replace(
            self,
            relates_to=replace(self.relates_to) if self.relates_to else None,
            new_content=self.new_content.copy() if self.new_content else None,
            extra=dict(self.extra),
        )

    def set_edit(self, event_id: str) -> None:
        """Turn this content into an edit of ``event_id``."""

        self.new_content = MessageContent(
            body=self.body,
            msgtype=self.msgtype,
            formatted_body=self.formatted_body,
            format=self.format,
        )
        self.body = "* " + self.body
        if self.formatted_body:
            self.formatted_body = "* " + self.formatted_body
        self.relates_to = RelatesTo(rel_type=REL_REPLACE, event_id=event_id)


@dataclass
class Event:
    """Uniform representation of transport events."""

    event_id: str
    room_id: str
    sender: str
    type: str = EVENT_MESSAGE
    content: MessageContent = field(default_factory=MessageContent)
    timestamp: int = field(default_factory=now_ms)
    membership: str | None = None
    state_key: str | None = None
    ciphertext: Any = None

    @property
    def encrypted(self) -> bool:
        return self.type == EVENT_ENCRYPTED


@dataclass
class Page:
    """One page of a paginated listing; ``next_batch`` is empty on the last."""

    chunk: list[Event] = field(default_factory=list)
    next_batch: str | None = None


@dataclass
class Profile:
    id: str
    displayname: str | None = None
    avatar_url: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "displayname": self.displayname,
            "avatar_url": self.avatar_url,
        }


def origin_of(user_id: str) -> str:
    """Return the server part of ``@localpart:server`` style identifiers."""

    _, sep, server = user_id.partition(":")
    return server if sep else ""


def localpart(user_id: str) -> str:
    return user_id.partition(":")[0]


def get_parent(evt: Event) -> str:
    """Return the id of the thread (or replied event) ``evt`` belongs to."""

    relation = evt.content.relates_to if evt.content else None
    if relation is None:
        return evt.event_id
    if relation.rel_type == REL_THREAD and relation.event_id:
        return relation.event_id
    if relation.in_reply_to:
        return relation.in_reply_to
    return evt.event_id


def event_relates_to(evt: Event) -> RelatesTo:
    """Relation used to answer ``evt`` in the same place it was sent."""

    relation = evt.content.relates_to if evt.content else None
    if relation is not None and relation.rel_type == REL_THREAD and relation.event_id:
        return relates_to_thread(relation.event_id, in_reply_to=evt.event_id)
    return RelatesTo(in_reply_to=evt.event_id)


def event_contains(evt: Event, field_name: str, value: str) -> bool:
    return bool(evt.content) and evt.content.extra.get(field_name) == value
