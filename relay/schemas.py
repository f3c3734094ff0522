"""Pydantic schemas for the HTTP surface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .transport.models import (
    EVENT_MESSAGE,
    MSG_TEXT,
    Event,
    MessageContent,
    RelatesTo,
    now_ms,
)


class RelatesToIn(BaseModel):
    rel_type: str | None = None
    event_id: str | None = None
    key: str | None = None
    in_reply_to: str | None = None

    def to_relates_to(self) -> RelatesTo:
        return RelatesTo(
            rel_type=self.rel_type,
            event_id=self.event_id,
            key=self.key,
            in_reply_to=self.in_reply_to,
        )


class ContentIn(BaseModel):
    body: str = ""
    msgtype: str = MSG_TEXT
    formatted_body: str = ""
    format: str | None = None
    relates_to: RelatesToIn | None = None
    new_content: ContentIn | None = None
    url: str | None = None
    file_name: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_content(self) -> MessageContent:
        return MessageContent(
            body=self.body,
            msgtype=self.msgtype,
            formatted_body=self.formatted_body,
            format=self.format,
            relates_to=self.relates_to.to_relates_to() if self.relates_to else None,
            new_content=self.new_content.to_content() if self.new_content else None,
            url=self.url,
            file_name=self.file_name,
            extra=dict(self.extra),
        )


class InboundEvent(BaseModel):
    """One event delivered by the transport's sync loop."""

    event_id: str
    room_id: str
    sender: str
    type: str = EVENT_MESSAGE
    content: ContentIn = Field(default_factory=ContentIn)
    timestamp: int | None = None
    membership: str | None = None
    state_key: str | None = None
    ciphertext: ContentIn | None = None

    def to_event(self) -> Event:
        return Event(
            event_id=self.event_id,
            room_id=self.room_id,
            sender=self.sender,
            type=self.type,
            content=self.content.to_content(),
            timestamp=self.timestamp if self.timestamp is not None else now_ms(),
            membership=self.membership,
            state_key=self.state_key,
            ciphertext=self.ciphertext.to_content() if self.ciphertext else None,
        )


class EventAccepted(BaseModel):
    event_id: str
    status: str = "accepted"


class SyncResponse(BaseModel):
    started: bool
    running: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    build_date: str | None = None
    commit_sha: str | None = None
