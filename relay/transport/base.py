"""Base abstractions for the messaging transport the relay sits on."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from .formatting import markdown_content
from .models import Event, MessageContent, Page, Profile, RelatesTo

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Raised when the transport could not be reached or rejected a call."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class EventNotFoundError(TransportError):
    """Raised when an event does not exist (or is not visible) in a room."""


class Transport(ABC):
    """Abstract messaging transport consumed by the relay.

    Implementations wrap a concrete chat network client. Every method is a
    blocking call; failures are reported as :class:`TransportError`.
    """

    #: Identifier of the relay's own account on the transport.
    user_id: str

    #: Base URL used to build human-clickable links to users and events.
    link_base: str = "https://matrix.to/#/"

    @abstractmethod
    def send_message(self, room_id: str, content: MessageContent) -> str:
        """Send a message event and return its id."""

    @abstractmethod
    def send_reaction(self, room_id: str, event_id: str, key: str) -> str:
        """Annotate ``event_id`` with ``key``."""

    @abstractmethod
    def get_event(self, room_id: str, event_id: str) -> Event:
        """Fetch a single event; raises :class:`EventNotFoundError`."""

    @abstractmethod
    def decrypt_event(self, evt: Event) -> Event:
        """Return the decrypted form of an encrypted event."""

    @abstractmethod
    def threads(self, room_id: str, from_token: str | None = None) -> Page:
        """List thread root events of ``room_id``, newest first."""

    @abstractmethod
    def relations(
        self,
        room_id: str,
        event_id: str,
        rel_type: str,
        from_token: str | None = None,
    ) -> Page:
        """List events related to ``event_id`` with ``rel_type``."""

    @abstractmethod
    def find_event_by(self, room_id: str, fields: Mapping[str, str]) -> Event | None:
        """Search recent events of a room for one whose metadata matches ``fields``."""

    @abstractmethod
    def get_display_name(self, user_id: str) -> str | None: ...

    @abstractmethod
    def get_profile(self, user_id: str) -> Profile: ...

    @abstractmethod
    def mark_read(self, room_id: str, event_id: str) -> None: ...

    @abstractmethod
    def join_room(self, room_id: str) -> None: ...

    @abstractmethod
    def leave_room(self, room_id: str) -> None: ...

    @abstractmethod
    def invite_user(self, room_id: str, user_id: str, reason: str = "") -> None: ...

    @abstractmethod
    def create_room(self, invite: str) -> str:
        """Create a direct conversation with ``invite`` and return its id."""

    @abstractmethod
    def joined_or_invited_members(self, room_id: str) -> list[str]: ...

    @abstractmethod
    def download(self, url: str) -> bytes: ...

    @abstractmethod
    def get_account_data(self, name: str) -> dict[str, str] | None: ...

    @abstractmethod
    def set_account_data(self, name: str, data: Mapping[str, str]) -> None: ...

    def user_link(self, user_id: str) -> str:
        return f"{self.link_base}{user_id}"

    def event_link(self, room_id: str, event_id: str) -> str:
        return f"{self.link_base}{room_id}/{event_id}"


def send_notice(
    transport: Transport,
    room_id: str,
    message: str,
    extra: dict[str, Any] | None = None,
    relates_to: RelatesTo | None = None,
) -> str | None:
    """Send a notice, retrying once without the relation on failure.

    Returns the event id, or ``None`` when both attempts failed.
    """

    content = markdown_content(message)
    content.relates_to = relates_to
    content.extra = dict(extra or {})
    try:
        return transport.send_message(room_id, content)
    except TransportError as exc:
        logger.error(
            "cannot send a notice into the room %s (retries 1/2): %s", room_id, exc
        )
        if relates_to is None:
            return None
    content.relates_to = None
    try:
        return transport.send_message(room_id, content)
    except TransportError as exc:
        logger.error(
            "cannot send a notice into the room %s even without relations (retries 2/2): %s",
            room_id,
            exc,
        )
        return None
