"""Ticket tracker interface consumed by the relay."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Protocol


class TrackerError(RuntimeError):
    """Raised when the tracker could not be reached or rejected a call."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class IssueStatus(enum.Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    WAITING_FOR_OPERATOR = "waiting_for_operator"
    WAITING_FOR_CUSTOMER = "waiting_for_customer"
    DONE = "done"


@dataclass
class TrackerNote:
    id: int
    body: str
    is_private: bool = False
    author_id: int | None = None


@dataclass
class TrackerAttachment:
    id: int
    file_name: str = ""


@dataclass
class TrackerIssue:
    id: int
    status_id: int
    is_closed: bool = False
    subject: str = ""
    attachments: list[TrackerAttachment] = field(default_factory=list)


@dataclass
class UploadRequest:
    """A file to attach to the next issue update."""

    file_name: str
    data: bytes
    content_type: str = "application/octet-stream"


class Tracker(Protocol):
    """Operations the relay needs from an external ticket tracker.

    A disabled tracker turns every call into a no-op returning an empty
    result; callers check :attr:`enabled` only to skip work early.
    """

    @property
    def enabled(self) -> bool: ...

    def new_issue(
        self, thread_id: str, subject: str, medium: str, reporter: str, text: str
    ) -> int: ...

    def update_issue(
        self,
        issue_id: int,
        status: IssueStatus,
        text: str,
        upload: UploadRequest | None = None,
    ) -> None: ...

    def get_issue(
        self, issue_id: int, include_attachments: bool = False
    ) -> TrackerIssue | None: ...

    def is_closed(self, issue_id: int) -> bool: ...

    def get_notes(self, issue_id: int) -> list[TrackerNote]: ...

    def delete_attachment(self, attachment_id: int) -> None: ...

    def status_to_id(self, status: IssueStatus) -> int: ...
