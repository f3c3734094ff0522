"""In-process tracker used for local development and tests."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field

from .base import (
    IssueStatus,
    TrackerAttachment,
    TrackerError,
    TrackerIssue,
    TrackerNote,
    UploadRequest,
)

_STATUS_IDS = {
    IssueStatus.NEW: 1,
    IssueStatus.IN_PROGRESS: 2,
    IssueStatus.WAITING_FOR_OPERATOR: 3,
    IssueStatus.WAITING_FOR_CUSTOMER: 4,
    IssueStatus.DONE: 5,
}


@dataclass
class StoredIssue:
    id: int
    subject: str
    description: str
    reporter: str
    status_id: int
    updates: list[tuple[int, str]] = field(default_factory=list)
    notes: list[TrackerNote] = field(default_factory=list)
    attachments: list[TrackerAttachment] = field(default_factory=list)
    closed: bool = False


class InMemoryTracker:
    """Keeps issues in a dictionary.

    Set ``fail`` to make every call raise :class:`TrackerError`.
    """

    def __init__(self, *, enabled: bool = True) -> None:
        self._enabled = enabled
        self.issues: dict[int, StoredIssue] = {}
        self.deleted_attachments: list[int] = []
        self.fail = False
        self._ids = itertools.count(1)
        self._attachment_ids = itertools.count(100)
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _check(self) -> None:
        if self.fail:
            raise TrackerError("tracker is unavailable", status_code=503)

    def status_to_id(self, status: IssueStatus) -> int:
        return _STATUS_IDS[status]

    def new_issue(
        self, thread_id: str, subject: str, medium: str, reporter: str, text: str
    ) -> int:
        if not self._enabled:
            return 0
        self._check()
        with self._lock:
            issue_id = next(self._ids)
            self.issues[issue_id] = StoredIssue(
                id=issue_id,
                subject=subject,
                description=f"Sender: `{reporter}` ({medium})\n\n{text}",
                reporter=reporter,
                status_id=self.status_to_id(IssueStatus.NEW),
            )
        return issue_id

    def update_issue(
        self,
        issue_id: int,
        status: IssueStatus,
        text: str,
        upload: UploadRequest | None = None,
    ) -> None:
        if not self._enabled or not issue_id or not text:
            return
        self._check()
        with self._lock:
            issue = self.issues.get(issue_id)
            if issue is None:
                return
            issue.status_id = self.status_to_id(status)
            issue.updates.append((issue.status_id, text))
            if upload is not None:
                issue.attachments.append(
                    TrackerAttachment(id=next(self._attachment_ids), file_name=upload.file_name)
                )

    def add_note(self, issue_id: int, note_id: int, body: str, *, private: bool = False) -> None:
        with self._lock:
            self.issues[issue_id].notes.append(
                TrackerNote(id=note_id, body=body, is_private=private)
            )

    def get_issue(
        self, issue_id: int, include_attachments: bool = False
    ) -> TrackerIssue | None:
        if not self._enabled:
            return None
        self._check()
        with self._lock:
            issue = self.issues.get(issue_id)
            if issue is None:
                return None
            return TrackerIssue(
                id=issue.id,
                status_id=issue.status_id,
                is_closed=issue.closed,
                subject=issue.subject,
                attachments=list(issue.attachments) if include_attachments else [],
            )

    def is_closed(self, issue_id: int) -> bool:
        issue = self.get_issue(issue_id)
        if issue is None:
            return False
        return issue.is_closed or issue.status_id == self.status_to_id(IssueStatus.DONE)

    def get_notes(self, issue_id: int) -> list[TrackerNote]:
        if not self._enabled:
            return []
        self._check()
        with self._lock:
            issue = self.issues.get(issue_id)
            if issue is None:
                return []
            return sorted((n for n in issue.notes if n.body), key=lambda n: n.id)

    def delete_attachment(self, attachment_id: int) -> None:
        if not self._enabled:
            return
        self._check()
        with self._lock:
            for issue in self.issues.values():
                issue.attachments = [a for a in issue.attachments if a.id != attachment_id]
            self.deleted_attachments.append(attachment_id)
