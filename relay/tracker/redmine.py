"""Redmine implementation of the :class:`~relay.tracker.base.Tracker` interface."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import requests

from ..core.config import RedmineSettings
from .base import (
    IssueStatus,
    TrackerAttachment,
    TrackerError,
    TrackerIssue,
    TrackerNote,
    UploadRequest,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
RETRY_DELAY = 5.0  # seconds, multiplied by the attempt number


class RedmineTracker:
    """Talks to the Redmine REST API with an API key.

    The project id and the id of the relay's own Redmine user are resolved
    lazily on the first call. Issue updates that fail with a 5xx status are
    retried with a linear back-off; a 404 means the issue is gone and is not
    treated as an error.
    """

    def __init__(
        self,
        settings: RedmineSettings,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 30,
    ) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.session.headers.update(
            {"X-Redmine-API-Key": settings.api_key, "Content-Type": "application/json"}
        )
        self._sleep = sleep
        self._timeout = timeout
        self._lock = threading.Lock()
        self._project_id: int | None = None
        self._user_id: int | None = None

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    # ------------------------------------------------------------------
    # HTTP helpers

    def _url(self, path: str) -> str:
        return f"{self.settings.host}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self._timeout)
        try:
            return self.session.request(method, self._url(path), **kwargs)
        except requests.RequestException as exc:
            raise TrackerError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _check(response: requests.Response, what: str) -> None:
        if response.status_code >= 400:
            raise TrackerError(
                f"cannot {what}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

    def _identity(self) -> tuple[int, int]:
        with self._lock:
            if self._project_id is None:
                response = self._request("GET", f"projects/{self.settings.project}.json")
                self._check(response, "get project")
                self._project_id = int(response.json()["project"]["id"])
            if self._user_id is None:
                response = self._request("GET", "users/current.json")
                self._check(response, "get current user")
                self._user_id = int(response.json()["user"]["id"])
            return self._project_id, self._user_id

    def status_to_id(self, status: IssueStatus) -> int:
        mapping = {
            IssueStatus.NEW: self.settings.status_new,
            IssueStatus.IN_PROGRESS: self.settings.status_in_progress,
            IssueStatus.WAITING_FOR_OPERATOR: self.settings.status_waiting_for_operator,
            IssueStatus.WAITING_FOR_CUSTOMER: self.settings.status_waiting_for_customer,
            IssueStatus.DONE: self.settings.status_done,
        }
        return mapping[status]

    # ------------------------------------------------------------------
    # Issues

    def new_issue(
        self, thread_id: str, subject: str, medium: str, reporter: str, text: str
    ) -> int:
        if not self.enabled:
            logger.debug("redmine is disabled, ignoring new_issue() call")
            return 0
        if not subject or not medium or not reporter or not text:
            logger.warning("missing required fields, ignoring new_issue() call for %s", thread_id)
            return 0

        project_id, _ = self._identity()
        description = f"Sender: `{reporter}` ({medium})\n\n{text}"
        payload = {
            "issue": {
                "project_id": project_id,
                "tracker_id": self.settings.tracker_id or None,
                "status_id": self.status_to_id(IssueStatus.NEW) or None,
                "subject": subject,
                "description": description,
            }
        }
        response = self._request("POST", "issues.json", json=payload)
        self._check(response, "create issue")
        issue_id = int(response.json()["issue"]["id"])
        logger.info("issue %s created for thread %s", issue_id, thread_id)
        return issue_id

    def _upload(self, upload: UploadRequest) -> dict[str, str]:
        response = self._request(
            "POST",
            "uploads.json",
            params={"filename": upload.file_name},
            data=upload.data,
            headers={"Content-Type": "application/octet-stream"},
        )
        self._check(response, "upload file")
        token = response.json()["upload"]["token"]
        return {
            "token": token,
            "filename": upload.file_name,
            "content_type": upload.content_type,
        }

    def update_issue(
        self,
        issue_id: int,
        status: IssueStatus,
        text: str,
        upload: UploadRequest | None = None,
    ) -> None:
        if not self.enabled:
            logger.debug("redmine is disabled, ignoring update_issue() call")
            return
        if not issue_id or not text:
            logger.debug("missing required fields, ignoring update_issue() call")
            return

        project_id, _ = self._identity()
        issue: dict[str, Any] = {
            "project_id": project_id,
            "status_id": self.status_to_id(status),
            "notes": text,
        }
        if upload is not None:
            issue["uploads"] = [self._upload(upload)]

        for attempt in range(1, MAX_RETRIES + 1):
            response = self._request("PUT", f"issues/{issue_id}.json", json={"issue": issue})
            if response.status_code == 404:
                logger.warning("issue %s not found", issue_id)
                return
            if response.status_code >= 500 and attempt < MAX_RETRIES:
                logger.warning(
                    "failed to update issue %s (HTTP %s), retrying (%d/%d)",
                    issue_id,
                    response.status_code,
                    attempt,
                    MAX_RETRIES,
                )
                self._sleep(RETRY_DELAY * attempt)
                continue
            self._check(response, f"update issue {issue_id}")
            return

    def get_issue(
        self, issue_id: int, include_attachments: bool = False
    ) -> TrackerIssue | None:
        if not self.enabled or not issue_id:
            return None
        params = {"include": "attachments"} if include_attachments else None
        response = self._request("GET", f"issues/{issue_id}.json", params=params)
        if response.status_code == 404:
            logger.warning("issue %s not found", issue_id)
            return None
        self._check(response, f"get issue {issue_id}")
        return self._parse_issue(response.json()["issue"])

    @staticmethod
    def _parse_issue(data: dict[str, Any]) -> TrackerIssue:
        status = data.get("status") or {}
        return TrackerIssue(
            id=int(data["id"]),
            status_id=int(status.get("id") or 0),
            is_closed=bool(status.get("is_closed", False)),
            subject=data.get("subject") or "",
            attachments=[
                TrackerAttachment(id=int(item["id"]), file_name=item.get("filename") or "")
                for item in data.get("attachments") or []
            ],
        )

    def is_closed(self, issue_id: int) -> bool:
        issue = self.get_issue(issue_id)
        if issue is None:
            return False
        return issue.is_closed or issue.status_id == self.status_to_id(IssueStatus.DONE)

    def get_notes(self, issue_id: int) -> list[TrackerNote]:
        if not self.enabled or not issue_id:
            return []
        _, user_id = self._identity()
        response = self._request("GET", f"issues/{issue_id}.json", params={"include": "journals"})
        if response.status_code == 404:
            logger.warning("issue %s not found", issue_id)
            return []
        self._check(response, f"get notes of issue {issue_id}")
        journals = response.json()["issue"].get("journals") or []

        notes: list[TrackerNote] = []
        for journal in sorted(journals, key=lambda item: int(item["id"])):
            author_id = (journal.get("user") or {}).get("id")
            if author_id == user_id:
                continue
            if not journal.get("notes"):
                continue
            notes.append(
                TrackerNote(
                    id=int(journal["id"]),
                    body=journal["notes"],
                    is_private=bool(journal.get("private_notes", False)),
                    author_id=author_id,
                )
            )
        logger.debug("%d notes found on issue %s", len(notes), issue_id)
        return notes

    def delete_attachment(self, attachment_id: int) -> None:
        if not self.enabled:
            return
        response = self._request("DELETE", f"attachments/{attachment_id}.json")
        if response.status_code == 404:
            return
        self._check(response, f"delete attachment {attachment_id}")
