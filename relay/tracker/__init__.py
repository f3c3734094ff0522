"""Ticket tracker integration."""

from __future__ import annotations

from ..core.config import RedmineSettings
from .base import (
    IssueStatus,
    Tracker,
    TrackerAttachment,
    TrackerError,
    TrackerIssue,
    TrackerNote,
    UploadRequest,
)
from .memory import InMemoryTracker
from .redmine import RedmineTracker


def build_tracker(settings: RedmineSettings) -> Tracker:
    """Return a Redmine tracker; it stays disabled without host and key."""

    return RedmineTracker(settings)


__all__ = [
    "InMemoryTracker",
    "IssueStatus",
    "RedmineTracker",
    "Tracker",
    "TrackerAttachment",
    "TrackerError",
    "TrackerIssue",
    "TrackerNote",
    "UploadRequest",
    "build_tracker",
]
