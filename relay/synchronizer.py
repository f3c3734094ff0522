"""Periodic reconciliation of ticket notes and status into conversations."""

from __future__ import annotations

import logging
import threading

from .forwarding.content import clear_reply
from .mappings.service import NOTE_FAILED, NOTE_SYNCED, MappingStore, NotMappedError
from .threads.lifecycle import ThreadLifecycle
from .tracker.base import Tracker, TrackerError, TrackerNote
from .transport.base import Transport, TransportError, send_notice
from .transport.formatting import markdown_content
from .transport.models import MSG_NOTICE, MSG_TEXT, SOURCE_EVENT_FIELD, relates_to_thread

logger = logging.getLogger(__name__)

MAX_CUSTOMER_ATTEMPTS = 3
TRACKER_CLOSED_TEXT = "_closed from tracker_"


class TicketSynchronizer:
    """Pulls notes and status of every mapped ticket.

    Only one pass runs at a time; :meth:`sync_issues` returns ``False``
    right away when another pass holds the guard, when the tracker is
    disabled or when the threads cannot be listed.
    """

    def __init__(
        self,
        transport: Transport,
        lifecycle: ThreadLifecycle,
        mappings: MappingStore,
        tracker: Tracker,
        *,
        room_id: str,
    ) -> None:
        self.transport = transport
        self.lifecycle = lifecycle
        self.mappings = mappings
        self.tracker = tracker
        self.room_id = room_id
        self._running = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running.locked()

    def sync_issues(self) -> bool:
        if not self.tracker.enabled:
            logger.debug("tracker is disabled, skipping sync")
            return False
        if not self._running.acquire(blocking=False):
            logger.debug("already syncing tickets")
            return False
        try:
            logger.debug("syncing tickets")
            try:
                thread_ids = list(self.lifecycle.thread_ids())
            except (TransportError, TrackerError):
                logger.exception("cannot list threads of %s", self.room_id)
                return False
            for thread_id in thread_ids:
                try:
                    self.sync_issue(thread_id)
                except (TransportError, TrackerError):
                    logger.exception("cannot sync thread %s", thread_id)
        finally:
            self._running.release()
        return True

    def sync_issue(self, thread_id: str) -> None:
        try:
            room_id = self.mappings.conversation_for_thread(thread_id)
            issue_id = self.mappings.ticket_for_thread(thread_id)
        except NotMappedError:
            return
        logger.debug("syncing thread %s of %s with issue %s", thread_id, room_id, issue_id)
        self.sync_notes(thread_id, room_id, issue_id)
        self.sync_status(thread_id, room_id, issue_id)

    def sync_status(self, thread_id: str, room_id: str, issue_id: int) -> None:
        try:
            closed = self.tracker.is_closed(issue_id)
        except TrackerError as exc:
            logger.error("cannot get status of issue %s: %s", issue_id, exc)
            return
        if closed:
            self.lifecycle.close_thread(thread_id, room_id, reason=TRACKER_CLOSED_TEXT)

    def sync_notes(self, thread_id: str, room_id: str, issue_id: int) -> None:
        try:
            notes = self.tracker.get_notes(issue_id)
        except TrackerError as exc:
            logger.error("cannot get notes of issue %s: %s", issue_id, exc)
            return
        for note in notes:
            try:
                marker = self.mappings.note_marker(thread_id, note.id)
            except TransportError as exc:
                logger.error("cannot read marker of note %s: %s", note.id, exc)
                continue
            if marker.get("synced"):
                continue
            logger.debug("syncing note %s of issue %s", note.id, issue_id)
            self.sync_note(thread_id, room_id, note, marker)

    def sync_note(
        self, thread_id: str, room_id: str, note: TrackerNote, marker: dict[str, str]
    ) -> None:
        """Post one note into the thread and, unless private, to the customer.

        The thread-side event id is recorded before the customer-side send so
        a retry never posts the note into the thread twice.
        """

        thread_event_id = marker.get("thread_event_id", "")
        if not thread_event_id:
            kind = "private note" if note.is_private else "note"
            content = markdown_content(f"_synced {kind} #{note.id}_\n\n{note.body}", msgtype=MSG_NOTICE)
            content.relates_to = relates_to_thread(thread_id)
            try:
                thread_event_id = self.transport.send_message(self.room_id, content)
            except TransportError as exc:
                logger.error("cannot post note %s into thread %s: %s", note.id, thread_id, exc)
                return
            marker = {"thread_event_id": thread_event_id}
            if not note.is_private:
                self.mappings.set_note_marker(thread_id, note.id, marker)

        if note.is_private:
            self.mappings.set_note_marker(
                thread_id, note.id, {"synced": NOTE_SYNCED, "thread_event_id": thread_event_id}
            )
            return

        content = clear_reply(markdown_content(note.body, msgtype=MSG_TEXT))
        content.extra = {SOURCE_EVENT_FIELD: thread_event_id}
        try:
            self.transport.send_message(room_id, content)
        except TransportError as exc:
            attempts = int(marker.get("attempts", "0") or 0) + 1
            logger.error(
                "cannot deliver note %s to %s (attempt %d/%d): %s",
                note.id,
                room_id,
                attempts,
                MAX_CUSTOMER_ATTEMPTS,
                exc,
            )
            send_notice(self.transport, self.room_id, str(exc), relates_to=relates_to_thread(thread_id))
            failed = {"thread_event_id": thread_event_id, "attempts": str(attempts)}
            if attempts >= MAX_CUSTOMER_ATTEMPTS:
                failed["synced"] = NOTE_FAILED
            self.mappings.set_note_marker(thread_id, note.id, failed)
            return

        self.mappings.set_note_marker(
            thread_id, note.id, {"synced": NOTE_SYNCED, "thread_event_id": thread_event_id}
        )
