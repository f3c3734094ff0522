"""Opening and closing of support threads."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator

from cachetools import LRUCache

from .. import metrics
from ..core.commands import CommandParser
from ..core.locks import KeyedLock
from ..core.options import OptionsManager
from ..identity import IdentityResolver
from ..mappings.service import MappingStore, NotMappedError
from ..tracker.base import IssueStatus, Tracker, TrackerError
from ..transport.base import EventNotFoundError, Transport, TransportError, send_notice
from ..transport.formatting import render_markdown
from ..transport.models import (
    EVENT_MESSAGE,
    MSG_TEXT,
    REL_REPLACE,
    REL_THREAD,
    Event,
    MessageContent,
    event_contains,
    event_relates_to,
    get_parent,
    now_ms,
    origin_of,
    relates_to_thread,
)

logger = logging.getLogger(__name__)

CUSTOMER_FIELD = "customer"
ORIGIN_FIELD = "origin"

DAY_MS = 24 * 60 * 60 * 1000


class NotRelatedError(RuntimeError):
    """Raised when a message is not part of any thread."""


def ordinal(number: int) -> str:
    """``1 -> "1st"``, ``2 -> "2nd"``, ``11 -> "11th"``, ``23 -> "23rd"``."""

    if 10 <= number % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")
    return f"{number}{suffix}"


def fill(template: str, *args: str) -> str:
    """Substitute ``%s`` placeholders, tolerating templates without them."""

    try:
        return template % args
    except (TypeError, ValueError):
        return template


class ThreadLifecycle:
    """Creates threads for first contacts and closes them.

    Thread creation is serialized per conversation (``start_thread_<room>``)
    and ticket creation per origin (``tracker_<origin>``); ticket updates and
    closing share ``issue_<thread>``.
    """

    def __init__(
        self,
        transport: Transport,
        mappings: MappingStore,
        options: OptionsManager,
        identity: IdentityResolver,
        tracker: Tracker,
        locks: KeyedLock,
        *,
        room_id: str,
        parser: CommandParser,
        tracker_medium: str = "chat",
        retention_days: int = 7,
        cache_size: int = 1000,
    ) -> None:
        self.transport = transport
        self.mappings = mappings
        self.options = options
        self.identity = identity
        self.tracker = tracker
        self.locks = locks
        self.room_id = room_id
        self.parser = parser
        self.tracker_medium = tracker_medium
        self.retention_days = retention_days
        self._events: LRUCache[str, str] = LRUCache(maxsize=max(cache_size, 1))
        self._events_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lookups

    def find_thread(self, evt: Event) -> str:
        """Return the thread ``evt`` belongs to; raises :class:`NotRelatedError`."""

        thread_id = get_parent(evt)
        with self._events_lock:
            cached = self._events.get(thread_id)
        if cached:
            return cached
        if thread_id == evt.event_id:
            raise NotRelatedError("cannot find appropriate thread")
        with self._events_lock:
            self._events[evt.event_id] = thread_id
        return thread_id

    def find_room_id(self, thread_id: str) -> str:
        return self.mappings.conversation_for_thread(thread_id)

    def find_thread_id(self, room_id: str) -> str:
        """Return the live thread of ``room_id``.

        A mapping whose root event is gone is removed in both directions and
        reported as :class:`NotMappedError`.
        """

        thread_id = self.mappings.thread_for_conversation(room_id)
        try:
            self.transport.get_event(self.room_id, thread_id)
        except EventNotFoundError:
            logger.warning("thread %s of %s is gone, removing mapping", thread_id, room_id)
            self.mappings.unlink_conversation(room_id, thread_id)
            raise NotMappedError(f"thread of {room_id} no longer exists") from None
        return thread_id

    def thread_ids(self) -> Iterator[str]:
        token: str | None = None
        while True:
            page = self.transport.threads(self.room_id, token)
            for evt in page.chunk:
                yield evt.event_id
            if not page.next_batch:
                return
            token = page.next_batch

    def count_requests(self, user_id: str) -> tuple[int, int]:
        """Return how many threads were opened by ``user_id`` and by its origin."""

        origin = origin_of(user_id)
        try:
            user_count, origin_count = self.mappings.count_references(
                lambda token: self.transport.threads(self.room_id, token),
                lambda evt: event_contains(evt, CUSTOMER_FIELD, user_id),
                lambda evt: event_contains(evt, ORIGIN_FIELD, origin),
            )
        except TransportError as exc:
            logger.error("cannot count requests of %s: %s", user_id, exc)
            return 0, 0
        return user_count, origin_count

    # ------------------------------------------------------------------
    # Opening

    def greetings(self, user_id: str, room_id: str, origin_requests: int) -> None:
        if origin_of(user_id) == origin_of(self.transport.user_id):
            send_notice(self.transport, room_id, self.options.get("text.greetings"))
            return
        text = fill(self.options.get("text.greetings.customer"), ordinal(origin_requests + 1))
        send_notice(self.transport, room_id, text)

    def start_thread(self, room_id: str, user_id: str, greet: bool = True) -> str:
        """Return the thread of ``room_id``, opening one on first contact."""

        with self.locks.hold("start_thread_" + room_id):
            try:
                return self.find_thread_id(room_id)
            except NotMappedError:
                pass

            thread_id, issue_id, origin_requests = self.new_thread(
                self.options.get("text.prefix.open"), user_id
            )
            self.mappings.link_conversation(room_id, thread_id)
            if issue_id:
                self.mappings.link_ticket(room_id, thread_id, issue_id)
            metrics.request_new()
            logger.info("thread %s opened for %s", thread_id, room_id)

            if greet and not self.options.get_bool("silent"):
                self.greetings(user_id, room_id, origin_requests)
            return thread_id

    def new_thread(self, prefix: str, user_id: str) -> tuple[str, int, int]:
        """Post an announcement for ``user_id`` and create its ticket.

        Returns ``(thread_id, issue_id, origin_requests)``; ``issue_id`` is 0
        when no ticket could be created.
        """

        user_requests, origin_requests = self.count_requests(user_id)
        origin = origin_of(user_id)
        name, _ = self.identity.resolve_name(user_id)
        summary = (
            f"{ordinal(origin_requests + 1)} request from {origin} "
            f"({ordinal(user_requests + 1)} by {name})"
        )
        extra = {CUSTOMER_FIELD: user_id, ORIGIN_FIELD: origin}
        thread_id = send_notice(self.transport, self.room_id, f"{prefix} {summary}", extra)
        if not thread_id:
            send_notice(
                self.transport,
                self.room_id,
                f"user {user_id} tried to send a message, but thread creation failed",
            )
            raise TransportError(f"cannot create a thread for {user_id}")

        issue_id = 0
        if self.tracker.enabled:
            with self.locks.hold("tracker_" + origin):
                link = self.transport.event_link(self.room_id, thread_id)
                try:
                    issue_id = self.tracker.new_issue(
                        thread_id,
                        summary,
                        self.tracker_medium,
                        user_id,
                        f"Thread: [{link}]({link})",
                    )
                except TrackerError:
                    logger.exception("cannot create a ticket for thread %s", thread_id)
        return thread_id, issue_id, origin_requests

    # ------------------------------------------------------------------
    # Editing

    def last_edit(self, room_id: str, event_id: str) -> Event | None:
        """Return the latest replacement of ``event_id``, decrypted when needed."""

        try:
            edits = self.transport.relations(room_id, event_id, REL_REPLACE)
        except TransportError as exc:
            logger.error("cannot get edits of %s: %s", event_id, exc)
            return None
        if not edits.chunk:
            return None
        evt = edits.chunk[-1]
        if not evt.encrypted:
            return evt
        try:
            return self.transport.decrypt_event(evt)
        except TransportError as exc:
            logger.error("cannot decrypt last edit %s: %s", evt.event_id, exc)
            return None

    def clear_prefix(self, content: MessageContent) -> None:
        for prefix in (self.options.get("text.prefix.open"), self.options.get("text.prefix.done")):
            if not prefix:
                continue
            content.body = content.body.replace(prefix, "", 1)
            content.formatted_body = content.formatted_body.replace(prefix, "", 1)
        content.body = content.body.strip()
        content.formatted_body = content.formatted_body.strip()

    def replace(
        self,
        event_id: str,
        prefix: str = "",
        suffix: str = "",
        body: str = "",
        formatted_body: str = "",
    ) -> str:
        """Edit ``event_id`` in the operator workspace.

        Existing open/done prefixes are stripped before ``prefix`` and
        ``suffix`` are applied.
        """

        try:
            evt = self.transport.get_event(self.room_id, event_id)
        except TransportError:
            logger.error("cannot find event %s to replace", event_id)
            send_notice(self.transport, self.room_id, "cannot find event to replace")
            raise

        edit = self.last_edit(self.room_id, event_id)
        if edit is not None:
            source = edit.content.new_content or edit.content
        else:
            source = evt.content
        content = MessageContent(
            body=source.body,
            msgtype=source.msgtype,
            formatted_body=source.formatted_body or render_markdown(source.body),
            format=source.format,
        )
        self.clear_prefix(content)
        if body and not formatted_body:
            formatted_body = render_markdown(body)
        content.body = prefix + (body or content.body) + suffix
        content.formatted_body = prefix + (formatted_body or content.formatted_body) + suffix
        content.set_edit(event_id)
        return self.transport.send_message(self.room_id, content)

    # ------------------------------------------------------------------
    # Closing

    def close_request(self, evt: Event, auto: bool = False) -> bool:
        """Close the thread ``evt`` relates to; reports problems into its room."""

        reply = event_relates_to(evt)
        if evt.content.relates_to is None:
            send_notice(
                self.transport,
                evt.room_id,
                "the message doesn't relate to any thread, so I don't know how can I close your request.",
                relates_to=reply,
            )
            return False
        try:
            thread_id = self.find_thread(evt)
            self.transport.get_event(self.room_id, thread_id)
            room_id = self.find_room_id(thread_id)
        except (NotRelatedError, NotMappedError, TransportError) as exc:
            send_notice(self.transport, evt.room_id, str(exc), relates_to=reply)
            return False

        return self.close_thread(thread_id, room_id, auto=auto, in_reply_to=evt.event_id)

    def close_thread(
        self,
        thread_id: str,
        room_id: str,
        *,
        auto: bool = False,
        reason: str | None = None,
        in_reply_to: str | None = None,
    ) -> bool:
        """Close a thread: notify both sides, close its ticket and drop its mappings.

        Serialized with forwarding on ``room_<room>``. Returns ``False`` when
        the thread was already closed by someone else.
        """

        with self.locks.hold("room_" + room_id):
            try:
                self.mappings.conversation_for_thread(thread_id)
            except NotMappedError:
                logger.info("thread %s of %s is already closed", thread_id, room_id)
                return False
            self._close_thread(thread_id, room_id, auto, reason, in_reply_to)
        return True

    def _close_thread(
        self,
        thread_id: str,
        room_id: str,
        auto: bool,
        reason: str | None,
        in_reply_to: str | None,
    ) -> None:
        text = self.options.get("text.done.auto" if auto else "text.done")
        if not self.options.get_bool("silent"):
            send_notice(self.transport, room_id, text)
        send_notice(
            self.transport,
            self.room_id,
            reason or text,
            relates_to=relates_to_thread(thread_id, in_reply_to=in_reply_to),
        )
        self.close_issue(room_id, thread_id, text)

        done_prefix = self.options.get("text.prefix.done")
        try:
            self.replace(thread_id, prefix=f"{done_prefix} " if done_prefix else "")
        except TransportError as exc:
            send_notice(self.transport, self.room_id, str(exc), relates_to=relates_to_thread(thread_id))

        try:
            self.transport.leave_room(room_id)
        except TransportError as exc:
            # already left
            if exc.code != "M_FORBIDDEN":
                send_notice(
                    self.transport, self.room_id, str(exc), relates_to=relates_to_thread(thread_id)
                )

        self.mappings.unlink_conversation(room_id, thread_id)
        metrics.request_done()
        logger.info("thread %s of %s closed", thread_id, room_id)

    def close_issue(self, room_id: str, thread_id: str, text: str) -> None:
        """Finish the ticket of ``thread_id`` and remove its mappings."""

        with self.locks.hold("issue_" + thread_id):
            try:
                issue_id = self.mappings.ticket_for_thread(thread_id)
            except NotMappedError:
                return
            try:
                issue = self.tracker.get_issue(issue_id, include_attachments=True)
                for attachment in issue.attachments if issue else []:
                    try:
                        self.tracker.delete_attachment(attachment.id)
                    except TrackerError as exc:
                        logger.warning(
                            "cannot delete attachment %s of issue %s: %s",
                            attachment.id,
                            issue_id,
                            exc,
                        )
                self.tracker.update_issue(issue_id, IssueStatus.DONE, text)
            except TrackerError as exc:
                logger.warning("cannot close issue %s: %s", issue_id, exc)
            self.mappings.unlink_ticket(room_id, thread_id, issue_id)

    # ------------------------------------------------------------------
    # Age-based sweep

    def last_thread_message(self, thread_id: str) -> Event | None:
        """Return the newest operator/customer text message of a thread.

        ``None`` when the thread has no such message, was closed with a
        command, or only exists to count a request.
        """

        count_text = self.options.get("text.count").strip()
        last: Event | None = None
        token: str | None = None
        while True:
            page = self.transport.relations(self.room_id, thread_id, REL_THREAD, token)
            for evt in page.chunk:
                if evt.type != EVENT_MESSAGE or evt.content.msgtype != MSG_TEXT:
                    continue
                body = evt.content.body.strip()
                if self.parser.is_close(body) or body == count_text:
                    return None
                if last is None or evt.timestamp > last.timestamp:
                    last = evt
            if not page.next_batch:
                return last
            token = page.next_batch

    def auto_close_requests(self) -> int:
        """Close threads whose last message predates the retention window."""

        max_ts = now_ms() - self.retention_days * DAY_MS
        closed = 0
        for thread_id in list(self.thread_ids()):
            try:
                # not an actual support thread
                room_id = self.find_room_id(thread_id)
            except NotMappedError:
                continue
            except TransportError:
                logger.exception("cannot resolve conversation of thread %s", thread_id)
                continue
            try:
                last = self.last_thread_message(thread_id)
                if last is None:
                    logger.info("no last message found in thread %s", thread_id)
                    continue
                if last.timestamp >= max_ts:
                    continue
                if self.close_thread(thread_id, room_id, auto=True, in_reply_to=last.event_id):
                    closed += 1
            except TransportError:
                logger.exception("cannot auto-close thread %s", thread_id)
        return closed
