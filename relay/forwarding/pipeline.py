"""Message and reaction relay between conversations and threads."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from .. import metrics
from ..core.locks import KeyedLock
from ..core.options import OptionsManager
from ..identity import IdentityResolver
from ..mappings.service import MappingStore, NotMappedError
from ..threads.lifecycle import NotRelatedError, ThreadLifecycle
from ..tracker.base import IssueStatus, Tracker, TrackerError, UploadRequest
from ..transport.base import Transport, TransportError, send_notice
from ..transport.models import (
    PROFILE_FIELD,
    SOURCE_EVENT_FIELD,
    Event,
    MessageContent,
    event_relates_to,
    get_parent,
    relates_to_thread,
)
from .content import clear_reply, content_body, file_name_and_url, prefix_sender

logger = logging.getLogger(__name__)


class ForwardingPipeline:
    """Forwards messages and reactions in both directions.

    Ticket updates for forwarded messages run on a small background pool;
    :meth:`drain` waits for the ones already submitted.
    """

    def __init__(
        self,
        transport: Transport,
        lifecycle: ThreadLifecycle,
        mappings: MappingStore,
        options: OptionsManager,
        identity: IdentityResolver,
        tracker: Tracker,
        locks: KeyedLock,
        *,
        room_id: str,
        max_workers: int = 2,
    ) -> None:
        self.transport = transport
        self.lifecycle = lifecycle
        self.mappings = mappings
        self.options = options
        self.identity = identity
        self.tracker = tracker
        self.locks = locks
        self.room_id = room_id
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="relay-bg")
        self._pending: set[Future] = set()
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Background work

    def _background(self, fn: Callable[..., Any], *args: Any) -> Future:
        future = self.executor.submit(fn, *args)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._finished)
        return future

    def _finished(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.error("background task failed", exc_info=exc)

    def drain(self, timeout: float | None = None) -> None:
        with self._pending_lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Conversation -> thread

    def _error_notice(self, room_id: str) -> None:
        if not self.options.get_bool("silent"):
            send_notice(self.transport, room_id, self.options.get("text.error"))

    def forward_to_thread(self, evt: Event) -> str | None:
        """Forward a customer message into its thread, opening one if needed."""

        with self.locks.hold("room_" + evt.room_id):
            try:
                thread_id = self.lifecycle.start_thread(evt.room_id, evt.sender, greet=True)
            except TransportError:
                logger.exception(
                    "cannot start a thread for %s in %s", evt.sender, evt.room_id
                )
                self._error_notice(evt.room_id)
                return None

            self._background(self.update_issue, False, evt.sender, thread_id, evt.content.copy())

            plain, rich = self.identity.resolve_name(evt.sender)
            content = prefix_sender(evt.content.copy(), plain, rich)
            content.relates_to = relates_to_thread(thread_id)
            content.new_content = None
            content.extra = {SOURCE_EVENT_FIELD: evt.event_id}
            profile = self.identity.resolve_profile(evt.sender)
            if profile is not None:
                content.extra[PROFILE_FIELD] = profile.as_dict()

            try:
                event_id = self.transport.send_message(self.room_id, content)
            except TransportError:
                logger.exception(
                    "cannot forward %s from %s into thread %s",
                    evt.event_id,
                    evt.room_id,
                    thread_id,
                )
                self._error_notice(evt.room_id)
                return None
            metrics.message_customer(evt.sender)
            return event_id

    # ------------------------------------------------------------------
    # Thread -> conversation

    def forward_to_customer(self, evt: Event) -> str | None:
        """Forward an operator message from a thread to the mapped conversation."""

        reply = event_relates_to(evt)
        if evt.content.relates_to is None:
            if self.options.get_bool("ignore.nothread"):
                return None
            send_notice(
                self.transport,
                evt.room_id,
                "the message doesn't relate to any thread, so I don't know where to forward it.",
                relates_to=reply,
            )
            return None

        try:
            thread_id = self.lifecycle.find_thread(evt)
        except NotRelatedError as exc:
            send_notice(self.transport, evt.room_id, str(exc), relates_to=reply)
            return None
        try:
            room_id = self.lifecycle.find_room_id(thread_id)
        except NotMappedError as exc:
            # not a support thread, operators probably meant a command
            text = self.lifecycle.parser.help_text(str(exc))
            send_notice(self.transport, evt.room_id, text, relates_to=reply)
            return None
        except TransportError as exc:
            send_notice(self.transport, evt.room_id, str(exc), relates_to=reply)
            return None

        content = clear_reply(evt.content.copy())
        content.relates_to = None
        content.extra = {SOURCE_EVENT_FIELD: evt.event_id}
        self._background(self.update_issue, True, evt.sender, thread_id, content.copy())

        try:
            event_id = self.transport.send_message(room_id, content)
        except TransportError as exc:
            logger.error("cannot forward %s into %s: %s", evt.event_id, room_id, exc)
            send_notice(self.transport, evt.room_id, str(exc), relates_to=reply)
            return None
        metrics.message_operator()
        return event_id

    # ------------------------------------------------------------------
    # Reactions

    def forward_reaction(self, evt: Event) -> str | None:
        """Replay a reaction onto the counterpart event; failures are only logged."""

        relation = evt.content.relates_to
        if relation is None or not relation.event_id or not relation.key:
            logger.debug("reaction %s has no target", evt.event_id)
            return None

        with self.locks.hold("room_" + evt.room_id):
            try:
                if evt.room_id == self.room_id:
                    return self._reaction_to_customer(evt, relation.event_id, relation.key)
                return self._reaction_to_thread(evt, relation.event_id, relation.key)
            except (NotMappedError, TransportError) as exc:
                logger.error(
                    "cannot forward reaction %s on %s: %s", evt.event_id, relation.event_id, exc
                )
                return None

    def _source_event(self, room_id: str, event_id: str) -> Event:
        source = self.transport.get_event(room_id, event_id)
        if source.encrypted:
            try:
                source = self.transport.decrypt_event(source)
            except TransportError as exc:
                logger.warning("cannot decrypt %s: %s", event_id, exc)
        return source

    def _reaction_to_customer(self, evt: Event, source_id: str, key: str) -> str | None:
        source = self._source_event(evt.room_id, source_id)
        room_id = self.lifecycle.find_room_id(get_parent(source))
        target_id = source.content.extra.get(SOURCE_EVENT_FIELD)
        if not target_id:
            # operator messages carry no metadata; look for their forwarded copy
            target = self.transport.find_event_by(room_id, {SOURCE_EVENT_FIELD: source_id})
            if target is None:
                logger.error("counterpart of %s found in neither room", source_id)
                return None
            target_id = target.event_id
        return self.transport.send_reaction(room_id, target_id, key)

    def _reaction_to_thread(self, evt: Event, source_id: str, key: str) -> str | None:
        source = self._source_event(evt.room_id, source_id)
        target_id = source.content.extra.get(SOURCE_EVENT_FIELD)
        if not target_id:
            target = self.transport.find_event_by(self.room_id, {SOURCE_EVENT_FIELD: source_id})
            if target is None:
                logger.error("counterpart of %s not found in the operator room", source_id)
                return None
            target_id = target.event_id
        return self.transport.send_reaction(self.room_id, target_id, key)

    # ------------------------------------------------------------------
    # Ticket mirroring

    def _upload_request(self, content: MessageContent) -> UploadRequest | None:
        file_name, url = file_name_and_url(content)
        if not url:
            return None
        try:
            data = self.transport.download(url)
        except TransportError as exc:
            logger.warning("cannot download %s: %s", url, exc)
            return None
        return UploadRequest(file_name=file_name, data=data)

    def update_issue(
        self, by_operator: bool, sender: str, thread_id: str, content: MessageContent
    ) -> None:
        """Append a forwarded message to the thread's ticket."""

        if not self.tracker.enabled:
            return
        with self.locks.hold("issue_" + thread_id):
            try:
                issue_id = self.mappings.ticket_for_thread(thread_id)
            except NotMappedError:
                return
            except TransportError as exc:
                logger.error("cannot resolve ticket of thread %s: %s", thread_id, exc)
                return

            body, _ = content_body(content)
            if by_operator:
                status = IssueStatus.WAITING_FOR_CUSTOMER
                text = f"_{sender} (operator)_\n\n{body}"
            else:
                status = IssueStatus.WAITING_FOR_OPERATOR
                text = f"_{sender} (customer)_\n\n{body}"
            try:
                self.tracker.update_issue(issue_id, status, text, self._upload_request(content))
            except TrackerError:
                logger.exception("cannot update issue %s", issue_id)
