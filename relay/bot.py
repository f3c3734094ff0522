"""The relay: wires components together and dispatches inbound events."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

from .commands import CommandHandler
from .core.commands import CommandParser
from .core.config import RelaySettings
from .core.locks import KeyedLock
from .core.options import OptionsManager, match_patterns
from .forwarding.pipeline import ForwardingPipeline
from .identity import IdentityResolver
from .mappings.service import MappingStore, NotMappedError
from .mappings.store import AccountDataStore, PostgresAccountDataStore
from .synchronizer import TicketSynchronizer
from .threads.lifecycle import ThreadLifecycle, fill
from .tracker import Tracker, build_tracker
from .transport import Transport, TransportError, load_transport, send_notice
from .transport.formatting import markdown_content
from .transport.models import (
    EVENT_ENCRYPTED,
    EVENT_MEMBER,
    EVENT_MESSAGE,
    EVENT_REACTION,
    MEMBERSHIP_BAN,
    MEMBERSHIP_INVITE,
    MEMBERSHIP_JOIN,
    MEMBERSHIP_LEAVE,
    MSG_NOTICE,
    Event,
    relates_to_thread,
)

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_USERS = "@*:*"


class Relay:
    """Support-desk relay bound to one operator workspace."""

    def __init__(
        self,
        transport: Transport,
        settings: RelaySettings,
        *,
        store: AccountDataStore | None = None,
        tracker: Tracker | None = None,
    ) -> None:
        self.transport = transport
        self.settings = settings
        self.room_id = settings.room_id
        self.store = store if store is not None else transport
        self.tracker = tracker if tracker is not None else build_tracker(settings.redmine)
        self.locks = KeyedLock()
        self.options = OptionsManager(self.store)
        self.mappings = MappingStore(self.store, settings.cache_size)
        self.identity = IdentityResolver(transport, settings.cache_size)
        self.parser = CommandParser(settings.command_prefix, transport.user_id)
        self.lifecycle = ThreadLifecycle(
            transport,
            self.mappings,
            self.options,
            self.identity,
            self.tracker,
            self.locks,
            room_id=self.room_id,
            parser=self.parser,
            tracker_medium=settings.tracker_medium,
            retention_days=settings.retention_days,
            cache_size=settings.cache_size,
        )
        self.pipeline = ForwardingPipeline(
            transport,
            self.lifecycle,
            self.mappings,
            self.options,
            self.identity,
            self.tracker,
            self.locks,
            room_id=self.room_id,
        )
        self.commands = CommandHandler(
            transport,
            self.lifecycle,
            self.pipeline,
            self.options,
            self.parser,
            room_id=self.room_id,
        )
        self.synchronizer = TicketSynchronizer(
            transport,
            self.lifecycle,
            self.mappings,
            self.tracker,
            room_id=self.room_id,
        )
        self.executor = ThreadPoolExecutor(
            max_workers=max(settings.workers, 1), thread_name_prefix="relay"
        )

    # ------------------------------------------------------------------
    # Dispatch

    def dispatch(self, evt: Event) -> Future:
        """Handle ``evt`` on the worker pool."""

        return self.executor.submit(self.handle, evt)

    def handle(self, evt: Event) -> None:
        try:
            if evt.type == EVENT_MEMBER:
                self.on_membership(evt)
            elif evt.type == EVENT_REACTION:
                self.on_reaction(evt)
            elif evt.type == EVENT_ENCRYPTED:
                self.on_encrypted_message(evt)
            elif evt.type == EVENT_MESSAGE:
                self.on_message(evt)
            else:
                logger.debug("ignoring %s event %s", evt.type, evt.event_id)
        except Exception:
            logger.exception("cannot handle %s event %s in %s", evt.type, evt.event_id, evt.room_id)
            if evt.room_id != self.room_id and not self.options.get_bool("silent"):
                send_notice(self.transport, evt.room_id, self.options.get("text.error"))

    def is_ignored(self, evt: Event) -> bool:
        if evt.sender == self.transport.user_id:
            return True
        return evt.room_id in self.options.get_list("ignore.rooms")

    def join_permit(self, evt: Event) -> bool:
        """Whether an invitation from ``evt.sender`` should be accepted."""

        patterns = self.options.get_list("allow.users") or [DEFAULT_ALLOWED_USERS]
        if not match_patterns(evt.sender, patterns):
            logger.debug("rejecting invitation from %s", evt.sender)
            return False
        return True

    # ------------------------------------------------------------------
    # Handlers

    def on_message(self, evt: Event) -> None:
        if self.is_ignored(evt):
            return
        try:
            self.transport.mark_read(evt.room_id, evt.event_id)
        except TransportError as exc:
            logger.warning("cannot mark %s as read: %s", evt.event_id, exc)

        if evt.content.msgtype == MSG_NOTICE:
            return

        if evt.room_id != self.room_id:
            self.pipeline.forward_to_thread(evt)
            return

        words = self.parser.parse(evt.content.body)
        if words is not None:
            self.commands.run(words, evt)
            return
        self.pipeline.forward_to_customer(evt)

    def on_reaction(self, evt: Event) -> None:
        if self.is_ignored(evt):
            return
        self.pipeline.forward_reaction(evt)

    def on_encrypted_message(self, evt: Event) -> None:
        """Greet customers who write encrypted messages before any thread exists."""

        if self.is_ignored(evt) or evt.room_id == self.room_id:
            return
        try:
            self.mappings.thread_for_conversation(evt.room_id)
            return
        except NotMappedError:
            pass
        if self.options.get_bool("silent"):
            return
        content = markdown_content(self.options.get("text.greetings.before_encryption"))
        try:
            self.transport.send_message(evt.room_id, content)
        except TransportError as exc:
            logger.error("cannot send the encryption notice into %s: %s", evt.room_id, exc)

    def on_membership(self, evt: Event) -> None:
        if evt.membership == MEMBERSHIP_INVITE and evt.state_key == self.transport.user_id:
            if self.join_permit(evt):
                self.transport.join_room(evt.room_id)
            return
        if self.is_ignored(evt) or evt.room_id == self.room_id:
            return
        try:
            thread_id = self.lifecycle.find_thread_id(evt.room_id)
        except NotMappedError:
            return

        relates_to = relates_to_thread(thread_id)
        sender_name, _ = self.identity.resolve_name(evt.sender)
        target_name, _ = self.identity.resolve_name(evt.state_key or evt.sender)
        if evt.membership == MEMBERSHIP_JOIN:
            text = fill(self.options.get("text.join"), sender_name)
            send_notice(self.transport, self.room_id, text, relates_to=relates_to)
        elif evt.membership == MEMBERSHIP_INVITE:
            text = fill(self.options.get("text.invite"), sender_name, target_name)
            send_notice(self.transport, self.room_id, text, relates_to=relates_to)
        elif evt.membership in (MEMBERSHIP_LEAVE, MEMBERSHIP_BAN):
            text = fill(self.options.get("text.leave"), target_name)
            send_notice(self.transport, self.room_id, text, relates_to=relates_to)
            self._close_if_empty(evt.room_id, thread_id)

    def _close_if_empty(self, room_id: str, thread_id: str) -> None:
        members = self.transport.joined_or_invited_members(room_id)
        if members != [self.transport.user_id]:
            return
        logger.info("last customer left %s, closing thread %s", room_id, thread_id)
        self.lifecycle.close_thread(thread_id, room_id, reason=self.options.get("text.emptyroom"))

    # ------------------------------------------------------------------
    # Periodic jobs

    def sync_issues(self) -> bool:
        return self.synchronizer.sync_issues()

    def sync_in_background(self) -> Future:
        """Run :meth:`sync_issues` on the worker pool; failures are logged."""

        future = self.executor.submit(self.sync_issues)
        future.add_done_callback(self._sync_finished)
        return future

    @staticmethod
    def _sync_finished(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("ticket sync failed", exc_info=exc)

    def auto_close_requests(self) -> int:
        return self.lifecycle.auto_close_requests()

    def drain(self, timeout: float | None = None) -> None:
        """Wait for background ticket updates already submitted."""

        self.pipeline.drain(timeout)

    def shutdown(self) -> None:
        self.executor.shutdown(wait=True)
        self.pipeline.shutdown()


def build_relay(settings: RelaySettings) -> Relay:
    """Build a relay from settings: transport, persistence and tracker."""

    transport = load_transport(settings.transport)
    store: AccountDataStore = transport
    if settings.database_url:
        postgres = PostgresAccountDataStore(settings.database_url)
        postgres.ensure_schema()
        store = postgres
    logger.info(
        "relay for %s uses %s persistence, tracker %s",
        settings.room_id,
        "postgres" if settings.database_url else "transport",
        "enabled" if settings.redmine.enabled else "disabled",
    )
    return Relay(transport, settings, store=store, tracker=build_tracker(settings.redmine))
