"""Operator commands issued from the operator workspace."""

from __future__ import annotations

import logging

from .core.commands import CLOSE_COMMANDS, CommandParser
from .core.options import OPTIONS, OptionsManager, find_option
from .forwarding.pipeline import ForwardingPipeline
from .mappings.service import NotMappedError
from .threads.lifecycle import NotRelatedError, ThreadLifecycle
from .transport.base import Transport, TransportError, send_notice
from .transport.models import (
    MSG_NOTICE,
    SOURCE_EVENT_FIELD,
    Event,
    MessageContent,
    event_relates_to,
    relates_to_thread,
)

logger = logging.getLogger(__name__)

class CommandHandler:
    """Runs ``<prefix> command`` messages sent into the operator workspace."""

    def __init__(
        self,
        transport: Transport,
        lifecycle: ThreadLifecycle,
        pipeline: ForwardingPipeline,
        options: OptionsManager,
        parser: CommandParser,
        *,
        room_id: str,
    ) -> None:
        self.transport = transport
        self.lifecycle = lifecycle
        self.pipeline = pipeline
        self.options = options
        self.parser = parser
        self.room_id = room_id

    def run(self, words: list[str], evt: Event) -> None:
        command = words[0].lower() if words else ""
        logger.debug("received command %r in %s", command, evt.room_id)
        if command in CLOSE_COMMANDS:
            self.lifecycle.close_request(evt)
        elif command == "rename":
            self.rename(evt)
        elif command == "invite":
            self.invite(evt)
        elif command == "start":
            self.start(evt, words[1:])
        elif command == "count":
            self.count(evt, words[1:])
        elif command == "config":
            self.config(evt, words[1:])
        elif command == "note":
            return
        else:
            self.help(evt)

    def _notice(self, evt: Event, message: str) -> None:
        send_notice(self.transport, self.room_id, message, relates_to=event_relates_to(evt))

    def _thread_of(self, evt: Event, action: str) -> str | None:
        if evt.content.relates_to is None:
            self._notice(
                evt,
                f"the message doesn't relate to any thread, so I don't know how can I {action}.",
            )
            return None
        try:
            return self.lifecycle.find_thread(evt)
        except NotRelatedError as exc:
            self._notice(evt, str(exc))
            return None

    # ------------------------------------------------------------------
    # Thread commands

    def rename(self, evt: Event) -> None:
        thread_id = self._thread_of(evt, "rename your request")
        if thread_id is None:
            return
        words = self.parser.parse(evt.content.body) or []
        title = " ".join(words[1:])
        if not title:
            self._notice(evt, "cannot rename a request - the new topic is not specified")
            return
        formatted_words = self.parser.parse(evt.content.formatted_body) or []
        formatted_title = " ".join(formatted_words[1:])
        open_prefix = self.options.get("text.prefix.open")
        try:
            self.lifecycle.replace(
                thread_id,
                prefix=f"{open_prefix} " if open_prefix else "",
                body=title,
                formatted_body=formatted_title,
            )
        except TransportError as exc:
            self._notice(evt, str(exc))

    def invite(self, evt: Event) -> None:
        thread_id = self._thread_of(evt, "invite you")
        if thread_id is None:
            return
        try:
            room_id = self.lifecycle.find_room_id(thread_id)
            self.transport.invite_user(room_id, evt.sender, "you've asked for that")
        except (NotMappedError, TransportError) as exc:
            self._notice(evt, str(exc))

    # ------------------------------------------------------------------
    # Requests without a customer message

    def start(self, evt: Event, args: list[str]) -> None:
        if not args:
            self._notice(evt, "cannot start a new conversation - the user is not specified")
            return
        user_id = args[0]
        try:
            room_id = self.transport.create_room(user_id)
            self.lifecycle.start_thread(room_id, user_id, greet=False)
        except TransportError as exc:
            logger.error("cannot start a conversation with %s: %s", user_id, exc)
            self._notice(evt, str(exc))
            return
        opening = Event(
            event_id=evt.event_id,
            room_id=room_id,
            sender=evt.sender,
            content=MessageContent(body=self.options.get("text.start"), msgtype=MSG_NOTICE),
        )
        self.pipeline.forward_to_thread(opening)

    def count(self, evt: Event, args: list[str]) -> None:
        if not args:
            self._notice(evt, "cannot count a request - the user is not specified")
            return
        try:
            thread_id, _, _ = self.lifecycle.new_thread(self.options.get("text.prefix.done"), args[0])
        except TransportError as exc:
            logger.error("cannot count a request of %s: %s", args[0], exc)
            return
        send_notice(
            self.transport,
            self.room_id,
            self.options.get("text.count"),
            {SOURCE_EVENT_FIELD: evt.event_id},
            relates_to_thread(thread_id),
        )

    # ------------------------------------------------------------------
    # Runtime options

    def config(self, evt: Event, args: list[str]) -> None:
        if not args:
            lines = ["The following config options are available:"]
            for option in OPTIONS:
                lines.append(
                    f"* `{self.parser.prefix} config {option.key} VALUE` - {option.description}"
                )
            self._notice(evt, "\n".join(lines))
            return

        key = args[0].lower()
        option = find_option(key)
        if option is None:
            self._notice(evt, "no such option")
            return

        if len(args) == 1:
            self._notice(
                evt,
                f"{key} - {option.description}\n"
                f"Current value: `{self.options.get(key)}`\n"
                "You can change that option using the following command:\n"
                f"`{self.parser.prefix} config {key} NEW VALUE`",
            )
            return

        try:
            value = self.options.update(key, " ".join(args[1:]))
        except TransportError as exc:
            self._notice(evt, f"cannot save {key}: {exc}")
            return
        self._notice(evt, f"{key} has been updated, new value: `{value}`")

    def help(self, evt: Event, preamble: str = "") -> None:
        self._notice(evt, self.parser.help_text(preamble))
