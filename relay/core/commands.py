"""Recognition of operator commands addressed to the relay."""

from __future__ import annotations

from ..transport.models import localpart

CLOSE_COMMANDS = frozenset({"done", "complete", "close"})

HELP_TEXT = """The relay can perform the following actions (all of them should be sent in a thread):

`{prefix} done` - close the current request. The customer is notified, the relay leaves the customer's conversation and the thread topic is prefixed with the done prefix

`{prefix} rename TEXT` - replace the thread topic with TEXT

`{prefix} note NOTE` - a message starting with `{prefix} note` is not forwarded anywhere, it's a safe place to keep notes for other operators

`{prefix} invite` - invite yourself into the customer's conversation

`{prefix} start USER` - start a conversation with USER (like a new thread, but initiated by an operator)

`{prefix} count USER` - count a request from USER and their origin without opening a conversation

`{prefix} config` - list all config options with descriptions

`{prefix} config KEY` - get the value and description of KEY

`{prefix} config KEY VALUE` - set KEY to VALUE
"""


class CommandParser:
    """Splits ``<prefix> command args...`` messages.

    Accepted prefixes are the configured one (``!relay``) and the relay's own
    address in its usual mention forms (``@relay:example.org:``,
    ``@relay:example.org`` and ``@relay:``). The longest matching prefix wins.
    """

    def __init__(self, prefix: str, user_id: str) -> None:
        candidates = {prefix, f"{user_id}:", user_id, f"{localpart(user_id)}:"}
        self.prefix = prefix
        self.prefixes = sorted((p for p in candidates if p), key=len, reverse=True)

    def parse(self, message: str) -> list[str] | None:
        """Return the command words, or ``None`` when ``message`` is not a command."""

        message = message.strip()
        if not message:
            return None
        for prefix in self.prefixes:
            if not message.startswith(prefix):
                continue
            rest = message[len(prefix):]
            if rest and not rest[0].isspace() and not prefix.endswith(":"):
                continue
            return rest.split()
        return None

    def read(self, message: str) -> str:
        words = self.parse(message)
        return words[0].lower() if words else ""

    def is_close(self, message: str) -> bool:
        return self.read(message) in CLOSE_COMMANDS

    def help_text(self, preamble: str = "") -> str:
        text = HELP_TEXT.format(prefix=self.prefix)
        if preamble:
            text = f"{preamble}\n\n{text}"
        return text
