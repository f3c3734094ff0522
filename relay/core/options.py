"""Runtime options persisted in account data and editable by operators."""

from __future__ import annotations

import dataclasses
import fnmatch
import logging
import threading
from collections.abc import Callable, Iterable

from ..mappings.store import AccountDataStore
from ..transport.base import TransportError

logger = logging.getLogger(__name__)

CONFIG_KEY = "relay.config"

_TRUTHY = {"yes", "true", "1", "y", "on"}


def _strip(value: str) -> str:
    return value.strip()


def _csv(value: str) -> str:
    parts = [part.strip() for part in value.split(",")]
    return ",".join(part for part in parts if part)


def _bool(value: str) -> str:
    return "true" if value.strip().lower() in _TRUTHY else "false"


def _patterns(value: str) -> str:
    cleaned = _csv(value)
    for pattern in cleaned.split(","):
        if pattern and not pattern.startswith("@"):
            return ""
    return cleaned


@dataclasses.dataclass(frozen=True)
class Option:
    key: str
    description: str
    default: str = ""
    sanitizer: Callable[[str], str] = _strip


OPTIONS: tuple[Option, ...] = (
    Option(
        "allow.users",
        "comma-separated list of wildcard rules to allow requests only from specific users",
        "@*:*",
        _patterns,
    ),
    Option("ignore.rooms", "comma-separated list of conversation ids to ignore", "", _csv),
    Option(
        "ignore.nothread",
        "completely ignore messages sent outside of threads",
        "false",
        _bool,
    ),
    Option("silent", "do not send greetings and notices to customers", "false", _bool),
    Option("text.prefix.open", "prefix added to new thread topics", "[OPEN]"),
    Option("text.prefix.done", "prefix added to completed thread topics", "[DONE]"),
    Option(
        "text.greetings",
        "message sent to the customer on the first contact",
        "Thank you for contacting us!",
    ),
    Option(
        "text.greetings.customer",
        "message sent to an identified customer on the first contact",
        "Thank you for contacting us! This is your %s request.",
    ),
    Option(
        "text.greetings.before_encryption",
        "message sent when a customer writes encrypted messages before the first contact",
        "Hello! Please send your first message unencrypted, so we can open a request for you.",
    ),
    Option("text.join", "notice posted into the thread when a customer joins", "%s joined the room"),
    Option(
        "text.invite",
        "notice posted into the thread when a customer invites somebody",
        "%s invited %s into the room",
    ),
    Option("text.leave", "notice posted into the thread when a customer leaves", "%s left the room"),
    Option(
        "text.emptyroom",
        "notice posted into the thread when the last customer left",
        "The last customer left the room.\nConsider that request closed.",
    ),
    Option(
        "text.error",
        "message sent to the customer when something goes wrong",
        "Something is wrong. I've notified the developers and they are fixing the issue. "
        "Please, try again later or use any other contact method.",
    ),
    Option(
        "text.start",
        "notice posted as a result of the `start` command",
        "The customer was invited to the new room. Send messages into that thread "
        "and they will be automatically forwarded.",
    ),
    Option("text.count", "notice posted as a result of the `count` command", "Request has been counted."),
    Option(
        "text.done",
        "message sent to the customer when the request is marked as done",
        "The operator marked your request as completed. If you think that it's not done yet, "
        "please start another chat with me to open a new request.",
    ),
    Option(
        "text.done.auto",
        "message sent to the customer when the request is closed automatically",
        "Your request was closed because of inactivity. If you still need help, "
        "please start another chat with me to open a new request.",
    ),
)


def find_option(key: str) -> Option | None:
    for option in OPTIONS:
        if option.key == key:
            return option
    return None


def match_patterns(user_id: str, patterns: Iterable[str]) -> bool:
    """Return ``True`` when ``user_id`` matches any ``@local:server`` wildcard."""

    return any(
        pattern and fnmatch.fnmatchcase(user_id, pattern) for pattern in patterns
    )


class OptionsManager:
    """Reads and writes the runtime options record.

    Every :meth:`get` re-reads the persisted record so edits made by another
    process are picked up; when the store is unreachable the last good copy
    is used.
    """

    def __init__(self, store: AccountDataStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._cfg: dict[str, str] = {}

    def _load(self) -> dict[str, str]:
        with self._lock:
            try:
                data = self.store.get_account_data(CONFIG_KEY)
            except TransportError as exc:
                logger.warning("cannot load runtime options, using cached copy: %s", exc)
            else:
                self._cfg = dict(data or {})
            return dict(self._cfg)

    def get(self, key: str) -> str:
        value = self._load().get(key, "")
        if value:
            return value
        option = find_option(key)
        return option.default if option else ""

    def get_bool(self, key: str) -> bool:
        return self.get(key) == "true"

    def get_list(self, key: str) -> list[str]:
        return [item for item in self.get(key).split(",") if item]

    def set(self, key: str, value: str) -> str:
        """Sanitize and store ``value`` in memory; call :meth:`save` to persist."""

        option = find_option(key)
        if option is None:
            raise KeyError(key)
        sanitized = option.sanitizer(value)
        with self._lock:
            self._cfg[key] = sanitized
        return sanitized

    def save(self) -> None:
        with self._lock:
            self.store.set_account_data(CONFIG_KEY, dict(self._cfg))

    def update(self, key: str, value: str) -> str:
        """Sanitize ``value`` and persist it on top of the latest stored record.

        Runs under the same lock as :meth:`get`, so a concurrent reload cannot
        drop the change before it is written. The in-memory copy only changes
        once the store accepted the record; store errors propagate.
        """

        option = find_option(key)
        if option is None:
            raise KeyError(key)
        sanitized = option.sanitizer(value)
        with self._lock:
            cfg = dict(self.store.get_account_data(CONFIG_KEY) or {})
            cfg[key] = sanitized
            self.store.set_account_data(CONFIG_KEY, cfg)
            self._cfg = cfg
        return sanitized

    def all(self) -> dict[str, str]:
        return {option.key: self.get(option.key) for option in OPTIONS}
