"""Display names and profiles used to attribute forwarded messages."""

from __future__ import annotations

import html
import logging
import threading

from cachetools import LRUCache

from .transport.base import Transport, TransportError
from .transport.models import Profile

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Cache-first lookups of user names and profiles.

    Lookups never raise: a failed name lookup falls back to the raw id and a
    failed profile lookup yields ``None``. Entries may go stale.
    """

    def __init__(self, transport: Transport, cache_size: int = 1000) -> None:
        self.transport = transport
        self._names: LRUCache[str, tuple[str, str]] = LRUCache(maxsize=max(cache_size, 1))
        self._profiles: LRUCache[str, Profile] = LRUCache(maxsize=max(cache_size, 1))
        self._lock = threading.Lock()

    def resolve_name(self, user_id: str) -> tuple[str, str]:
        """Return ``(plain, rich)`` forms of ``user_id``'s name."""

        with self._lock:
            cached = self._names.get(user_id)
        if cached is not None:
            return cached

        link = self.transport.user_link(user_id)
        plain = user_id
        rich = f'<a href="{link}">{html.escape(user_id)}</a>'
        try:
            display_name = self.transport.get_display_name(user_id)
        except TransportError as exc:
            logger.warning("cannot get display name of %s: %s", user_id, exc)
            display_name = None
        if display_name:
            plain = f"{display_name} ({user_id})"
            rich = f'<a href="{link}">{html.escape(display_name)}</a>'

        with self._lock:
            self._names[user_id] = (plain, rich)
        return plain, rich

    def resolve_profile(self, user_id: str) -> Profile | None:
        with self._lock:
            cached = self._profiles.get(user_id)
        if cached is not None:
            return cached
        try:
            remote = self.transport.get_profile(user_id)
        except TransportError as exc:
            logger.warning("cannot get profile of %s: %s", user_id, exc)
            return None
        profile = Profile(id=user_id, displayname=remote.displayname, avatar_url=remote.avatar_url)
        with self._lock:
            self._profiles[user_id] = profile
        return profile
