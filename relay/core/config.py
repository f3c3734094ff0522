"""Static relay settings loaded from the environment."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

from dotenv import load_dotenv


@dataclasses.dataclass(frozen=True)
class RedmineSettings:
    """Connection details and status ids of the Redmine tracker."""

    host: str = ""
    api_key: str = ""
    project: str = ""
    tracker_id: int = 0
    status_new: int = 0
    status_in_progress: int = 0
    status_waiting_for_operator: int = 0
    status_waiting_for_customer: int = 0
    status_done: int = 0

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.api_key)


@dataclasses.dataclass(frozen=True)
class RelaySettings:
    """Runtime configuration of the relay process."""

    room_id: str
    command_prefix: str = "!relay"
    cache_size: int = 1000
    sync_interval: int = 300  # seconds
    autoclose_interval: int = 60 * 60
    retention_days: int = 7
    workers: int = 8
    events_token: str | None = None
    events_rate_limit: str = "600/minute"
    transport: str = "relay.transport.memory:InMemoryTransport"
    tracker_medium: str = "chat"
    database_url: str | None = None
    redmine: RedmineSettings = dataclasses.field(default_factory=RedmineSettings)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _load_redmine() -> RedmineSettings:
    return RedmineSettings(
        host=os.getenv("REDMINE_HOST", "").rstrip("/"),
        api_key=os.getenv("REDMINE_API_KEY", ""),
        project=os.getenv("REDMINE_PROJECT", ""),
        tracker_id=_int_env("REDMINE_TRACKER_ID", 0),
        status_new=_int_env("REDMINE_STATUS_NEW", 0),
        status_in_progress=_int_env("REDMINE_STATUS_IN_PROGRESS", 0),
        status_waiting_for_operator=_int_env("REDMINE_STATUS_WAITING_FOR_OPERATOR", 0),
        status_waiting_for_customer=_int_env("REDMINE_STATUS_WAITING_FOR_CUSTOMER", 0),
        status_done=_int_env("REDMINE_STATUS_DONE", 0),
    )


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Load settings from the environment (and ``.env`` when present)."""

    load_dotenv()
    room_id = os.getenv("RELAY_ROOM_ID")
    if not room_id:
        raise RuntimeError("RELAY_ROOM_ID must be set.")
    return RelaySettings(
        room_id=room_id,
        command_prefix=os.getenv("RELAY_COMMAND_PREFIX", "!relay"),
        cache_size=_int_env("RELAY_CACHE_SIZE", 1000),
        sync_interval=_int_env("RELAY_SYNC_INTERVAL", 300),
        autoclose_interval=_int_env("RELAY_AUTOCLOSE_INTERVAL", 60 * 60),
        retention_days=_int_env("RELAY_RETENTION_DAYS", 7),
        workers=_int_env("RELAY_WORKERS", 8),
        events_token=os.getenv("RELAY_EVENTS_TOKEN") or None,
        events_rate_limit=os.getenv("RELAY_EVENTS_RATE_LIMIT", "600/minute"),
        transport=os.getenv("RELAY_TRANSPORT", "relay.transport.memory:InMemoryTransport"),
        tracker_medium=os.getenv("RELAY_TRACKER_MEDIUM", "chat"),
        database_url=os.getenv("DATABASE_URL") or None,
        redmine=_load_redmine(),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()
