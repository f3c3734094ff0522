"""Persistence backends for small string-keyed account data records."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..transport.base import TransportError

logger = logging.getLogger(__name__)


class AccountDataStore(Protocol):
    """Anything able to persist ``name -> {str: str}`` records.

    :class:`relay.transport.base.Transport` satisfies this protocol, so the
    transport's own account data can be used directly.
    """

    def get_account_data(self, name: str) -> dict[str, str] | None: ...

    def set_account_data(self, name: str, data: Mapping[str, str]) -> None: ...


class InMemoryAccountDataStore:
    """Dictionary-backed store used in tests and single-process setups."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, str]] = {}
        self._lock = threading.Lock()
        self.reads = 0

    def get_account_data(self, name: str) -> dict[str, str] | None:
        with self._lock:
            self.reads += 1
            data = self._data.get(name)
            return dict(data) if data is not None else None

    def set_account_data(self, name: str, data: Mapping[str, str]) -> None:
        with self._lock:
            self._data[name] = dict(data)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._data)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS relay_account_data (
    name text PRIMARY KEY,
    data jsonb NOT NULL DEFAULT '{}'::jsonb,
    updated_at timestamptz NOT NULL DEFAULT now()
)
"""


class PostgresAccountDataStore:
    """PostgreSQL implementation of :class:`AccountDataStore`.

    Each call opens a short-lived connection; the connection context manager
    commits on success and rolls back on error. Database errors are reported
    as :class:`TransportError` so callers handle every persistence failure
    the same way.
    """

    def __init__(
        self,
        conninfo: str,
        *,
        connect: Callable[..., Any] = psycopg.connect,
    ) -> None:
        self._conninfo = conninfo
        self._connect = connect

    def ensure_schema(self) -> None:
        try:
            with self._connect(self._conninfo) as conn:
                with conn.cursor() as cur:
                    cur.execute(SCHEMA_SQL)
        except psycopg.Error as exc:
            raise TransportError(f"cannot create account data table: {exc}") from exc

    def get_account_data(self, name: str) -> dict[str, str] | None:
        try:
            with self._connect(self._conninfo) as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        "SELECT data FROM relay_account_data WHERE name = %s",
                        (name,),
                    )
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise TransportError(f"cannot read account data {name}: {exc}") from exc
        if not row:
            return None
        return {str(k): str(v) for k, v in (row["data"] or {}).items()}

    def set_account_data(self, name: str, data: Mapping[str, str]) -> None:
        try:
            with self._connect(self._conninfo) as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO relay_account_data (name, data, updated_at)
                        VALUES (%s, %s, now())
                        ON CONFLICT (name)
                        DO UPDATE SET data = EXCLUDED.data, updated_at = now()
                        """,
                        (name, Jsonb(dict(data))),
                    )
        except psycopg.Error as exc:
            raise TransportError(f"cannot write account data {name}: {exc}") from exc
