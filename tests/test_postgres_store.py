import psycopg
import pytest
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from relay.mappings import MappingStore, PostgresAccountDataStore
from relay.transport import TransportError


class FakeCursor:
    def __init__(self, db, row_factory=None):
        self.db = db
        self.row_factory = row_factory
        self._row = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        if self.db.error is not None:
            raise self.db.error
        self.db.statements.append((" ".join(sql.split()), params, self.row_factory))
        if sql.lstrip().startswith("SELECT"):
            data = self.db.rows.get(params[0])
            self._row = {"data": data} if data is not None else None
        elif sql.lstrip().startswith("INSERT"):
            name, payload = params
            self.db.rows[name] = payload.obj

    def fetchone(self):
        return self._row


class FakeConnection:
    def __init__(self, db):
        self.db = db

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def cursor(self, row_factory=None):
        return FakeCursor(self.db, row_factory)


class FakeDatabase:
    def __init__(self):
        self.rows = {}
        self.statements = []
        self.error = None
        self.conninfo = []

    def connect(self, conninfo):
        self.conninfo.append(conninfo)
        return FakeConnection(self)


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def store(db):
    return PostgresAccountDataStore("postgresql://relay@localhost/relay", connect=db.connect)


def test_ensure_schema_creates_table(store, db):
    store.ensure_schema()

    sql, _, _ = db.statements[0]
    assert sql.startswith("CREATE TABLE IF NOT EXISTS relay_account_data")
    assert db.conninfo == ["postgresql://relay@localhost/relay"]


def test_set_and_get_account_data(store, db):
    store.set_account_data("relay.mapping.!room", {"id": "$thread"})

    sql, params, _ = db.statements[0]
    assert "ON CONFLICT (name)" in sql
    assert isinstance(params[1], Jsonb)
    assert store.get_account_data("relay.mapping.!room") == {"id": "$thread"}
    assert db.statements[-1][2] is dict_row


def test_missing_record_is_none(store):
    assert store.get_account_data("relay.mapping.!nowhere") is None


def test_database_errors_become_transport_errors(store, db):
    db.error = psycopg.OperationalError("server closed the connection")

    with pytest.raises(TransportError):
        store.get_account_data("relay.config")
    with pytest.raises(TransportError):
        store.set_account_data("relay.config", {})


def test_mapping_store_on_postgres(store):
    mappings = MappingStore(store)
    mappings.link_conversation("!room:example.com", "$thread")

    assert mappings.conversation_for_thread("$thread") == "!room:example.com"
