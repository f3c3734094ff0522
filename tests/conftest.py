import pathlib
import sys

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from relay.app_logging import init_logging
from relay.bot import Relay
from relay.core.config import RelaySettings
from relay.tracker import InMemoryTracker
from relay.transport import InMemoryTransport
from relay.transport.models import Event, MessageContent, relates_to_thread

OPERATOR_ROOM = "!operators:example.org"
CUSTOMER_ROOM = "!alice:example.com"
ALICE = "@alice:example.com"
OPERATOR = "@operator:example.org"


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app


@pytest.fixture
def settings() -> RelaySettings:
    return RelaySettings(
        room_id=OPERATOR_ROOM,
        workers=2,
        sync_interval=0,
        autoclose_interval=0,
    )


@pytest.fixture
def transport() -> InMemoryTransport:
    transport = InMemoryTransport("@relay:example.org")
    transport.members[OPERATOR_ROOM] = {transport.user_id, OPERATOR}
    transport.members[CUSTOMER_ROOM] = {transport.user_id, ALICE}
    transport.display_names[ALICE] = "Alice"
    return transport


@pytest.fixture
def tracker() -> InMemoryTracker:
    return InMemoryTracker()


@pytest.fixture
def relay(transport, settings, tracker):
    relay = Relay(transport, settings, tracker=tracker)
    yield relay
    relay.shutdown()


@pytest.fixture
def say(transport, relay):
    """Post a message as if received from the network and handle it."""

    def _say(room_id: str, sender: str, body: str, thread_id: str | None = None, **fields) -> Event:
        content = MessageContent(body=body, **fields)
        if thread_id:
            content.relates_to = relates_to_thread(thread_id)
        evt = transport.post(room_id, sender, content)
        relay.handle(evt)
        relay.drain(5)
        return evt

    return _say


@pytest.fixture
def open_thread(say, relay):
    """Open a request for Alice and return its thread id."""

    def _open() -> str:
        say(CUSTOMER_ROOM, ALICE, "my printer is on fire")
        return relay.mappings.thread_for_conversation(CUSTOMER_ROOM)

    return _open
