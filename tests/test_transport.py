import pytest

from relay.transport import InMemoryTransport, TransportError, load_transport, send_notice
from relay.transport.formatting import markdown_content, render_markdown
from relay.transport.models import (
    EVENT_ENCRYPTED,
    Event,
    MessageContent,
    RelatesTo,
    get_parent,
    origin_of,
    relates_to_thread,
)


class RelationRejectingTransport(InMemoryTransport):
    def send_message(self, room_id, content):
        if content.relates_to is not None:
            raise TransportError("threads are disabled")
        return super().send_message(room_id, content)


def test_load_transport():
    transport = load_transport("relay.transport.memory:InMemoryTransport")

    assert isinstance(transport, InMemoryTransport)


def test_load_transport_rejects_bad_paths():
    with pytest.raises(ValueError):
        load_transport("relay.transport.memory")
    with pytest.raises(TypeError):
        load_transport("relay.core.locks:KeyedLock")


def test_send_notice_retries_without_relation():
    transport = RelationRejectingTransport()

    event_id = send_notice(transport, "!ops", "hi", relates_to=relates_to_thread("$t"))

    assert event_id is not None
    sent = transport.messages("!ops")[0]
    assert sent.content.relates_to is None
    assert sent.content.msgtype == "notice"


def test_send_notice_gives_up_after_two_attempts():
    transport = InMemoryTransport()
    transport.fail_rooms.add("!ops")

    assert send_notice(transport, "!ops", "hi", relates_to=relates_to_thread("$t")) is None
    assert send_notice(transport, "!ops", "hi") is None


def test_render_markdown():
    assert render_markdown("_synced note #5_\n\n**a** <b>") == (
        "<em>synced note #5</em><br><br><strong>a</strong> &lt;b&gt;"
    )
    assert render_markdown("`!relay done`") == "<code>!relay done</code>"


def test_markdown_content_sets_html_format():
    content = markdown_content("hello", msgtype="text")

    assert content.format == "html"
    assert content.msgtype == "text"


def test_set_edit_keeps_new_content():
    content = MessageContent(body="[DONE] topic", formatted_body="[DONE] topic")
    content.set_edit("$root")

    assert content.body == "* [DONE] topic"
    assert content.new_content.body == "[DONE] topic"
    assert content.relates_to == RelatesTo(rel_type="replace", event_id="$root")


def test_get_parent_and_origin():
    evt = Event(event_id="$e", room_id="!r", sender="@a:b")
    assert get_parent(evt) == "$e"
    evt.content.relates_to = relates_to_thread("$t")
    assert get_parent(evt) == "$t"
    evt.content.relates_to = RelatesTo(in_reply_to="$q")
    assert get_parent(evt) == "$q"

    assert origin_of("@alice:example.com") == "example.com"
    assert origin_of("alice") == ""


def test_threads_lists_roots_with_replies_newest_first():
    transport = InMemoryTransport(page_size=1)
    first = transport.post("!ops", "@relay:example.org", MessageContent(body="one"))
    transport.post("!ops", "@relay:example.org", MessageContent(body="lonely"))
    second = transport.post("!ops", "@relay:example.org", MessageContent(body="two"))
    for root in (first, second):
        transport.post(
            "!ops",
            "@op:example.org",
            MessageContent(body="reply", relates_to=relates_to_thread(root.event_id)),
        )

    page = transport.threads("!ops")
    assert [e.event_id for e in page.chunk] == [second.event_id]
    page = transport.threads("!ops", page.next_batch)
    assert [e.event_id for e in page.chunk] == [first.event_id]
    assert page.next_batch is None


def test_decrypt_event():
    transport = InMemoryTransport()
    evt = Event(
        event_id="$e",
        room_id="!r",
        sender="@a:b",
        type=EVENT_ENCRYPTED,
        ciphertext=MessageContent(body="secret"),
    )

    decrypted = transport.decrypt_event(evt)

    assert decrypted.content.body == "secret"
    assert not decrypted.encrypted
    with pytest.raises(TransportError):
        transport.decrypt_event(decrypted)
