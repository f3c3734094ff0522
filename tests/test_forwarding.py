from conftest import ALICE, CUSTOMER_ROOM, OPERATOR, OPERATOR_ROOM

from relay.forwarding import clear_reply, content_body, prefix_sender
from relay.transport.models import (
    EVENT_ENCRYPTED,
    EVENT_REACTION,
    REL_ANNOTATION,
    Event,
    MessageContent,
    Profile,
    RelatesTo,
)


def test_clear_reply_drops_quoted_preamble():
    content = MessageContent(
        body="> <@operator:example.org> internal remark\n> second line\n\nthe answer",
        formatted_body="<mx-reply><blockquote>internal remark</blockquote></mx-reply>the <b>answer</b>",
    )

    clear_reply(content)

    assert content.body == "the answer"
    assert content.formatted_body == "the <b>answer</b>"


def test_clear_reply_without_blank_line_drops_quote_lines():
    content = MessageContent(body="> <@operator:example.org> remark\n> more\nanswer")

    assert clear_reply(content).body == "answer"


def test_clear_reply_leaves_plain_messages_alone():
    content = MessageContent(body="> not a reply quote", formatted_body="<p>x</p>")

    clear_reply(content)

    assert content.body == "> not a reply quote"
    assert content.formatted_body == "<p>x</p>"


def test_prefix_sender():
    content = prefix_sender(MessageContent(body="**hi**"), "Alice (@alice:x)", '<a href="l">Alice</a>')

    assert content.body == "Alice (@alice:x):\n**hi**"
    assert content.formatted_body == '<a href="l">Alice</a>:<br><strong>hi</strong>'
    assert content.format == "html"


def test_content_body_prefers_edit():
    content = MessageContent(body="* new", new_content=MessageContent(body="new"))

    assert content_body(content) == ("new", "new")
    assert content_body(None) == ("", "")


def test_profile_is_attached_to_forwarded_message(transport, say):
    transport.profiles[ALICE] = Profile(id=ALICE, displayname="Alice", avatar_url="mxc://a")

    say(CUSTOMER_ROOM, ALICE, "hello")

    forwarded = transport.messages(OPERATOR_ROOM)[-1]
    assert forwarded.content.extra["com.beeper.per_message_profile"] == {
        "id": ALICE,
        "displayname": "Alice",
        "avatar_url": "mxc://a",
    }


def test_operator_reply_reaches_customer(transport, tracker, say, open_thread):
    thread_id = open_thread()

    reply = say(OPERATOR_ROOM, OPERATOR, "have you tried water?", thread_id=thread_id)

    delivered = transport.messages(CUSTOMER_ROOM, sender=transport.user_id)[-1]
    assert delivered.content.body == "have you tried water?"
    assert delivered.content.relates_to is None
    assert delivered.content.extra == {"event_id": reply.event_id}
    assert tracker.issues[1].updates[-1] == (
        4,
        "_@operator:example.org (operator)_\n\nhave you tried water?",
    )


def test_operator_quote_is_not_leaked(transport, say, open_thread):
    thread_id = open_thread()

    say(
        OPERATOR_ROOM,
        OPERATOR,
        "> <@other:example.org> do not tell the customer\n\nall good",
        thread_id=thread_id,
    )

    delivered = transport.messages(CUSTOMER_ROOM, sender=transport.user_id)[-1]
    assert delivered.content.body == "all good"


def test_operator_message_outside_thread(transport, relay, say):
    say(OPERATOR_ROOM, OPERATOR, "hello team")

    notice = transport.messages(OPERATOR_ROOM, sender=transport.user_id)[-1]
    assert notice.content.body.startswith("the message doesn't relate to any thread")

    relay.options.set("ignore.nothread", "true")
    relay.options.save()
    before = len(transport.messages(OPERATOR_ROOM))
    say(OPERATOR_ROOM, OPERATOR, "hello again")

    assert len(transport.messages(OPERATOR_ROOM)) == before + 1


def test_reply_in_unmapped_thread_shows_help(transport, say):
    root = transport.post(OPERATOR_ROOM, OPERATOR, MessageContent(body="team lunch"))

    say(OPERATOR_ROOM, OPERATOR, "pizza?", thread_id=root.event_id)

    notice = transport.messages(OPERATOR_ROOM, sender=transport.user_id)[-1]
    assert notice.content.body.startswith(f"no mapping for {root.event_id}\n\nThe relay can perform")
    assert "`!relay done` - close the current request." in notice.content.body
    assert transport.messages(CUSTOMER_ROOM) == []

def test_failed_delivery_is_reported_in_thread(transport, say, open_thread):
    thread_id = open_thread()
    transport.fail_rooms.add(CUSTOMER_ROOM)

    say(OPERATOR_ROOM, OPERATOR, "answer", thread_id=thread_id)

    notice = transport.messages(OPERATOR_ROOM, sender=transport.user_id)[-1]
    assert notice.content.body == f"sending into {CUSTOMER_ROOM} is not allowed"
    assert notice.content.relates_to.event_id == thread_id


def test_ignored_rooms_and_notices(transport, relay, say):
    say(CUSTOMER_ROOM, ALICE, "just a notice", msgtype="notice")
    assert transport.messages(OPERATOR_ROOM) == []

    relay.options.set("ignore.rooms", CUSTOMER_ROOM)
    relay.options.save()
    say(CUSTOMER_ROOM, ALICE, "hello")
    assert transport.messages(OPERATOR_ROOM) == []


def test_file_is_uploaded_to_ticket(transport, tracker, say, open_thread):
    transport.files["mxc://example.com/photo"] = b"\x89PNG"
    open_thread()

    say(
        CUSTOMER_ROOM,
        ALICE,
        "photo",
        msgtype="image",
        url="mxc://example.com/photo",
        file_name="fire.png",
    )

    assert [a.file_name for a in tracker.issues[1].attachments] == ["fire.png"]


def _react(transport, relay, room_id, sender, event_id, key="👍"):
    content = MessageContent(
        relates_to=RelatesTo(rel_type=REL_ANNOTATION, event_id=event_id, key=key)
    )
    evt = transport.post(room_id, sender, content, event_type=EVENT_REACTION)
    relay.handle(evt)
    return evt


def test_customer_reaction_reaches_operator_message(transport, relay, say, open_thread):
    thread_id = open_thread()
    reply = say(OPERATOR_ROOM, OPERATOR, "fixed?", thread_id=thread_id)
    copy = transport.find_event_by(CUSTOMER_ROOM, {"event_id": reply.event_id})

    _react(transport, relay, CUSTOMER_ROOM, ALICE, copy.event_id)

    (reaction,) = transport.reactions(OPERATOR_ROOM)
    assert reaction.content.relates_to.event_id == reply.event_id
    assert reaction.content.relates_to.key == "👍"


def test_operator_reaction_reaches_customer_message(transport, relay, say, open_thread):
    open_thread()
    message = say(CUSTOMER_ROOM, ALICE, "thanks!")
    forwarded = transport.find_event_by(OPERATOR_ROOM, {"event_id": message.event_id})

    _react(transport, relay, OPERATOR_ROOM, OPERATOR, forwarded.event_id, "❤️")

    (reaction,) = transport.reactions(CUSTOMER_ROOM)
    assert reaction.content.relates_to.event_id == message.event_id
    assert reaction.content.relates_to.key == "❤️"


def test_operator_reaction_on_own_message_uses_lookup(transport, relay, say, open_thread):
    thread_id = open_thread()
    reply = say(OPERATOR_ROOM, OPERATOR, "done on our side", thread_id=thread_id)
    copy = transport.find_event_by(CUSTOMER_ROOM, {"event_id": reply.event_id})

    _react(transport, relay, OPERATOR_ROOM, OPERATOR, reply.event_id)

    (reaction,) = transport.reactions(CUSTOMER_ROOM)
    assert reaction.content.relates_to.event_id == copy.event_id


def test_reaction_to_unknown_event_is_dropped(transport, relay):
    _react(transport, relay, CUSTOMER_ROOM, ALICE, "$missing")

    assert transport.reactions(OPERATOR_ROOM) == []


def test_encrypted_message_before_first_contact(transport, relay):
    evt = Event(
        event_id="$enc",
        room_id=CUSTOMER_ROOM,
        sender=ALICE,
        type=EVENT_ENCRYPTED,
        ciphertext=MessageContent(body="secret"),
    )

    relay.handle(evt)

    (notice,) = transport.messages(CUSTOMER_ROOM, sender=transport.user_id)
    assert notice.content.body.startswith("Hello! Please send your first message unencrypted")
    assert transport.messages(OPERATOR_ROOM) == []
