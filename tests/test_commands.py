from conftest import ALICE, CUSTOMER_ROOM, OPERATOR, OPERATOR_ROOM

from relay.transport.models import EVENT_MEMBER, Event


def _last_notice(transport):
    return transport.messages(OPERATOR_ROOM, sender=transport.user_id)[-1].content


def test_rename_keeps_open_prefix(transport, say, open_thread):
    thread_id = open_thread()

    say(OPERATOR_ROOM, OPERATOR, "!relay rename Printer on fire", thread_id=thread_id)

    edit = _last_notice(transport)
    assert edit.relates_to.event_id == thread_id
    assert edit.new_content.body == "[OPEN] Printer on fire"
    assert edit.new_content.formatted_body == "[OPEN] Printer on fire"


def test_close_after_rename_uses_latest_topic(transport, say, open_thread):
    thread_id = open_thread()
    say(OPERATOR_ROOM, OPERATOR, "!relay rename Printer on fire", thread_id=thread_id)

    say(OPERATOR_ROOM, OPERATOR, "!relay done", thread_id=thread_id)

    assert _last_notice(transport).new_content.body == "[DONE] Printer on fire"


def test_rename_without_title(transport, say, open_thread):
    thread_id = open_thread()

    say(OPERATOR_ROOM, OPERATOR, "!relay rename", thread_id=thread_id)

    assert _last_notice(transport).body == "cannot rename a request - the new topic is not specified"


def test_invite_adds_operator_to_conversation(transport, say, open_thread):
    thread_id = open_thread()

    say(OPERATOR_ROOM, OPERATOR, "!relay invite", thread_id=thread_id)

    assert OPERATOR in transport.members[CUSTOMER_ROOM]


def test_start_opens_conversation_without_greeting(transport, relay, say):
    say(OPERATOR_ROOM, OPERATOR, "!relay start @dave:example.com")

    room_id = "!room1:example.org"
    assert transport.members[room_id] == {transport.user_id, "@dave:example.com"}
    thread_id = relay.mappings.thread_for_conversation(room_id)
    assert transport.messages(room_id) == []

    forwarded = transport.messages(OPERATOR_ROOM)[-1]
    assert forwarded.content.relates_to.event_id == thread_id
    assert forwarded.content.body.endswith("The customer was invited to the new room. "
                                           "Send messages into that thread and they will "
                                           "be automatically forwarded.")


def test_start_requires_user(transport, say):
    say(OPERATOR_ROOM, OPERATOR, "!relay start")

    assert _last_notice(transport).body == "cannot start a new conversation - the user is not specified"


def test_count_records_closed_request(transport, relay, say):
    say(OPERATOR_ROOM, OPERATOR, "!relay count @carol:example.net")

    bot_messages = transport.messages(OPERATOR_ROOM, sender=transport.user_id)
    root, counted = bot_messages[-2:]
    assert root.content.body == "[DONE] 1st request from example.net (1st by @carol:example.net)"
    assert counted.content.body == "Request has been counted."
    assert counted.content.relates_to.event_id == root.event_id
    assert relay.auto_close_requests() == 0


def test_config_set_and_get(transport, say):
    say(OPERATOR_ROOM, OPERATOR, "!relay config silent yes")

    assert _last_notice(transport).body == "silent has been updated, new value: `true`"
    assert transport.account_data["relay.config"] == {"silent": "true"}

    say(OPERATOR_ROOM, OPERATOR, "!relay config silent")

    assert "Current value: `true`" in _last_notice(transport).body


def test_config_reports_unsaved_value(transport, relay, say):
    relay.options.update("silent", "false")
    transport.fail_account_data = True

    say(OPERATOR_ROOM, OPERATOR, "!relay config silent yes")

    assert _last_notice(transport).body == "cannot save silent: account data is unavailable"
    transport.fail_account_data = False
    assert relay.options.get_bool("silent") is False

def test_config_list_and_unknown(transport, say):
    say(OPERATOR_ROOM, OPERATOR, "!relay config")
    assert "`!relay config text.done VALUE`" in _last_notice(transport).body

    say(OPERATOR_ROOM, OPERATOR, "!relay config nope 1")
    assert _last_notice(transport).body == "no such option"


def test_note_is_not_forwarded(transport, say, open_thread):
    thread_id = open_thread()
    before = len(transport.messages(CUSTOMER_ROOM))

    say(OPERATOR_ROOM, OPERATOR, "!relay note customer seems angry", thread_id=thread_id)

    assert len(transport.messages(CUSTOMER_ROOM)) == before


def test_unknown_command_shows_help(transport, say):
    say(OPERATOR_ROOM, OPERATOR, "!relay dance")

    assert "`!relay done` - close the current request." in _last_notice(transport).body


def _invite(room_id: str, sender: str, state_key: str) -> Event:
    return Event(
        event_id="$invite",
        room_id=room_id,
        sender=sender,
        type=EVENT_MEMBER,
        membership="invite",
        state_key=state_key,
    )


def test_invitations_follow_allow_list(transport, relay):
    relay.handle(_invite("!new:example.com", "@eve:example.com", transport.user_id))
    assert transport.user_id in transport.members["!new:example.com"]

    relay.options.set("allow.users", "@*:example.net")
    relay.options.save()
    relay.handle(_invite("!other:example.com", "@eve:example.com", transport.user_id))
    assert "!other:example.com" not in transport.members


def test_customer_inviting_somebody_is_announced(transport, relay, open_thread):
    thread_id = open_thread()

    relay.handle(_invite(CUSTOMER_ROOM, ALICE, "@bob:example.com"))

    notice = _last_notice(transport)
    assert notice.body == "Alice (@alice:example.com) invited @bob:example.com into the room"
    assert notice.relates_to.event_id == thread_id
    assert relay.mappings.thread_for_conversation(CUSTOMER_ROOM) == thread_id
