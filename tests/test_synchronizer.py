import logging

import pytest
from conftest import ALICE, CUSTOMER_ROOM, OPERATOR_ROOM

from relay.bot import Relay
from relay.mappings import NotMappedError
from relay.tracker import InMemoryTracker
from relay.transport import TransportError


def _bodies(transport, room_id):
    return [e.content.body for e in transport.messages(room_id, sender=transport.user_id)]


def test_note_is_synced_once(transport, tracker, relay, open_thread):
    thread_id = open_thread()
    tracker.add_note(1, 5, "We sent a technician")

    assert relay.sync_issues() is True

    synced = transport.messages(OPERATOR_ROOM, sender=transport.user_id)[-1]
    assert synced.content.body == "_synced note #5_\n\nWe sent a technician"
    assert synced.content.msgtype == "notice"
    assert synced.content.relates_to.event_id == thread_id
    delivered = transport.messages(CUSTOMER_ROOM, sender=transport.user_id)[-1]
    assert delivered.content.body == "We sent a technician"
    assert delivered.content.extra == {"event_id": synced.event_id}
    assert relay.mappings.note_marker(thread_id, 5) == {
        "synced": "true",
        "thread_event_id": synced.event_id,
    }

    operator_count = len(transport.messages(OPERATOR_ROOM))
    customer_count = len(transport.messages(CUSTOMER_ROOM))
    relay.sync_issues()

    assert len(transport.messages(OPERATOR_ROOM)) == operator_count
    assert len(transport.messages(CUSTOMER_ROOM)) == customer_count


def test_private_note_stays_in_thread(transport, tracker, relay, open_thread):
    thread_id = open_thread()
    tracker.add_note(1, 6, "customer is a VIP", private=True)

    relay.sync_issues()

    assert "_synced private note #6_\n\ncustomer is a VIP" in _bodies(transport, OPERATOR_ROOM)
    assert "customer is a VIP" not in _bodies(transport, CUSTOMER_ROOM)
    assert relay.mappings.note_marker(thread_id, 6)["synced"] == "true"


def test_failed_delivery_is_retried_then_given_up(transport, tracker, relay, open_thread):
    thread_id = open_thread()
    tracker.add_note(1, 7, "please reboot")
    transport.fail_rooms.add(CUSTOMER_ROOM)

    for attempt in range(1, 4):
        relay.sync_issues()
        marker = relay.mappings.note_marker(thread_id, 7)
        assert marker["attempts"] == str(attempt)

    assert marker["synced"] == "failed"
    assert _bodies(transport, OPERATOR_ROOM).count("_synced note #7_\n\nplease reboot") == 1

    transport.fail_rooms.clear()
    relay.sync_issues()
    assert "please reboot" not in _bodies(transport, CUSTOMER_ROOM)


def test_delivery_recovers_without_duplicating_thread_note(transport, tracker, relay, open_thread):
    thread_id = open_thread()
    tracker.add_note(1, 8, "try again")
    transport.fail_rooms.add(CUSTOMER_ROOM)
    relay.sync_issues()

    transport.fail_rooms.clear()
    relay.sync_issues()

    assert _bodies(transport, OPERATOR_ROOM).count("_synced note #8_\n\ntry again") == 1
    assert _bodies(transport, CUSTOMER_ROOM).count("try again") == 1
    assert relay.mappings.note_marker(thread_id, 8)["synced"] == "true"


def test_ticket_closed_in_tracker_closes_thread(transport, tracker, relay, open_thread):
    thread_id = open_thread()
    tracker.issues[1].closed = True

    relay.sync_issues()

    assert "_closed from tracker_" in _bodies(transport, OPERATOR_ROOM)
    assert transport.user_id not in transport.members[CUSTOMER_ROOM]
    with pytest.raises(NotMappedError):
        relay.mappings.conversation_for_thread(thread_id)


def test_sync_skipped_while_running(relay, open_thread):
    open_thread()
    relay.synchronizer._running.acquire()
    try:
        assert relay.synchronizer.running
        assert relay.sync_issues() is False
    finally:
        relay.synchronizer._running.release()
    assert relay.sync_issues() is True


def test_sync_skipped_without_tracker(transport, settings):
    relay = Relay(transport, settings, tracker=InMemoryTracker(enabled=False))
    try:
        assert relay.sync_issues() is False
    finally:
        relay.shutdown()


def test_tracker_outage_is_tolerated(transport, tracker, relay, open_thread):
    open_thread()
    tracker.fail = True

    assert relay.sync_issues() is True


def test_sync_follows_every_page_of_threads(transport, tracker, relay, say):
    transport.page_size = 1
    bob_room = "!bob:example.net"
    say(CUSTOMER_ROOM, ALICE, "printer on fire")
    say(bob_room, "@bob:example.net", "scanner jammed")
    tracker.add_note(1, 11, "extinguisher on its way")
    tracker.add_note(2, 12, "try turning it off and on")

    assert relay.sync_issues() is True

    assert "extinguisher on its way" in _bodies(transport, CUSTOMER_ROOM)
    assert "try turning it off and on" in _bodies(transport, bob_room)


def test_thread_listing_failure_is_logged(transport, relay, open_thread, monkeypatch, caplog):
    open_thread()

    def fail(room_id, from_token=None):
        raise TransportError("threads listing down")

    monkeypatch.setattr(transport, "threads", fail)

    with caplog.at_level(logging.ERROR, logger="relay"):
        assert relay.sync_issues() is False

    assert f"cannot list threads of {OPERATOR_ROOM}" in caplog.text
    assert not relay.synchronizer.running


def test_background_sync_failure_is_logged(relay, monkeypatch, caplog):
    def explode():
        raise RuntimeError("boom")

    monkeypatch.setattr(relay.synchronizer, "sync_issues", explode)

    with caplog.at_level(logging.ERROR, logger="relay"):
        future = relay.sync_in_background()
        relay.executor.shutdown(wait=True)

    assert isinstance(future.exception(), RuntimeError)
    assert "ticket sync failed" in caplog.text
