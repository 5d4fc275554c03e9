import pytest

from profreviews.access_context import AccessContext
from profreviews.events import EventBus, EventName, ReviewEvent, AuthEvent
from profreviews.review_access import KEY_COUNT


def test_listeners_receive_payload_in_order():
    bus = EventBus()
    calls = []
    bus.subscribe(EventName.REVIEW_CREATED, lambda e: calls.append(("first", e.review_id)))
    bus.subscribe(EventName.REVIEW_CREATED, lambda e: calls.append(("second", e.review_id)))

    delivered = bus.emit(EventName.REVIEW_CREATED, ReviewEvent(review_id=7))

    assert delivered == 2
    assert calls == [("first", 7), ("second", 7)]


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    calls = []
    off = bus.subscribe(EventName.REVIEW_VOTED, calls.append)
    off()
    off()
    assert bus.emit(EventName.REVIEW_VOTED, ReviewEvent(review_id=1)) == 0
    assert calls == []
    assert bus.listener_count(EventName.REVIEW_VOTED) == 0


def test_failing_listener_does_not_block_others():
    bus = EventBus()
    calls = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(EventName.REVIEW_HIDDEN, broken)
    bus.subscribe(EventName.REVIEW_HIDDEN, calls.append)

    assert bus.emit(EventName.REVIEW_HIDDEN, ReviewEvent(review_id=3)) == 1
    assert len(calls) == 1


def test_payload_type_is_checked():
    bus = EventBus()
    with pytest.raises(TypeError):
        bus.emit(EventName.AUTH_SIGNED_IN, ReviewEvent(review_id=1))


def test_event_names_accept_their_string_form():
    bus = EventBus()
    calls = []
    bus.subscribe("auth:signed_out", calls.append)
    bus.emit(EventName.AUTH_SIGNED_OUT, AuthEvent(user_id=1))
    assert calls == [AuthEvent(user_id=1)]


def test_context_sign_in_resets_device_and_publishes(engine, anon_store, clock):
    context = AccessContext.from_engine(engine, anon_store=anon_store, clock=clock)
    for review_id in (1, 2, 3):
        context.gate.register_view("phone", review_id)
    received = []
    context.bus.subscribe(EventName.AUTH_SIGNED_IN, received.append)

    context.on_signed_in(5, "phone")

    assert anon_store.multi_get("phone", (KEY_COUNT,)) == {KEY_COUNT: None}
    assert received == [AuthEvent(user_id=5, device_id="phone")]


def test_context_sign_in_without_device(engine, anon_store):
    context = AccessContext.from_engine(engine, anon_store=anon_store)
    context.on_signed_in(5, None)
