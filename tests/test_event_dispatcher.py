import json

import pytest

from app.core.errors import ValidationFailure
from app.services.event_dispatcher import TransitionKind, classify, parse_event


@pytest.mark.parametrize(
    "event_type, kind",
    [
        ("subscription.activated", TransitionKind.CREATE_OR_ACTIVATE),
        ("subscription.charged", TransitionKind.UPSERT_CHARGE),
        ("subscription.halted", TransitionKind.TERMINAL_UPDATE),
        ("subscription.cancelled", TransitionKind.TERMINAL_UPDATE),
        ("subscription.completed", TransitionKind.TERMINAL_UPDATE),
        ("subscription.expired", TransitionKind.TERMINAL_UPDATE),
        ("payment.captured", TransitionKind.UNHANDLED),
        ("subscription.pending", TransitionKind.UNHANDLED),
        ("", TransitionKind.UNHANDLED),
        (None, TransitionKind.UNHANDLED),
    ],
)
def test_classify(event_type, kind):
    assert classify(event_type) is kind


def test_parse_reads_entity_and_owner(make_event):
    event = parse_event(make_event("subscription.charged", current_end=1767225600))
    assert event.kind is TransitionKind.UPSERT_CHARGE
    assert event.subscription.id == "sub_123"
    assert event.subscription.current_end == 1767225600
    assert event.user_id == "user_alice"


def test_owner_must_be_a_string(make_event):
    body = json.loads(make_event("subscription.activated"))
    body["payload"]["subscription"]["entity"]["notes"] = {"userId": 42}
    assert parse_event(json.dumps(body).encode()).user_id is None


def test_terminal_status_falls_back_to_event_name(make_event):
    event = parse_event(make_event("subscription.halted", status=None))
    assert event.terminal_status == "halted"
    event = parse_event(make_event("subscription.halted", status="halted"))
    assert event.terminal_status == "halted"


def test_unknown_event_without_entity_is_fine():
    event = parse_event(b'{"event": "payment.captured", "payload": {"payment": {"entity": {"id": "pay_1"}}}}')
    assert event.kind is TransitionKind.UNHANDLED
    assert event.subscription is None


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b"\xff\xfe",
        b'{"payload": {}}',
        b'{"event": "subscription.charged", "payload": {"subscription": {"entity": {"status": "active"}}}}',
    ],
)
def test_unparseable_payloads(raw):
    with pytest.raises(ValidationFailure):
        parse_event(raw)


def test_known_event_without_subscription_entity(make_event):
    with pytest.raises(ValidationFailure):
        parse_event(make_event("subscription.cancelled", include_entity=False))


def test_unhandled_event_skips_entity_validation():
    raw = b'{"event": "subscription.authenticated", "payload": {"subscription": {"entity": {"notes": []}}}}'
    event = parse_event(raw)
    assert event.kind is TransitionKind.UNHANDLED
    assert event.subscription is None


def test_empty_notes_list_means_no_owner(make_event):
    body = json.loads(make_event("subscription.charged", current_end=1767225600))
    body["payload"]["subscription"]["entity"]["notes"] = []
    event = parse_event(json.dumps(body).encode())
    assert event.subscription.notes is None
    assert event.user_id is None


@pytest.mark.parametrize("raw", [b"[]", b'{"event": 42}', b'"subscription.charged"'])
def test_envelope_without_event_name(raw):
    with pytest.raises(ValidationFailure):
        parse_event(raw)
