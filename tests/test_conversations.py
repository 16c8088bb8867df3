# tests/test_conversations.py
from datetime import timedelta

import pytest

from clubgate_app.models.conversation import AWAITING_ADMIN_QUERY, AWAITING_EMAIL, IDLE
from clubgate_app.services.clock import utcnow
from clubgate_app.services.conversations import ConversationStore


def test_set_and_get(db_session):
    store = ConversationStore(ttl_minutes=10)
    store.set(42, AWAITING_EMAIL, {"payment_id": "p1"})
    conv = store.get(42)
    assert conv.state == AWAITING_EMAIL
    assert conv.payload == {"payment_id": "p1"}
    assert not conv.idle


def test_unknown_user_is_idle(db_session):
    conv = ConversationStore().get(999)
    assert conv.state == IDLE and conv.idle and not conv.expired


def test_expired_context_reads_as_idle(db_session):
    store = ConversationStore(ttl_minutes=10)
    store.set(42, AWAITING_ADMIN_QUERY)
    conv = store.get(42, now=utcnow() + timedelta(minutes=11))
    assert conv.idle and conv.expired
    # expired row was cleared
    assert not store.get(42).expired


def test_overwrite_and_clear(db_session):
    store = ConversationStore()
    store.set(42, AWAITING_ADMIN_QUERY)
    store.set(42, AWAITING_EMAIL, {"payment_id": "p2"})
    assert store.get(42).payload == {"payment_id": "p2"}
    store.clear(42)
    assert store.get(42).idle
    store.clear(42)


def test_rejects_unknown_state(db_session):
    with pytest.raises(ValueError):
        ConversationStore().set(42, "awaiting_something")
