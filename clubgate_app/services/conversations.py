# clubgate_app/services/conversations.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from ..extensions import db
from ..models import ConversationContext
from ..models.conversation import CONVERSATION_STATES, IDLE
from .clock import utcnow


@dataclass
class Conversation:
    state: str = IDLE
    payload: dict = field(default_factory=dict)
    expired: bool = False

    @property
    def idle(self) -> bool:
        return self.state == IDLE


class ConversationStore:
    """Per-user "waiting for text input" flag with a TTL, persisted so a restart keeps it."""

    def __init__(self, ttl_minutes: int = 10):
        self.ttl = timedelta(minutes=ttl_minutes)

    def get(self, user_id: int, now: Optional[datetime] = None) -> Conversation:
        now = now or utcnow()
        row = db.session.get(ConversationContext, user_id, populate_existing=True)
        if row is None or row.state == IDLE:
            return Conversation()
        if row.expires_at <= now:
            self.clear(user_id)
            return Conversation(expired=True)
        return Conversation(state=row.state, payload=dict(row.payload or {}))

    def set(self, user_id: int, state: str, payload: Optional[dict] = None) -> Conversation:
        if state not in CONVERSATION_STATES:
            raise ValueError(f"unknown conversation state: {state}")
        now = utcnow()
        row = db.session.get(ConversationContext, user_id)
        if row is None:
            row = ConversationContext(user_id=user_id)
            db.session.add(row)
        row.state = state
        row.payload = dict(payload or {})
        row.expires_at = now + self.ttl
        row.updated_at = now
        db.session.commit()
        return Conversation(state=state, payload=dict(row.payload))

    def clear(self, user_id: int) -> None:
        row = db.session.get(ConversationContext, user_id)
        if row is not None:
            db.session.delete(row)
            db.session.commit()
