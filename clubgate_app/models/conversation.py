# clubgate_app/models/conversation.py
from __future__ import annotations
from datetime import datetime
from ..extensions import db

IDLE = "idle"
AWAITING_ADMIN_QUERY = "awaiting_admin_query"
AWAITING_EMAIL = "awaiting_email"
CONVERSATION_STATES = (IDLE, AWAITING_ADMIN_QUERY, AWAITING_EMAIL)


class ConversationContext(db.Model):
    """Per-user "waiting for text input" state. Rows past expires_at count as idle."""
    __tablename__ = "conversation_contexts"

    user_id = db.Column(db.BigInteger, primary_key=True, autoincrement=False)
    state = db.Column(db.String(32), nullable=False, default=IDLE)
    payload = db.Column(db.JSON, default=dict)
    expires_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)
