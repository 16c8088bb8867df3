# clubgate_app/models/payment.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from datetime import datetime
from ..extensions import db

# payment methods
REDIRECT_CARD = "redirect-card"
RECURRING_SUBSCRIPTION = "recurring-subscription"
CRYPTO_INVOICE = "crypto-invoice"
RECURRING_RENEWAL = "recurring-renewal"
PAYMENT_METHODS = (REDIRECT_CARD, RECURRING_SUBSCRIPTION, CRYPTO_INVOICE, RECURRING_RENEWAL)

# lifecycle
PENDING = "pending"
WAITING_FOR_REDIRECT = "waiting_for_redirect"
COMPLETED = "completed"
CANCELLED_BY_USER = "cancelled_by_user"
EXPIRED = "expired"
FAILED = "failed"

OPEN_STATUSES = (PENDING, WAITING_FOR_REDIRECT)
TERMINAL_STATUSES = (COMPLETED, CANCELLED_BY_USER, EXPIRED, FAILED)

# access-grant audit, independent from the payment status
ACCESS_GRANTED = "granted"
ACCESS_GRANTED_NO_LINK = "granted_no_link"
ACCESS_ALREADY_MEMBER = "already_member"
ACCESS_OWNER = "owner"
ACCESS_FAILED = "failed"


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.String(120), primary_key=True)       # {method}_{epoch_ms}_{user_id}
    user_id = db.Column(db.BigInteger, index=True, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    provider = db.Column(db.String(32))                    # robokassa, cryptocloud, stripe
    status = db.Column(db.String(32), nullable=False, default=PENDING, index=True)

    provider_reference = db.Column(db.String(255), index=True)
    amount = db.Column(db.Numeric(12, 2))
    currency = db.Column(db.String(8))
    payment_url = db.Column(db.Text)
    user_email = db.Column(db.String(180))

    username = db.Column(db.String(64))
    first_name = db.Column(db.String(120))
    last_name = db.Column(db.String(120))

    expires_at = db.Column(db.DateTime)                    # provider-side expiry, if any
    access_status = db.Column(db.String(32))
    access_error = db.Column(db.Text)
    failure_reason = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)
    paid_at = db.Column(db.DateTime)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Payment id={self.id} user={self.user_id} status={self.status}>"
