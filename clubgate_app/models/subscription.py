# clubgate_app/models/subscription.py
from __future__ import annotations
from datetime import datetime
from ..extensions import db

ACTIVE = "active"
PAST_DUE = "past_due"


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    user_id = db.Column(db.BigInteger, primary_key=True, autoincrement=False)   # one row per user
    status = db.Column(db.String(20), default=ACTIVE, index=True)              # active, past_due
    current_period_end = db.Column(db.DateTime, index=True)
    auto_renew = db.Column(db.Boolean, default=True, nullable=False)

    last_payment_id = db.Column(db.String(120))
    payment_method = db.Column(db.String(32))
    provider = db.Column(db.String(32))
    amount = db.Column(db.Numeric(12, 2))

    # provider keys
    payment_reference = db.Column(db.String(255))                  # merchant-initiated renewals
    provider_subscription_reference = db.Column(db.String(255), index=True)  # provider-native billing

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    def is_current(self, now: datetime) -> bool:
        return bool(self.current_period_end and self.current_period_end > now)
