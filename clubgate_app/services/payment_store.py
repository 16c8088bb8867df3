# clubgate_app/services/payment_store.py
# -*- coding: utf-8 -*-
"""
Payment Record Store: mechanism only.

Status rules live in the reconciliation engine; the one primitive the store
offers for them is ``transition``, a conditional UPDATE that only succeeds
while the row is still in one of the expected statuses. Whoever gets
rowcount == 1 owns the side effects of that transition.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateKey
from ..extensions import db
from ..models import Payment, Subscription
from ..models.payment import COMPLETED, OPEN_STATUSES, RECURRING_RENEWAL, WAITING_FOR_REDIRECT
from ..models.subscription import ACTIVE, PAST_DUE
from .clock import utcnow

log = logging.getLogger(__name__)


class PaymentStore:

    # ---------------- payments ----------------
    def create(self, **fields) -> Payment:
        payment_id = fields.get("id")
        if not payment_id:
            raise ValueError("payment id is required")
        if db.session.get(Payment, payment_id) is not None:
            raise DuplicateKey(payment_id)
        now = utcnow()
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", now)
        payment = Payment(**fields)
        db.session.add(payment)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise DuplicateKey(payment_id) from exc
        db.session.refresh(payment)
        return payment

    def get(self, payment_id: str, user_id: Optional[int] = None) -> Optional[Payment]:
        payment = db.session.get(Payment, payment_id, populate_existing=True)
        if payment is None or (user_id is not None and payment.user_id != user_id):
            return None
        return payment

    def get_by_reference(self, reference: str, provider: Optional[str] = None) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.provider_reference == reference)
        if provider:
            stmt = stmt.where(Payment.provider == provider)
        stmt = stmt.order_by(Payment.created_at.desc()).limit(1)
        return db.session.execute(stmt.execution_options(populate_existing=True)).scalars().first()

    def update(self, payment_id: str, **fields) -> bool:
        """Partial merge; always stamps updated_at."""
        fields["updated_at"] = utcnow()
        stmt = (
            update(Payment)
            .where(Payment.id == payment_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount == 1

    def transition(self, payment_id: str, from_statuses: Iterable[str], to_status: str, **fields) -> bool:
        """Atomic "move to to_status if still in from_statuses". True only for the winner."""
        fields["status"] = to_status
        fields["updated_at"] = utcnow()
        stmt = (
            update(Payment)
            .where(Payment.id == payment_id, Payment.status.in_(tuple(from_statuses)))
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount == 1

    def latest_for_user(self, user_id: int, status: Optional[str] = None) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.user_id == user_id)
        if status:
            stmt = stmt.where(Payment.status == status)
        stmt = stmt.order_by(Payment.created_at.desc()).limit(1)
        return db.session.execute(stmt.execution_options(populate_existing=True)).scalars().first()

    def recent(self, limit: int = 10) -> list[Payment]:
        stmt = select(Payment).order_by(Payment.created_at.desc()).limit(limit)
        return list(db.session.execute(stmt).scalars())

    def has_open_renewal(self, user_id: int) -> bool:
        stmt = select(func.count(Payment.id)).where(
            Payment.user_id == user_id,
            Payment.payment_method == RECURRING_RENEWAL,
            Payment.status.in_(OPEN_STATUSES),
        )
        return bool(db.session.execute(stmt).scalar())

    def overdue_open_payments(self, now: datetime) -> list[Payment]:
        stmt = select(Payment).where(
            Payment.status == WAITING_FOR_REDIRECT,
            Payment.expires_at.is_not(None),
            Payment.expires_at <= now,
        )
        return list(db.session.execute(stmt).scalars())

    def stats(self) -> dict:
        return {
            "users": db.session.execute(select(func.count(func.distinct(Payment.user_id)))).scalar() or 0,
            "payments": db.session.execute(select(func.count(Payment.id))).scalar() or 0,
            "completed": db.session.execute(
                select(func.count(Payment.id)).where(Payment.status == COMPLETED)).scalar() or 0,
            "active_subscriptions": db.session.execute(
                select(func.count(Subscription.user_id)).where(Subscription.status == ACTIVE)).scalar() or 0,
            "past_due_subscriptions": db.session.execute(
                select(func.count(Subscription.user_id)).where(Subscription.status == PAST_DUE)).scalar() or 0,
        }

    def rollback(self) -> None:
        db.session.rollback()

    # ---------------- subscriptions ----------------
    def get_subscription(self, user_id: int) -> Optional[Subscription]:
        return db.session.get(Subscription, user_id, populate_existing=True)

    def get_subscription_by_reference(self, reference: str) -> Optional[Subscription]:
        stmt = select(Subscription).where(Subscription.provider_subscription_reference == reference)
        return db.session.execute(stmt).scalars().first()

    def upsert_subscription(self, user_id: int, **fields) -> Subscription:
        """One row per user: a new payment updates, never duplicates, the row."""
        now = utcnow()
        fields["updated_at"] = now
        for attempt in (1, 2):
            sub = db.session.get(Subscription, user_id, populate_existing=True)
            if sub is None:
                sub = Subscription(user_id=user_id, created_at=now, **fields)
                db.session.add(sub)
            else:
                for key, value in fields.items():
                    setattr(sub, key, value)
            try:
                db.session.commit()
                db.session.refresh(sub)
                return sub
            except IntegrityError:
                # concurrent insert for the same user; retry as an update
                db.session.rollback()
                if attempt == 2:
                    raise
                log.info("subscription insert race for user %s, retrying as update", user_id)
        raise RuntimeError("unreachable")

    def due_subscriptions(self, now: datetime) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(
                Subscription.auto_renew.is_(True),
                Subscription.current_period_end.is_not(None),
                Subscription.current_period_end <= now,
            )
            .order_by(Subscription.current_period_end.asc())
        )
        return list(db.session.execute(stmt).scalars())
