# clubgate_app/services/reconciliation.py
# -*- coding: utf-8 -*-
"""
Payment reconciliation engine.

Three paths can observe that a payment was paid: a provider webhook, the
user pressing "check payment", and the renewal sweep. They all end in
``complete()``, which moves the payment to ``completed`` with a conditional
update. Only the caller that wins that update extends the subscription,
grants access and notifies the user, so a duplicate webhook or a webhook
racing a poll is a no-op for the loser.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import InvalidOperation
from typing import Optional

from ..errors import (
    AlreadyMember,
    DuplicateKey,
    EmailRequired,
    InvalidTransition,
    NotFound,
    ProviderError,
    ProviderRejected,
)
from ..models import Payment, Subscription
from ..models.payment import (
    CANCELLED_BY_USER,
    COMPLETED,
    EXPIRED,
    FAILED,
    OPEN_STATUSES,
    PENDING,
    RECURRING_RENEWAL,
    RECURRING_SUBSCRIPTION,
    WAITING_FOR_REDIRECT,
)
from ..models.subscription import ACTIVE, PAST_DUE
from .access import AccessOutcome
from .clock import one_month_from, utcnow
from .providers.base import format_amount

log = logging.getLogger(__name__)

# Reconciliation.action values
ACTION_COMPLETED = "completed"
ACTION_DUPLICATE = "duplicate"
ACTION_WAITING = "waiting"
ACTION_EXPIRED = "expired"
ACTION_FAILED = "failed"
ACTION_IGNORED = "ignored"
ACTION_UNAVAILABLE = "unavailable"
ACTION_PAID_AFTER_TERMINAL = "paid_after_terminal"
ACTION_REGRANTED = "regranted"


@dataclass(frozen=True)
class Notification:
    """A verified provider notification, normalised by the webhook layer."""
    provider: str
    reference: str
    paid: bool
    amount: Optional[str] = None
    expired: bool = False
    failed: bool = False
    renewal_reference: Optional[str] = None
    subscription_reference: Optional[str] = None
    raw: dict = field(default_factory=dict)


@dataclass
class Reconciliation:
    payment: Payment
    action: str
    outcome: Optional[AccessOutcome] = None
    subscription: Optional[Subscription] = None
    notified: bool = False
    error: Optional[str] = None

    @property
    def duplicate(self) -> bool:
        return self.action == ACTION_DUPLICATE

    @property
    def paid(self) -> bool:
        return self.payment.status == COMPLETED


def new_payment_id(method: str, user_id: int) -> str:
    return f"{method}_{int(time.time() * 1000)}_{user_id}"


def amounts_match(declared, expected) -> bool:
    """Compares at cent precision; an unparsable amount never matches."""
    if expected is None:
        return True
    try:
        return format_amount(declared) == format_amount(expected)
    except (InvalidOperation, ValueError, TypeError):
        return False


class ReconciliationEngine:

    def __init__(self, store, providers, granter, notifier,
                 price: str = "100.00", currency: str = "RUB", description: str = "Subscription"):
        self.store = store
        self.providers = providers
        self.granter = granter
        self.notifier = notifier
        self.price = price
        self.currency = currency
        self.description = description

    # ---------------- user-driven operations ----------------
    def start_payment(self, user_id: int, method: str, username: Optional[str] = None,
                      first_name: Optional[str] = None, last_name: Optional[str] = None) -> Payment:
        provider = self.providers.for_method(method)
        if self.granter.is_member(user_id):
            raise AlreadyMember(str(user_id))
        payment = self.store.create(
            id=new_payment_id(method, user_id),
            user_id=user_id,
            payment_method=method,
            provider=provider.name,
            status=PENDING,
            amount=self.price,
            currency=self.currency,
            username=username,
            first_name=first_name,
            last_name=last_name,
        )
        log.info("payment %s started by %s (%s)", payment.id, user_id, method)
        return payment

    def _own_payment(self, payment_id: str, user_id: Optional[int]) -> Payment:
        payment = self.store.get(payment_id, user_id)
        if payment is None:
            raise NotFound(payment_id)
        return payment

    def confirm_payment(self, payment_id: str, user_id: int, email: Optional[str] = None) -> Payment:
        """Creates the provider charge; pending -> waiting_for_redirect."""
        payment = self._own_payment(payment_id, user_id)
        if payment.status == WAITING_FOR_REDIRECT and payment.payment_url:
            return payment
        if payment.status != PENDING:
            raise InvalidTransition(payment.id, payment.status, WAITING_FOR_REDIRECT)

        provider = self.providers.get(payment.provider)
        if email:
            self.store.update(payment.id, user_email=email)
        email = email or payment.user_email
        if provider.requires_email and not email:
            raise EmailRequired(payment.id)

        metadata = {
            "payment_id": payment.id,
            "user_id": payment.user_id,
            "email": email,
            "recurring": payment.payment_method == RECURRING_SUBSCRIPTION,
        }
        try:
            charge = provider.create_charge(payment.amount, payment.currency, self.description, metadata)
        except ProviderRejected as exc:
            log.error("charge for %s rejected: %s", payment.id, exc)
            self.store.transition(payment.id, [PENDING], FAILED, failure_reason=str(exc)[:500])
            raise

        won = self.store.transition(
            payment.id, [PENDING], WAITING_FOR_REDIRECT,
            provider_reference=charge.charge_id,
            payment_url=charge.url,
            expires_at=charge.expires_at,
        )
        current = self.store.get(payment.id)
        if not won:
            # cancelled while the charge was being created
            self._cancel_charge(provider, charge.charge_id)
            raise InvalidTransition(payment.id, current.status, WAITING_FOR_REDIRECT)
        log.info("payment %s waiting for redirect, charge %s", payment.id, charge.charge_id)
        return current

    def check_payment(self, payment_id: str, user_id: Optional[int] = None) -> Reconciliation:
        """User-initiated poll of the provider."""
        payment = self._own_payment(payment_id, user_id)
        if payment.status == COMPLETED:
            return Reconciliation(payment, ACTION_DUPLICATE)
        if payment.status != WAITING_FOR_REDIRECT or not payment.provider_reference:
            return Reconciliation(payment, ACTION_IGNORED)

        try:
            provider = self.providers.get(payment.provider)
            status = provider.get_charge_status(payment.provider_reference)
        except ProviderError as exc:
            log.warning("status check for %s failed: %s", payment.id, exc)
            return Reconciliation(payment, ACTION_UNAVAILABLE, error=str(exc))

        if status.paid:
            return self.complete(payment.id, source="poll", renewal_reference=status.renewal_reference)

        if status.expired or (payment.expires_at and utcnow() >= payment.expires_at):
            reason = "charge expired" if status.expired else "payment window passed"
            action = self._close(payment, reason)
            return Reconciliation(self.store.get(payment.id), action or ACTION_EXPIRED)
        return Reconciliation(payment, ACTION_WAITING)

    def cancel_payment(self, payment_id: str, user_id: int) -> Payment:
        payment = self._own_payment(payment_id, user_id)
        if payment.status == CANCELLED_BY_USER:
            return payment
        if not self.store.transition(payment.id, OPEN_STATUSES, CANCELLED_BY_USER):
            current = self.store.get(payment.id)
            raise InvalidTransition(payment.id, current.status, CANCELLED_BY_USER)
        log.info("payment %s cancelled by user", payment.id)
        if payment.provider_reference:
            self._cancel_charge(self.providers.get(payment.provider), payment.provider_reference)
        return self.store.get(payment.id)

    def _cancel_charge(self, provider, charge_id: str) -> None:
        try:
            provider.cancel_charge(charge_id)
        except Exception:
            log.exception("provider cancel of %s failed", charge_id)

    def toggle_auto_renew(self, user_id: int) -> Subscription:
        sub = self.store.get_subscription(user_id)
        if sub is None:
            raise NotFound(str(user_id))
        return self.store.upsert_subscription(user_id, auto_renew=not sub.auto_renew)

    def subscription_for(self, user_id: int) -> Optional[Subscription]:
        return self.store.get_subscription(user_id)

    # ---------------- provider-driven ----------------
    def handle_notification(self, note: Notification) -> Reconciliation:
        payment = self.store.get_by_reference(note.reference, provider=note.provider)
        if payment is None:
            raise NotFound(note.reference)

        if not note.paid:
            if payment.is_open and (note.failed or note.expired):
                reason = "declined by provider" if note.failed else "charge expired"
                action = self._close(payment, reason, declined=note.failed)
                return Reconciliation(self.store.get(payment.id), action or ACTION_IGNORED)
            log.info("non-paid notification for %s ignored", payment.id)
            return Reconciliation(payment, ACTION_IGNORED)

        if payment.is_terminal and payment.status != COMPLETED:
            log.error("paid notification for %s which is already %s", payment.id, payment.status)
            self._alert(f"Оплата по платежу {payment.id} ({payment.status}) от {payment.user_id}, нужна ручная проверка")
            return Reconciliation(payment, ACTION_PAID_AFTER_TERMINAL)

        if note.amount is not None and not amounts_match(note.amount, payment.amount):
            # signed by the provider, so it still completes; a human has to look at it
            log.warning("payment %s: notified amount %s, expected %s", payment.id, note.amount, payment.amount)
            self._alert(f"Сумма по платежу {payment.id}: получено {note.amount}, ожидалось {payment.amount}")

        return self.complete(
            payment.id,
            source=note.provider,
            renewal_reference=note.renewal_reference,
            subscription_reference=note.subscription_reference,
        )

    def record_provider_renewal(self, subscription_reference: str, invoice_id: str,
                                amount: Optional[str] = None, provider: str = "robokassa") -> Reconciliation:
        """Provider-native recurring billing charged the user on its own schedule."""
        sub = self.store.get_subscription_by_reference(subscription_reference)
        if sub is None:
            raise NotFound(subscription_reference)
        payment_id = f"{RECURRING_RENEWAL}_{invoice_id}_{sub.user_id}"
        try:
            self.store.create(
                id=payment_id,
                user_id=sub.user_id,
                payment_method=RECURRING_RENEWAL,
                provider=provider,
                status=PENDING,
                provider_reference=invoice_id,
                amount=amount or sub.amount or self.price,
                currency=self.currency,
            )
        except DuplicateKey:
            log.info("renewal %s already recorded", payment_id)
        return self.complete(payment_id, source=f"{provider}-recurring")

    # ---------------- completion ----------------
    def complete(self, payment_id: str, source: str,
                 renewal_reference: Optional[str] = None,
                 subscription_reference: Optional[str] = None) -> Reconciliation:
        now = utcnow()
        won = self.store.transition(payment_id, OPEN_STATUSES, COMPLETED, paid_at=now)
        payment = self.store.get(payment_id)
        if payment is None:
            raise NotFound(payment_id)
        if not won:
            if payment.status == COMPLETED:
                log.info("payment %s already completed, %s ignored", payment_id, source)
                return Reconciliation(payment, ACTION_DUPLICATE)
            raise InvalidTransition(payment_id, payment.status, COMPLETED)
        log.info("payment %s completed via %s", payment_id, source)

        subscription = self._activate(payment, now, renewal_reference, subscription_reference)
        outcome = self._grant(payment)
        notified = self._notify(payment.user_id, outcome)
        if outcome.ok:
            self._alert(f"Оплата {payment.id}: {payment.amount} {payment.currency} от {payment.user_id}, доступ: {outcome.kind}")
        else:
            self._alert(f"Не удалось выдать доступ {payment.user_id} после оплаты {payment.id}: {outcome.reason}")
        return Reconciliation(self.store.get(payment_id), ACTION_COMPLETED, outcome, subscription, notified)

    def _activate(self, payment: Payment, now, renewal_reference, subscription_reference) -> Optional[Subscription]:
        fields = {
            "status": ACTIVE,
            "current_period_end": one_month_from(now),
            "last_payment_id": payment.id,
            "amount": payment.amount,
        }
        # a renewal keeps the stored method and reference of the original payment
        if payment.payment_method != RECURRING_RENEWAL:
            fields.update(
                payment_method=payment.payment_method,
                provider=payment.provider,
                payment_reference=renewal_reference or payment.provider_reference,
            )
        if subscription_reference:
            fields["provider_subscription_reference"] = subscription_reference
        try:
            return self.store.upsert_subscription(payment.user_id, **fields)
        except Exception:
            log.exception("subscription update after %s failed", payment.id)
            self.store.rollback()
            self._alert(f"Подписка пользователя {payment.user_id} не продлена после оплаты {payment.id}")
            return None

    def _grant(self, payment: Payment) -> AccessOutcome:
        try:
            outcome = self.granter.grant(payment.user_id)
        except Exception as exc:
            log.exception("access grant for %s failed", payment.user_id)
            outcome = AccessOutcome.failed(str(exc))
        if not outcome.ok:
            log.error("access for %s not granted: %s", payment.user_id, outcome.reason)
        try:
            self.store.update(payment.id, access_status=outcome.kind, access_error=(outcome.reason or None))
        except Exception:
            log.exception("could not record access outcome for %s", payment.id)
            self.store.rollback()
        return outcome

    def _notify(self, user_id: int, outcome: AccessOutcome) -> bool:
        try:
            return self.notifier.payment_completed(user_id, outcome)
        except Exception:
            log.exception("notification to %s failed", user_id)
            return False

    def _alert(self, text: str) -> None:
        try:
            self.notifier.admin_alert(text)
        except Exception:
            log.exception("admin alert failed")

    # ---------------- maintenance ----------------
    def _close(self, payment: Payment, reason: str, declined: bool = False) -> Optional[str]:
        """Ends an open payment that will not be paid. Returns the action, or None if another caller got there first."""
        if payment.payment_method == RECURRING_RENEWAL:
            return ACTION_FAILED if self.fail_renewal(payment.id, payment.user_id, reason) else None
        if declined:
            if not self.store.transition(payment.id, OPEN_STATUSES, FAILED, failure_reason=reason):
                return None
            log.info("payment %s declined by provider", payment.id)
            return ACTION_FAILED
        return ACTION_EXPIRED if self._expire(payment, reason) else None

    def _expire(self, payment: Payment, reason: str = "charge expired") -> bool:
        won = self.store.transition(payment.id, OPEN_STATUSES, EXPIRED, failure_reason=reason)
        if won:
            log.info("payment %s expired", payment.id)
            try:
                self.notifier.payment_expired(payment.user_id)
            except Exception:
                log.exception("expiry notice to %s failed", payment.user_id)
        return won

    def fail_renewal(self, payment_id: str, user_id: int, reason) -> bool:
        """Renewal attempt is over without money: subscription goes past_due, user pays manually."""
        if not self.store.transition(payment_id, OPEN_STATUSES, FAILED, failure_reason=str(reason)[:500]):
            return False
        log.warning("renewal %s of user %s failed: %s", payment_id, user_id, reason)
        try:
            self.store.upsert_subscription(user_id, status=PAST_DUE)
        except Exception:
            log.exception("could not mark subscription of %s past due", user_id)
            self.store.rollback()
        try:
            self.notifier.renewal_failed(user_id)
        except Exception:
            log.exception("renewal failure notice to %s failed", user_id)
        self._alert(f"Продление для {user_id} не прошло: {reason}")
        return True

    def expire_stale_payments(self, now=None) -> int:
        """Closes waiting payments whose deadline passed; unconfirmed renewals count as failed."""
        closed = 0
        for payment in self.store.overdue_open_payments(now or utcnow()):
            reason = "renewal not confirmed in time" if payment.payment_method == RECURRING_RENEWAL else "charge expired"
            if self._close(payment, reason):
                closed += 1
        if closed:
            log.info("closed %d stale payments", closed)
        return closed

    def retry_access(self, user_id: int) -> Reconciliation:
        """Re-runs the access grant for the user's last completed payment (support action)."""
        payment = self.store.latest_for_user(user_id, status=COMPLETED)
        if payment is None:
            raise NotFound(str(user_id))
        outcome = self._grant(payment)
        notified = self._notify(user_id, outcome)
        return Reconciliation(self.store.get(payment.id), ACTION_REGRANTED, outcome,
                              self.store.get_subscription(user_id), notified)
