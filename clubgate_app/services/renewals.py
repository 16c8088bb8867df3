# clubgate_app/services/renewals.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from ..errors import DuplicateKey, ProviderError, ProviderRejected
from ..models.payment import PENDING, RECURRING_RENEWAL, WAITING_FOR_REDIRECT
from .clock import utcnow

log = logging.getLogger(__name__)


@dataclass
class SweepReport:
    renewed: list = field(default_factory=list)
    pending: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    skipped: list = field(default_factory=list)

    def summary(self) -> str:
        return (f"renewed={len(self.renewed)} pending={len(self.pending)} "
                f"failed={len(self.failed)} skipped={len(self.skipped)}")


class RenewalSweep:
    """Daily pass over subscriptions whose period ended and that still auto-renew."""

    def __init__(self, store, providers, engine,
                 price: str = "100.00", currency: str = "RUB", description: str = "Subscription",
                 confirm_hours: int = 20):
        self.store = store
        self.providers = providers
        self.engine = engine
        self.price = price
        self.currency = currency
        self.description = description
        # an accepted charge that is not confirmed by then counts as failed
        self.confirm_window = timedelta(hours=confirm_hours)

    def sweep(self, now=None) -> SweepReport:
        now = now or utcnow()
        report = SweepReport()
        for sub in self.store.due_subscriptions(now):
            try:
                self._renew(sub, now, report)
            except Exception:
                # one broken subscription must not stop the others
                log.exception("renewal of user %s crashed", sub.user_id)
                self.store.rollback()
                report.failed.append(sub.user_id)
        log.info("renewal sweep done: %s", report.summary())
        return report

    def _renew(self, sub, now, report: SweepReport) -> None:
        user_id = sub.user_id
        if self.store.has_open_renewal(user_id):
            report.skipped.append(user_id)
            return

        payment_id = f"{RECURRING_RENEWAL}_{now:%Y%m%d}_{user_id}"
        amount = sub.amount or self.price
        try:
            self.store.create(
                id=payment_id,
                user_id=user_id,
                payment_method=RECURRING_RENEWAL,
                provider=sub.provider,
                status=PENDING,
                amount=amount,
                currency=self.currency,
            )
        except DuplicateKey:
            # already attempted today
            report.skipped.append(user_id)
            return

        try:
            if not sub.provider or not sub.payment_reference:
                raise ProviderRejected(sub.provider or "?", "no stored payment reference")
            provider = self.providers.get(sub.provider)
            if not provider.can_renew(sub.payment_method):
                raise ProviderRejected(provider.name, f"{sub.payment_method} cannot be charged off-session")
            result = provider.renew(
                sub.payment_reference, amount, self.currency, self.description,
                {"payment_id": payment_id, "user_id": user_id},
            )
        except ProviderError as exc:
            self._fail(sub, payment_id, exc)
            report.failed.append(user_id)
            return

        self.store.transition(
            payment_id, [PENDING], WAITING_FOR_REDIRECT,
            provider_reference=result.charge_id,
            expires_at=now + self.confirm_window,
        )
        if result.paid:
            self.engine.complete(payment_id, source="renewal", renewal_reference=result.renewal_reference)
            report.renewed.append(user_id)
        else:
            # the provider confirms through its webhook
            log.info("renewal %s accepted, waiting for confirmation", payment_id)
            report.pending.append(user_id)

    def _fail(self, sub, payment_id: str, exc: Exception) -> None:
        self.engine.fail_renewal(payment_id, sub.user_id, exc)


def run_daily_jobs(app) -> None:
    with app.app_context():
        # closes yesterday's unconfirmed renewals first so they are retried today
        app.extensions["engine"].expire_stale_payments()
        app.extensions["renewals"].sweep()


def run_expiry_pass(app) -> None:
    with app.app_context():
        app.extensions["engine"].expire_stale_payments()


def init_scheduler(app, scheduler) -> None:
    scheduler.add_job(
        run_daily_jobs,
        trigger="cron",
        hour=app.config.get("RENEWAL_HOUR", 3),
        minute=app.config.get("RENEWAL_MINUTE", 0),
        args=[app],
        id="daily-renewals",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        run_expiry_pass,
        trigger="interval",
        minutes=app.config.get("EXPIRY_INTERVAL_MINUTES", 5),
        args=[app],
        id="expire-payments",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    if not scheduler.running:
        scheduler.start()
    app.logger.info("renewal sweep scheduled at %02d:%02d UTC",
                    app.config.get("RENEWAL_HOUR", 3), app.config.get("RENEWAL_MINUTE", 0))
