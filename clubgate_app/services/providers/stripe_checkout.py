# clubgate_app/services/providers/stripe_checkout.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

import stripe

from ...errors import ProviderRejected, ProviderUnavailable
from ...models.payment import REDIRECT_CARD
from .base import Charge, ChargeStatus, PaymentProvider, RenewalResult, to_minor_units

log = logging.getLogger(__name__)


def _ts(value):
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


class StripeCheckoutProvider(PaymentProvider):
    name = "stripe"

    def __init__(self, secret_key: str, success_url: str, cancel_url: str):
        self.secret_key = secret_key
        self.success_url = success_url
        self.cancel_url = cancel_url

    def _stripe(self):
        stripe.api_key = self.secret_key
        return stripe

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as exc:
            raise ProviderUnavailable(self.name, str(exc)) from exc
        except stripe.StripeError as exc:
            raise ProviderRejected(self.name, str(exc)) from exc

    def create_charge(self, amount, currency: str, description: str, metadata: Mapping[str, Any]) -> Charge:
        s = self._stripe()
        params = {
            "mode": "payment",
            "line_items": [{
                "price_data": {
                    "currency": currency.lower(),
                    "unit_amount": to_minor_units(amount),
                    "product_data": {"name": description},
                },
                "quantity": 1,
            }],
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
            "client_reference_id": str(metadata["payment_id"]),
            "customer_creation": "always",
            # keeps the card for off-session renewals
            "payment_intent_data": {"setup_future_usage": "off_session"},
            "metadata": {"payment_id": str(metadata["payment_id"]), "user_id": str(metadata.get("user_id", ""))},
        }
        if metadata.get("email"):
            params["customer_email"] = metadata["email"]
        sess = self._call(s.checkout.Session.create, **params)
        return Charge(charge_id=sess.id, url=sess.url, expires_at=_ts(getattr(sess, "expires_at", None)))

    def get_charge_status(self, charge_id: str) -> ChargeStatus:
        s = self._stripe()
        sess = self._call(s.checkout.Session.retrieve, charge_id)
        state = getattr(sess, "status", None)
        paid = getattr(sess, "payment_status", None) == "paid"
        return ChargeStatus(
            paid=paid,
            raw_amount=getattr(sess, "amount_total", None),
            raw_timestamp=getattr(sess, "created", None),
            state=state,
            expired=state == "expired",
            renewal_reference=getattr(sess, "payment_intent", None) if paid else None,
        )

    def cancel_charge(self, charge_id: str) -> None:
        s = self._stripe()
        self._call(s.checkout.Session.expire, charge_id)

    def can_renew(self, payment_method: str) -> bool:
        return payment_method == REDIRECT_CARD

    def renew(self, reference: str, amount, currency: str, description: str,
              metadata: Mapping[str, Any]) -> RenewalResult:
        s = self._stripe()
        previous = self._call(s.PaymentIntent.retrieve, reference)
        customer = getattr(previous, "customer", None)
        payment_method = getattr(previous, "payment_method", None)
        if not customer or not payment_method:
            raise ProviderRejected(self.name, f"no saved payment method on {reference}")
        intent = self._call(
            s.PaymentIntent.create,
            amount=to_minor_units(amount),
            currency=currency.lower(),
            customer=customer,
            payment_method=payment_method,
            off_session=True,
            confirm=True,
            description=description,
            metadata={"payment_id": str(metadata["payment_id"]), "user_id": str(metadata.get("user_id", ""))},
        )
        return RenewalResult(
            charge_id=intent.id,
            paid=getattr(intent, "status", None) == "succeeded",
            renewal_reference=intent.id,
        )
