# clubgate_app/blueprints/webhooks.py
# -*- coding: utf-8 -*-
"""
Inbound provider notifications.

Each route only normalises its provider's payload (field names, amount,
id extraction, signature scheme) into a ``Notification`` and hands it to the
reconciliation engine; all status rules live there.
"""
from __future__ import annotations

import json

import stripe
from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from ..errors import AuthenticationFailure, NotFound
from ..services.providers.base import from_minor_units
from ..services.providers.cryptocloud import CLOSED_STATUSES, normalize_invoice_id
from ..services.reconciliation import Notification
from ..services.signatures import verify_event_signature

bp = Blueprint("webhooks", __name__)

ROBOKASSA_FIELDS = {"OutSum", "out_summ", "InvId", "inv_id", "SignatureValue", "crc"}
CRYPTO_PAID = {"success", "paid", "overpaid"}


def _engine():
    return current_app.extensions["engine"]


def _missing():
    return "Missing parameters", 400


@bp.errorhandler(AuthenticationFailure)
def _bad_sign(exc):
    current_app.logger.warning("rejected notification: %s", exc)
    return "bad sign", 401


@bp.errorhandler(NotFound)
def _not_found(exc):
    current_app.logger.error("notification for unknown reference: %s", exc)
    return "Payment not found", 404


@bp.errorhandler(Exception)
def _unexpected(exc):
    if isinstance(exc, HTTPException):
        return exc
    current_app.logger.exception("webhook failed")
    return "error", 500


# -------- Robokassa --------
def _robokassa_params():
    params = request.values.to_dict()
    out_sum = params.get("OutSum") or params.get("out_summ")
    inv_id = params.get("InvId") or params.get("inv_id")
    signature = params.get("SignatureValue") or params.get("crc")
    custom = {k: v for k, v in params.items() if k not in ROBOKASSA_FIELDS}
    return out_sum, inv_id, signature, custom


def _verify_robokassa(out_sum, inv_id, signature, custom):
    signer = current_app.extensions["providers"].get("robokassa").signer
    if not signer.verify_result(out_sum, inv_id, signature, custom):
        raise AuthenticationFailure(f"robokassa signature mismatch for {inv_id}")


@bp.route("/robokassa-webhook", methods=["GET", "POST"])
def robokassa_webhook():
    out_sum, inv_id, signature, custom = _robokassa_params()
    if not out_sum or not inv_id or not signature:
        current_app.logger.error("robokassa notification without OutSum/InvId/SignatureValue")
        return _missing()
    _verify_robokassa(out_sum, inv_id, signature, custom)

    result = _engine().handle_notification(Notification(
        provider="robokassa",
        reference=inv_id,
        paid=True,
        amount=out_sum,
        renewal_reference=inv_id,
        subscription_reference=custom.get("SubscriptionId"),
        raw=custom,
    ))
    current_app.logger.info("robokassa %s -> %s", inv_id, result.action)
    return f"OK{inv_id}"


@bp.route("/robokassa-recurring", methods=["POST"])
@bp.route("/recurrent", methods=["POST"])
def robokassa_recurring():
    out_sum, inv_id, signature, custom = _robokassa_params()
    subscription_id = custom.get("SubscriptionId")
    if not out_sum or not inv_id or not signature or not subscription_id:
        current_app.logger.error("recurring notification without OutSum/InvId/SignatureValue/SubscriptionId")
        return _missing()
    _verify_robokassa(out_sum, inv_id, signature, custom)

    result = _engine().record_provider_renewal(subscription_id, inv_id, amount=out_sum)
    current_app.logger.info("robokassa recurring %s (%s) -> %s", inv_id, subscription_id, result.action)
    return f"OK{inv_id}"


# -------- CryptoCloud --------
@bp.route("/cryptocloud-webhook", methods=["POST"])
def cryptocloud_webhook():
    data = request.get_json(silent=True) or request.form.to_dict()
    status = (data.get("status") or "").lower()
    invoice_id = data.get("invoice_id")
    if not status or not invoice_id:
        return _missing()

    declared = request.headers.get("X-Signature") or data.get("signature")
    if not verify_event_signature(status, invoice_id, declared, current_app.config.get("CRYPTOCLOUD_SECRET", "")):
        raise AuthenticationFailure(f"cryptocloud signature mismatch for {invoice_id}")

    reference = normalize_invoice_id(invoice_id)
    result = _engine().handle_notification(Notification(
        provider="cryptocloud",
        reference=reference,
        paid=status in CRYPTO_PAID,
        # postbacks report the crypto amount, not the invoiced fiat sum
        amount=None,
        expired=status in CLOSED_STATUSES,
        raw=data,
    ))
    current_app.logger.info("cryptocloud %s (%s) -> %s", reference, status, result.action)
    return jsonify(message="Postback received", order_id=data.get("order_id"))


# -------- Stripe --------
def _stripe_amount(value):
    return from_minor_units(value) if value is not None else None


def _stripe_notification(event):
    typ = event["type"]
    obj = event["data"]["object"]
    if typ in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
        paid = obj.get("payment_status") == "paid"
        return Notification(provider="stripe", reference=obj["id"], paid=paid,
                            amount=_stripe_amount(obj.get("amount_total")),
                            renewal_reference=obj.get("payment_intent") if paid else None)
    if typ in ("checkout.session.expired", "checkout.session.async_payment_failed"):
        return Notification(provider="stripe", reference=obj["id"], paid=False, expired=True)
    if typ == "payment_intent.succeeded":
        return Notification(provider="stripe", reference=obj["id"], paid=True,
                            amount=_stripe_amount(obj.get("amount_received")), renewal_reference=obj["id"])
    if typ == "payment_intent.payment_failed":
        return Notification(provider="stripe", reference=obj["id"], paid=False, failed=True)
    return None


@bp.route("/stripe-webhook", methods=["POST"])
def stripe_webhook():
    payload = request.get_data()
    sig = request.headers.get("Stripe-Signature", "")
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET", "")
    try:
        stripe.Webhook.construct_event(payload, sig, secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        raise AuthenticationFailure(f"stripe signature error: {exc}") from exc
    # verified; work on the plain JSON rather than StripeObject
    event = json.loads(payload)

    note = _stripe_notification(event)
    if note is None:
        return jsonify(received=True, ignored=event["type"])
    try:
        result = _engine().handle_notification(note)
    except NotFound:
        # intents of checkout sessions are settled through the session events
        if event["type"].startswith("payment_intent."):
            return jsonify(received=True, ignored=event["type"])
        raise
    current_app.logger.info("stripe %s %s -> %s", event["type"], note.reference, result.action)
    return jsonify(received=True, action=result.action)
