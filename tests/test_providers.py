# tests/test_providers.py
from decimal import Decimal
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest
import requests
import stripe

from clubgate_app.errors import ProviderRejected, ProviderUnavailable
from clubgate_app.models.payment import CRYPTO_INVOICE, RECURRING_SUBSCRIPTION, REDIRECT_CARD
from clubgate_app.services.providers import ProviderRegistry, build_registry
from clubgate_app.services.providers.base import format_amount, http_call, to_minor_units
from clubgate_app.services.providers.cryptocloud import CryptoCloudProvider, normalize_invoice_id
from clubgate_app.services.providers.robokassa import RobokassaProvider, parse_op_state
from clubgate_app.services.providers.stripe_checkout import StripeCheckoutProvider
from clubgate_app.services.signatures import RobokassaSignature

OPSTATE_PAID = """<?xml version="1.0" encoding="utf-8"?>
<OperationStateResponse xmlns="http://merchant.roboxchange.com/WebService/">
  <Result><Code>0</Code></Result>
  <State><Code>100</Code><RequestDate>2024-01-01T10:00:00</RequestDate><StateDate>2024-01-01T10:01:00</StateDate></State>
  <Info><OutSum>100.00</OutSum></Info>
</OperationStateResponse>"""


def _robokassa(**kwargs):
    return RobokassaProvider(RobokassaSignature("shop", "pass1", "pass2"), **kwargs)


# -------- helpers --------
def test_amount_helpers():
    assert format_amount(100) == "100.00"
    assert format_amount("99.999") == "100.00"
    assert to_minor_units(Decimal("100.00")) == 10000
    assert to_minor_units("0.015") == 2


def test_http_call_maps_errors(http):
    http.queue(http.Resp(status_code=503))
    with pytest.raises(ProviderUnavailable):
        http_call("x", "GET", "https://example.test")

    http.queue(http.Resp(status_code=400, text="bad"))
    with pytest.raises(ProviderRejected):
        http_call("x", "POST", "https://example.test")

    http.queue(requests.ConnectionError("down"))
    with pytest.raises(ProviderUnavailable) as exc:
        http_call("x", "GET", "https://example.test")
    assert exc.value.retryable is True


# -------- Robokassa --------
def test_robokassa_redirect_url_is_signed():
    provider = _robokassa(test_mode=True)
    charge = provider.create_charge(Decimal("100"), "RUB", "Sub", {"payment_id": "redirect-card_1_42", "user_id": 42})
    assert charge.charge_id == "redirect-card_1_42"
    query = {k: v[0] for k, v in parse_qs(urlparse(charge.url).query).items()}
    assert query["MerchantLogin"] == "shop"
    assert query["OutSum"] == "100.00"
    assert query["InvId"] == "redirect-card_1_42"
    assert query["Shp_user_id"] == "42"
    assert query["IsTest"] == "1"
    assert "Recurring" not in query
    expected = provider.signer.payment("100.00", "redirect-card_1_42", {"Shp_user_id": "42"})
    assert query["SignatureValue"] == expected


def test_robokassa_recurring_flag_and_receipt():
    provider = _robokassa(fiscal_receipt=True)
    assert provider.requires_email is True
    charge = provider.create_charge("100.00", "RUB", "Sub",
                                    {"payment_id": "p1", "user_id": 1, "email": "a@b.c", "recurring": True})
    query = parse_qs(urlparse(charge.url).query)
    assert query["Recurring"] == ["true"]
    assert query["Email"] == ["a@b.c"]
    assert "Receipt" in query


def test_robokassa_receipt_needs_email():
    with pytest.raises(ProviderRejected):
        _robokassa(fiscal_receipt=True).create_charge("100.00", "RUB", "Sub", {"payment_id": "p1"})


def test_parse_op_state_paid():
    status = parse_op_state(OPSTATE_PAID)
    assert status.paid is True
    assert status.state == "paid"
    assert status.raw_amount == "100.00"


def test_parse_op_state_errors():
    not_found = parse_op_state("<R><Result><Code>3</Code></Result></R>")
    assert not_found.paid is False and not_found.state == "not_found"
    with pytest.raises(ProviderRejected):
        parse_op_state("<R><Result><Code>1</Code><Description>bad sign</Description></Result></R>")
    with pytest.raises(ProviderUnavailable):
        parse_op_state("<<not xml")
    cancelled = parse_op_state("<R><Result><Code>0</Code></Result><State><Code>10</Code></State></R>")
    assert cancelled.expired is True


def test_robokassa_status_poll(http):
    http.queue(http.Resp(text=OPSTATE_PAID))
    status = _robokassa().get_charge_status("inv-9")
    assert status.paid is True
    assert status.renewal_reference == "inv-9"
    method, url, kwargs = http.calls[0]
    assert method == "GET" and url.endswith("OpStateExt")
    assert kwargs["params"]["InvoiceID"] == "inv-9"


def test_robokassa_renew(http):
    provider = _robokassa()
    assert provider.can_renew(RECURRING_SUBSCRIPTION)
    assert not provider.can_renew(REDIRECT_CARD)

    http.queue(http.Resp(text="OK+renewal_1"))
    result = provider.renew("inv-1", "100.00", "RUB", "Sub", {"payment_id": "renewal_1"})
    assert result.paid is False and result.charge_id == "renewal_1"
    assert http.calls[0][2]["data"]["PreviousInvoiceID"] == "inv-1"

    http.queue(http.Resp(text="ERROR"))
    with pytest.raises(ProviderRejected):
        provider.renew("inv-1", "100.00", "RUB", "Sub", {"payment_id": "renewal_2"})


# -------- CryptoCloud --------
def test_normalize_invoice_id():
    assert normalize_invoice_id("ABC") == "INV-ABC"
    assert normalize_invoice_id("INV-ABC") == "INV-ABC"


def test_cryptocloud_create_charge(http):
    http.queue(http.Resp(json_data={"status": "success", "result": {"uuid": "INV-ABC", "link": "https://pay.example/ABC"}}))
    provider = CryptoCloudProvider("key", "shop-1", invoice_ttl_minutes=15)
    charge = provider.create_charge("100.00", "RUB", "Sub", {"payment_id": "crypto-invoice_1_42"})
    assert charge.charge_id == "INV-ABC"
    assert charge.url == "https://pay.example/ABC"
    assert charge.expires_at is not None
    method, url, kwargs = http.calls[0]
    assert url.endswith("invoice/create")
    assert kwargs["headers"]["Authorization"] == "Token key"
    assert kwargs["json"]["order_id"] == "crypto-invoice_1_42"


@pytest.mark.parametrize("state,paid,expired", [
    ("paid", True, False),
    ("overpaid", True, False),
    ("created", False, False),
    ("canceled", False, True),
])
def test_cryptocloud_status(http, state, paid, expired):
    http.queue(http.Resp(json_data={"status": "success", "result": [{"uuid": "INV-ABC", "status": state}]}))
    status = CryptoCloudProvider("key", "shop-1").get_charge_status("ABC")
    assert status.paid is paid
    assert status.expired is expired
    assert http.calls[0][2]["json"] == {"uuids": ["INV-ABC"]}


def test_cryptocloud_errors(http):
    provider = CryptoCloudProvider("key", "shop-1")
    http.queue(http.Resp(json_data={"status": "error", "result": "invalid shop"}))
    with pytest.raises(ProviderRejected):
        provider.create_charge("100.00", "RUB", "Sub", {"payment_id": "p"})
    http.queue(http.Resp(text="<html>"))
    with pytest.raises(ProviderUnavailable):
        provider.get_charge_status("ABC")
    with pytest.raises(ProviderRejected):
        provider.renew("INV-ABC", "100.00", "RUB", "Sub", {"payment_id": "p"})


# -------- Stripe --------
def test_stripe_create_charge(monkeypatch):
    seen = {}

    def _create(**params):
        seen.update(params)
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1", expires_at=1700000000)

    monkeypatch.setattr(stripe.checkout.Session, "create", staticmethod(_create))
    provider = StripeCheckoutProvider("sk_test", "https://ok", "https://cancel")
    charge = provider.create_charge("100.00", "RUB", "Sub", {"payment_id": "p1", "user_id": 42})
    assert charge.charge_id == "cs_test_1"
    assert charge.expires_at is not None
    assert seen["client_reference_id"] == "p1"
    assert seen["line_items"][0]["price_data"]["unit_amount"] == 10000
    assert seen["line_items"][0]["price_data"]["currency"] == "rub"
    assert seen["payment_intent_data"] == {"setup_future_usage": "off_session"}


def test_stripe_status_and_errors(monkeypatch):
    provider = StripeCheckoutProvider("sk_test", "https://ok", "https://cancel")
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", staticmethod(
        lambda sid: SimpleNamespace(status="complete", payment_status="paid", payment_intent="pi_1",
                                    amount_total=10000, created=1)))
    status = provider.get_charge_status("cs_1")
    assert status.paid is True
    assert status.renewal_reference == "pi_1"

    def _down(sid):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", staticmethod(_down))
    with pytest.raises(ProviderUnavailable):
        provider.get_charge_status("cs_1")

    def _bad(sid):
        raise stripe.InvalidRequestError("no such session", "id")

    monkeypatch.setattr(stripe.checkout.Session, "expire", staticmethod(_bad))
    with pytest.raises(ProviderRejected):
        provider.cancel_charge("cs_1")


def test_stripe_renew_off_session(monkeypatch):
    created = {}
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", staticmethod(
        lambda ref: SimpleNamespace(id=ref, customer="cus_1", payment_method="pm_1")))

    def _create(**params):
        created.update(params)
        return SimpleNamespace(id="pi_2", status="succeeded")

    monkeypatch.setattr(stripe.PaymentIntent, "create", staticmethod(_create))
    provider = StripeCheckoutProvider("sk_test", "https://ok", "https://cancel")
    assert provider.can_renew(REDIRECT_CARD)
    result = provider.renew("pi_1", "100.00", "RUB", "Sub", {"payment_id": "r1", "user_id": 42})
    assert result.paid is True and result.charge_id == "pi_2"
    assert created["off_session"] is True and created["confirm"] is True
    assert created["customer"] == "cus_1" and created["payment_method"] == "pm_1"


def test_stripe_renew_needs_saved_method(monkeypatch):
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", staticmethod(
        lambda ref: SimpleNamespace(id=ref, customer=None, payment_method=None)))
    with pytest.raises(ProviderRejected):
        StripeCheckoutProvider("sk", "a", "b").renew("pi_1", "1.00", "RUB", "S", {"payment_id": "r"})


# -------- registry --------
def test_registry_lookup():
    provider = _robokassa()
    registry = ProviderRegistry([provider], {REDIRECT_CARD: "robokassa", CRYPTO_INVOICE: "cryptocloud"})
    assert registry.for_method(REDIRECT_CARD) is provider
    assert registry.methods() == [REDIRECT_CARD]
    with pytest.raises(ProviderRejected):
        registry.for_method(CRYPTO_INVOICE)
    with pytest.raises(ProviderRejected):
        registry.get("unknown")


def test_build_registry_routing():
    registry = build_registry({
        "ENABLED_METHODS": [REDIRECT_CARD, CRYPTO_INVOICE],
        "CARD_PROVIDER": "stripe",
        "STRIPE_SECRET_KEY": "sk",
    })
    assert registry.for_method(REDIRECT_CARD).name == "stripe"
    assert registry.for_method(CRYPTO_INVOICE).name == "cryptocloud"
    assert RECURRING_SUBSCRIPTION not in registry.methods()
    assert registry.get("robokassa").name == "robokassa"
