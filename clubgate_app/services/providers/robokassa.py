# clubgate_app/services/providers/robokassa.py
# -*- coding: utf-8 -*-
"""Robokassa: signed redirect checkout, OpStateExt polling, PreviousInvoiceID renewals."""
from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from typing import Any, Mapping
from urllib.parse import quote, urlencode

from ...errors import ProviderRejected, ProviderUnavailable
from ...models.payment import RECURRING_SUBSCRIPTION
from ..signatures import RobokassaSignature
from .base import Charge, ChargeStatus, PaymentProvider, RenewalResult, format_amount, http_call

log = logging.getLogger(__name__)

MERCHANT_URL = "https://auth.robokassa.ru/Merchant/Index.aspx"
OPSTATE_URL = "https://auth.robokassa.ru/Merchant/WebService/Service.asmx/OpStateExt"
RECURRING_URL = "https://auth.robokassa.ru/Merchant/Recurring"

STATE_PAID = 100
STATE_CANCELLED = 10
STATE_NAMES = {
    5: "initiated",
    10: "cancelled",
    50: "received",
    60: "returned",
    80: "suspended",
    100: "paid",
}
RESULT_OK = 0
RESULT_INVOICE_NOT_FOUND = 3


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(node, *path):
    for name in path:
        if node is None:
            return None
        node = next((c for c in node if _local(c.tag) == name), None)
    return node


def _text(node, *path):
    found = _child(node, *path)
    return found.text.strip() if found is not None and found.text else None


def parse_op_state(body: str) -> ChargeStatus:
    """Parses the OpStateExt XML answer into a ChargeStatus."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise ProviderUnavailable("robokassa", f"unreadable OpState answer: {exc}") from exc

    result_code = _text(root, "Result", "Code")
    if result_code is not None and int(result_code) != RESULT_OK:
        if int(result_code) == RESULT_INVOICE_NOT_FOUND:
            return ChargeStatus(paid=False, state="not_found")
        raise ProviderRejected("robokassa", f"OpState result {result_code}: {_text(root, 'Result', 'Description')}")

    state_code = _text(root, "State", "Code")
    if state_code is None:
        return ChargeStatus(paid=False, state="unknown")
    code = int(state_code)
    return ChargeStatus(
        paid=code == STATE_PAID,
        raw_amount=_text(root, "Info", "OutSum"),
        raw_timestamp=_text(root, "State", "StateDate"),
        state=STATE_NAMES.get(code, str(code)),
        expired=code == STATE_CANCELLED,
    )


class RobokassaProvider(PaymentProvider):
    name = "robokassa"

    def __init__(self, signer: RobokassaSignature, test_mode: bool = False,
                 fiscal_receipt: bool = False, tax: str = "none", timeout: int = 30):
        self.signer = signer
        self.test_mode = test_mode
        self.fiscal_receipt = fiscal_receipt
        self.tax = tax
        self.timeout = timeout

    @property
    def requires_email(self) -> bool:
        return self.fiscal_receipt

    def _receipt(self, out_sum: str, description: str) -> str:
        receipt = {
            "items": [{
                "name": description[:128],
                "quantity": 1,
                "sum": float(out_sum),
                "payment_method": "full_payment",
                "payment_object": "service",
                "tax": self.tax,
            }]
        }
        # signed url-encoded once; urlencode() encodes it a second time in the link
        return quote(json.dumps(receipt, ensure_ascii=False, separators=(",", ":")))

    def create_charge(self, amount, currency: str, description: str, metadata: Mapping[str, Any]) -> Charge:
        inv_id = str(metadata["payment_id"])
        out_sum = format_amount(amount)
        custom = {}
        if metadata.get("user_id") is not None:
            custom[f"{self.signer.prefix}user_id"] = str(metadata["user_id"])

        receipt = None
        email = metadata.get("email")
        if self.fiscal_receipt:
            if not email:
                raise ProviderRejected(self.name, "email is required for the fiscal receipt")
            receipt = self._receipt(out_sum, description)

        query = {
            "MerchantLogin": self.signer.login,
            "OutSum": out_sum,
            "InvId": inv_id,
            "Description": description,
            "SignatureValue": self.signer.payment(out_sum, inv_id, custom, receipt),
            "Culture": "ru",
        }
        if currency and currency.upper() != "RUB":
            query["OutSumCurrency"] = currency.upper()
        if receipt:
            query["Receipt"] = receipt
        if email:
            query["Email"] = email
        if metadata.get("recurring"):
            query["Recurring"] = "true"
        if self.test_mode:
            query["IsTest"] = "1"
        query.update(custom)
        return Charge(charge_id=inv_id, url=f"{MERCHANT_URL}?{urlencode(query)}")

    def get_charge_status(self, charge_id: str) -> ChargeStatus:
        resp = http_call(
            self.name, "GET", OPSTATE_URL, timeout=self.timeout,
            params={
                "MerchantLogin": self.signer.login,
                "InvoiceID": charge_id,
                "Signature": self.signer.op_state(charge_id),
            },
        )
        status = parse_op_state(resp.text)
        if status.paid:
            return ChargeStatus(
                paid=True, raw_amount=status.raw_amount, raw_timestamp=status.raw_timestamp,
                state=status.state, renewal_reference=charge_id,
            )
        return status

    def cancel_charge(self, charge_id: str) -> None:
        # no merchant API to void an unpaid invoice; it just never gets paid
        log.info("robokassa has no cancel endpoint, invoice %s left to lapse", charge_id)

    def can_renew(self, payment_method: str) -> bool:
        return payment_method == RECURRING_SUBSCRIPTION

    def renew(self, reference: str, amount, currency: str, description: str,
              metadata: Mapping[str, Any]) -> RenewalResult:
        inv_id = str(metadata["payment_id"])
        out_sum = format_amount(amount)
        resp = http_call(
            self.name, "POST", RECURRING_URL, timeout=self.timeout,
            data={
                "MerchantLogin": self.signer.login,
                "InvoiceID": inv_id,
                "PreviousInvoiceID": reference,
                "OutSum": out_sum,
                "Description": description,
                "SignatureValue": self.signer.recurring(out_sum, inv_id),
            },
        )
        body = (resp.text or "").strip()
        if not body.upper().startswith("OK"):
            raise ProviderRejected(self.name, f"recurring charge refused: {body[:200]}")
        # accepted; the outcome arrives on the result URL
        return RenewalResult(charge_id=inv_id, paid=False)
