# clubgate_app/services/providers/cryptocloud.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Mapping

from ...errors import ProviderRejected, ProviderUnavailable
from ..clock import utcnow
from .base import Charge, ChargeStatus, PaymentProvider, format_amount, http_call

log = logging.getLogger(__name__)

BASE_URL = "https://api.cryptocloud.plus/v2/"
PAID_STATUSES = {"paid", "overpaid"}
CLOSED_STATUSES = {"canceled", "cancelled", "expired"}


def normalize_invoice_id(value: str) -> str:
    """Postbacks send the bare id, the API answers with ``INV-`` prefixed uuids."""
    value = (value or "").strip()
    return value if value.upper().startswith("INV-") else f"INV-{value}"


class CryptoCloudProvider(PaymentProvider):
    name = "cryptocloud"

    def __init__(self, api_key: str, shop_id: str, invoice_ttl_minutes: int = 15, timeout: int = 30):
        self.api_key = api_key
        self.shop_id = shop_id
        self.invoice_ttl = timedelta(minutes=invoice_ttl_minutes)
        self.timeout = timeout

    def _post(self, endpoint: str, payload: dict):
        resp = http_call(
            self.name, "POST", BASE_URL + endpoint, timeout=self.timeout,
            json=payload,
            headers={"Authorization": f"Token {self.api_key}", "Content-Type": "application/json"},
        )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderUnavailable(self.name, f"{endpoint}: non-JSON answer") from exc
        if data.get("status") != "success":
            raise ProviderRejected(self.name, f"{endpoint}: {str(data.get('result') or data)[:200]}")
        return data.get("result")

    def create_charge(self, amount, currency: str, description: str, metadata: Mapping[str, Any]) -> Charge:
        payload = {
            "shop_id": self.shop_id,
            "amount": float(format_amount(amount)),
            "currency": currency.upper(),
            "order_id": str(metadata["payment_id"]),
        }
        if metadata.get("email"):
            payload["email"] = metadata["email"]
        result = self._post("invoice/create", payload) or {}
        if not result.get("uuid") or not result.get("link"):
            raise ProviderUnavailable(self.name, "invoice/create answered without uuid/link")
        return Charge(
            charge_id=normalize_invoice_id(result["uuid"]),
            url=result["link"],
            expires_at=utcnow() + self.invoice_ttl,
        )

    def get_charge_status(self, charge_id: str) -> ChargeStatus:
        result = self._post("invoice/merchant/info", {"uuids": [normalize_invoice_id(charge_id)]}) or []
        invoice = result[0] if result else None
        if not invoice:
            return ChargeStatus(paid=False, state="not_found")
        state = (invoice.get("status") or "").lower()
        return ChargeStatus(
            paid=state in PAID_STATUSES,
            raw_amount=invoice.get("amount"),
            raw_timestamp=invoice.get("created"),
            state=state,
            expired=state in CLOSED_STATUSES,
        )

    def cancel_charge(self, charge_id: str) -> None:
        self._post("invoice/merchant/canceled", {"uuid": normalize_invoice_id(charge_id)})
        log.info("cryptocloud invoice %s cancelled", charge_id)
