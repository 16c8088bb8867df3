# clubgate_app/services/providers/base.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Mapping, Optional

import requests

from ...errors import ProviderRejected, ProviderUnavailable


@dataclass(frozen=True)
class Charge:
    charge_id: str
    url: str
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChargeStatus:
    """Provider status normalised to ``paid``; the native value is kept in ``state``."""
    paid: bool
    raw_amount: Any = None
    raw_timestamp: Any = None
    state: Optional[str] = None
    expired: bool = False
    renewal_reference: Optional[str] = None


@dataclass(frozen=True)
class RenewalResult:
    charge_id: str
    paid: bool
    renewal_reference: Optional[str] = None


def format_amount(amount) -> str:
    return str(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def to_minor_units(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value) -> str:
    return format_amount(Decimal(int(value)) / 100)


def http_call(provider: str, method: str, url: str, timeout: int = 30, **kwargs) -> requests.Response:
    """requests wrapper: transport errors and 5xx -> ProviderUnavailable, 4xx -> ProviderRejected."""
    send = requests.get if method.upper() == "GET" else requests.post
    try:
        resp = send(url, timeout=timeout, **kwargs)
    except requests.RequestException as exc:
        raise ProviderUnavailable(provider, f"{method} {url}: {exc}") from exc
    if resp.status_code >= 500:
        raise ProviderUnavailable(provider, f"HTTP {resp.status_code}")
    if resp.status_code >= 400:
        raise ProviderRejected(provider, f"HTTP {resp.status_code}: {(resp.text or '')[:200]}")
    return resp


class PaymentProvider:
    """Uniform capability set over one payment processor."""

    name = "abstract"
    requires_email = False

    def create_charge(self, amount, currency: str, description: str, metadata: Mapping[str, Any]) -> Charge:
        raise NotImplementedError

    def get_charge_status(self, charge_id: str) -> ChargeStatus:
        raise NotImplementedError

    def cancel_charge(self, charge_id: str) -> None:
        raise NotImplementedError

    def can_renew(self, payment_method: str) -> bool:
        return False

    def renew(self, reference: str, amount, currency: str, description: str,
              metadata: Mapping[str, Any]) -> RenewalResult:
        raise ProviderRejected(self.name, "merchant-initiated renewals are not supported")
