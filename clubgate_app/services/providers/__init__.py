# clubgate_app/services/providers/__init__.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Dict, Iterable

from ...errors import ProviderRejected
from ...models.payment import CRYPTO_INVOICE, RECURRING_SUBSCRIPTION, REDIRECT_CARD
from ..signatures import RobokassaSignature
from .base import Charge, ChargeStatus, PaymentProvider, RenewalResult
from .cryptocloud import CryptoCloudProvider
from .robokassa import RobokassaProvider
from .stripe_checkout import StripeCheckoutProvider


class ProviderRegistry:
    """Adapters by name, plus which adapter serves each payment method."""

    def __init__(self, providers: Iterable[PaymentProvider], method_map: Dict[str, str]):
        self._providers = {p.name: p for p in providers}
        self._methods = {m: name for m, name in method_map.items() if name in self._providers}

    def get(self, name: str) -> PaymentProvider:
        try:
            return self._providers[name]
        except KeyError:
            raise ProviderRejected(name or "?", "provider is not configured") from None

    def for_method(self, method: str) -> PaymentProvider:
        name = self._methods.get(method)
        if not name:
            raise ProviderRejected(method, "payment method is not enabled")
        return self._providers[name]

    def methods(self) -> list[str]:
        return list(self._methods)


def build_registry(config) -> ProviderRegistry:
    timeout = config.get("PROVIDER_TIMEOUT", 30)
    signer = RobokassaSignature(
        config.get("ROBOKASSA_LOGIN", ""),
        config.get("ROBOKASSA_PASS1", ""),
        config.get("ROBOKASSA_PASS2", ""),
        params_mode=config.get("ROBOKASSA_SIGNATURE_PARAMS", "all"),
        prefix=config.get("ROBOKASSA_PARAM_PREFIX", "Shp_"),
    )
    providers = [
        RobokassaProvider(
            signer,
            test_mode=config.get("ROBOKASSA_TEST_MODE", False),
            fiscal_receipt=config.get("ROBOKASSA_FISCAL_RECEIPT", False),
            tax=config.get("ROBOKASSA_TAX", "none"),
            timeout=timeout,
        ),
        CryptoCloudProvider(
            config.get("CRYPTOCLOUD_API_KEY", ""),
            config.get("CRYPTOCLOUD_SHOP_ID", ""),
            invoice_ttl_minutes=config.get("CRYPTO_INVOICE_TTL_MINUTES", 15),
            timeout=timeout,
        ),
        StripeCheckoutProvider(
            config.get("STRIPE_SECRET_KEY", ""),
            config.get("STRIPE_SUCCESS_URL", ""),
            config.get("STRIPE_CANCEL_URL", ""),
        ),
    ]
    enabled = set(config.get("ENABLED_METHODS") or [])
    method_map = {
        REDIRECT_CARD: config.get("CARD_PROVIDER", "robokassa"),
        RECURRING_SUBSCRIPTION: RobokassaProvider.name,
        CRYPTO_INVOICE: CryptoCloudProvider.name,
    }
    method_map = {m: p for m, p in method_map.items() if m in enabled}
    return ProviderRegistry(providers, method_map)


__all__ = [
    "Charge",
    "ChargeStatus",
    "RenewalResult",
    "PaymentProvider",
    "ProviderRegistry",
    "RobokassaProvider",
    "CryptoCloudProvider",
    "StripeCheckoutProvider",
    "build_registry",
]
