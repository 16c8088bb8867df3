# clubgate_app/services/__init__.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from .access import AccessGranter
from .conversations import ConversationStore
from .notifications import Notifier
from .payment_store import PaymentStore
from .providers import build_registry
from .reconciliation import ReconciliationEngine
from .renewals import RenewalSweep
from .telegram_gateway import TelegramGateway


def init_services(app) -> None:
    """Builds the service graph into app.extensions; tests swap single entries for fakes."""
    cfg = app.config
    pricing = dict(
        price=cfg["SUBSCRIPTION_PRICE"],
        currency=cfg["SUBSCRIPTION_CURRENCY"],
        description=cfg["SUBSCRIPTION_DESCRIPTION"],
    )
    store = PaymentStore()
    providers = build_registry(cfg)
    gateway = TelegramGateway(cfg["TELEGRAM_BOT_TOKEN"], cfg["CHANNEL_ID"], timeout=cfg.get("PROVIDER_TIMEOUT", 30))
    granter = AccessGranter(gateway)
    notifier = Notifier(gateway, cfg.get("ADMINS") or [], cfg.get("SUPPORT_URL"))
    engine = ReconciliationEngine(store, providers, granter, notifier, **pricing)

    app.extensions["store"] = store
    app.extensions["providers"] = providers
    app.extensions["gateway"] = gateway
    app.extensions["granter"] = granter
    app.extensions["notifier"] = notifier
    app.extensions["engine"] = engine
    app.extensions["renewals"] = RenewalSweep(
        store, providers, engine,
        confirm_hours=cfg.get("RENEWAL_CONFIRM_HOURS", 20),
        **pricing,
    )
    app.extensions["conversations"] = ConversationStore(cfg.get("CONVERSATION_TTL_MINUTES", 10))
