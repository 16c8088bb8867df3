# tests/conftest.py
# -*- coding: utf-8 -*-
import os
import sys
import pathlib
import tempfile
from types import SimpleNamespace

import pytest


# =====================================================================================
# Project root on sys.path (so "clubgate_app" and "config" import without install)
# =====================================================================================
def _add_project_root():
    here = pathlib.Path(__file__).resolve()
    for candidate in [here.parent, *here.parents]:
        if (candidate / "clubgate_app").is_dir():
            if str(candidate) not in sys.path:
                sys.path.insert(0, str(candidate))
            return candidate
    return None


PROJECT_ROOT = _add_project_root()


# =====================================================================================
# Test environment (no external services)
# =====================================================================================
@pytest.fixture(autouse=True, scope="session")
def _testing_env():
    os.environ["APP_ENV"] = "testing"
    os.environ["DISABLE_SCHEDULER"] = "1"
    yield


# =====================================================================================
# Flask app with a temporary SQLite file, schema created once per session
# =====================================================================================
@pytest.fixture(scope="session")
def app(_testing_env):
    fd, db_path = tempfile.mkstemp(prefix="clubgate_test_", suffix=".sqlite")
    os.close(fd)

    from config import TestingConfig
    from clubgate_app import create_app
    from clubgate_app.extensions import db

    class _Cfg(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{db_path}?check_same_thread=0&timeout=30"

    app = create_app(_Cfg)
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.engine.dispose()
    try:
        os.remove(db_path)
    except OSError:
        pass


@pytest.fixture(autouse=True)
def _clean_tables(app):
    yield
    from clubgate_app.extensions import db
    with app.app_context():
        db.session.rollback()
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    from clubgate_app.extensions import db
    with app.app_context():
        try:
            yield db.session
        finally:
            db.session.rollback()
            db.session.close()


# =====================================================================================
# External services mocks
#   - requests.get/post (no network)
# =====================================================================================
class _Resp:
    def __init__(self, status_code=200, json_data=None, text="OK"):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


@pytest.fixture(autouse=True)
def _mock_externals(monkeypatch):
    import requests
    monkeypatch.setattr(requests, "get", lambda *a, **k: _Resp(), raising=False)
    monkeypatch.setattr(requests, "post", lambda *a, **k: _Resp(), raising=False)
    yield


@pytest.fixture
def http(monkeypatch):
    """Scripted requests: http.queue(_Resp(...)) answers the next call, calls are recorded."""
    import requests

    state = SimpleNamespace(calls=[], answers=[])

    def _send(method):
        def _call(url, **kwargs):
            state.calls.append((method, url, kwargs))
            answer = state.answers.pop(0) if state.answers else _Resp()
            if isinstance(answer, Exception):
                raise answer
            return answer
        return _call

    monkeypatch.setattr(requests, "get", _send("GET"))
    monkeypatch.setattr(requests, "post", _send("POST"))
    state.queue = state.answers.append
    state.Resp = _Resp
    return state


# =====================================================================================
# Fakes: Telegram gateway and a scriptable payment provider
# =====================================================================================
class FakeGateway:
    def __init__(self):
        self.statuses = {}
        self.sent = []
        self.unbanned = []
        self.links = 0
        self.status_error = None
        self.invite_error = None
        self.unban_error = None
        self.send_error = None

    def member_status(self, user_id):
        if self.status_error is not None:
            raise self.status_error
        return self.statuses.get(user_id, "left")

    def create_invite_link(self, member_limit=1):
        if self.invite_error is not None:
            raise self.invite_error
        self.links += 1
        return f"https://t.me/+invite{self.links}"

    def unban(self, user_id):
        if self.unban_error is not None:
            raise self.unban_error
        self.unbanned.append(user_id)

    def send_message(self, chat_id, text, reply_markup=None, parse_mode=None):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((chat_id, text))

    def messages_to(self, chat_id):
        return [text for cid, text in self.sent if cid == chat_id]


def _make_fake_provider():
    from clubgate_app.models.payment import REDIRECT_CARD
    from clubgate_app.services.providers.base import Charge, ChargeStatus, PaymentProvider, RenewalResult

    class FakeProvider(PaymentProvider):
        name = "fakepay"

        def __init__(self):
            self.requires_email = False
            self.renewable = {REDIRECT_CARD}
            self.charges = {}
            self.created = []
            self.cancelled = []
            self.renewals = []
            self.expires_at = None
            self.renew_paid = True
            self.create_error = None
            self.status_error = None
            self.renew_error = None

        def create_charge(self, amount, currency, description, metadata):
            if self.create_error is not None:
                raise self.create_error
            self.created.append(dict(metadata))
            charge_id = f"ch_{len(self.created)}"
            self.charges[charge_id] = ChargeStatus(paid=False, state="open")
            return Charge(charge_id=charge_id, url=f"https://pay.example/{charge_id}", expires_at=self.expires_at)

        def mark_paid(self, charge_id):
            self.charges[charge_id] = ChargeStatus(paid=True, state="paid", renewal_reference=f"pm_{charge_id}")

        def mark_expired(self, charge_id):
            self.charges[charge_id] = ChargeStatus(paid=False, state="expired", expired=True)

        def get_charge_status(self, charge_id):
            if self.status_error is not None:
                raise self.status_error
            return self.charges.get(charge_id, ChargeStatus(paid=False, state="unknown"))

        def cancel_charge(self, charge_id):
            self.cancelled.append(charge_id)

        def can_renew(self, payment_method):
            return payment_method in self.renewable

        def renew(self, reference, amount, currency, description, metadata):
            if self.renew_error is not None:
                raise self.renew_error
            self.renewals.append((reference, metadata["payment_id"]))
            charge_id = f"rn_{len(self.renewals)}"
            return RenewalResult(charge_id=charge_id, paid=self.renew_paid, renewal_reference=charge_id)

    return FakeProvider()


@pytest.fixture(autouse=True)
def services(app, monkeypatch):
    """Rebuilds the service graph over the fakes for every test."""
    from clubgate_app.models.payment import CRYPTO_INVOICE, RECURRING_SUBSCRIPTION, REDIRECT_CARD
    from clubgate_app.services.access import AccessGranter
    from clubgate_app.services.notifications import Notifier
    from clubgate_app.services.providers import ProviderRegistry
    from clubgate_app.services.reconciliation import ReconciliationEngine
    from clubgate_app.services.renewals import RenewalSweep

    real = app.extensions["providers"]
    fake = _make_fake_provider()
    registry = ProviderRegistry(
        [real.get("robokassa"), real.get("cryptocloud"), real.get("stripe"), fake],
        {REDIRECT_CARD: "robokassa", RECURRING_SUBSCRIPTION: "robokassa", CRYPTO_INVOICE: "cryptocloud"},
    )
    gateway = FakeGateway()
    store = app.extensions["store"]
    granter = AccessGranter(gateway)
    notifier = Notifier(gateway, app.config["ADMINS"], app.config.get("SUPPORT_URL"))
    pricing = dict(price="100.00", currency="RUB", description="Test subscription")
    engine = ReconciliationEngine(store, registry, granter, notifier, **pricing)
    renewals = RenewalSweep(store, registry, engine, **pricing)

    for key, value in {
        "providers": registry,
        "gateway": gateway,
        "granter": granter,
        "notifier": notifier,
        "engine": engine,
        "renewals": renewals,
    }.items():
        monkeypatch.setitem(app.extensions, key, value)

    return SimpleNamespace(
        gateway=gateway, provider=fake, registry=registry, store=store,
        granter=granter, notifier=notifier, engine=engine, renewals=renewals,
    )


# =====================================================================================
# Factories
# =====================================================================================
@pytest.fixture
def make_payment(services):
    """Persists a payment; defaults to a waiting fakepay card payment."""
    counter = {"n": 0}

    def _make(user_id=42, **fields):
        from clubgate_app.models.payment import REDIRECT_CARD, WAITING_FOR_REDIRECT
        counter["n"] += 1
        data = {
            "id": f"redirect-card_{1700000000000 + counter['n']}_{user_id}",
            "user_id": user_id,
            "payment_method": REDIRECT_CARD,
            "provider": "fakepay",
            "status": WAITING_FOR_REDIRECT,
            "amount": "100.00",
            "currency": "RUB",
            "provider_reference": f"ch_ext_{counter['n']}",
        }
        data.update(fields)
        return services.store.create(**data)

    return _make
