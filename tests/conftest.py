import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")

import json
import pytest
from app import create_app
from app.extensions import db
from app.models import Account, Listing


@pytest.fixture(scope="session")
def app():
    app = create_app()
    app.config.update(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
        APP_BASE_URL="http://example.test",
        WTF_CSRF_ENABLED=False,
        RATELIMIT_ENABLED=False,
        APP_ENV="testing",
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()


@pytest.fixture()
def make_account(app):
    def _make(email="seller@example.com", role="user", credits=0, **kw):
        with app.app_context():
            acct = Account(email=email, role=role, is_active=True, boost_credits=credits, **kw)
            db.session.add(acct)
            db.session.commit()
            return acct.id
    return _make


@pytest.fixture()
def make_listing(app):
    def _make(owner_id, title="2019 Civic", status="active", **kw):
        with app.app_context():
            listing = Listing(owner_id=owner_id, title=title, status=status, **kw)
            db.session.add(listing)
            db.session.commit()
            return listing.id
    return _make


@pytest.fixture()
def stripe_webhook(app, monkeypatch):
    """Trust any payload: signature verification is Stripe's code, not ours."""
    monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", "whsec_test_x")

    import stripe
    def _fake_construct_event(payload, sig_header, secret):
        assert secret == "whsec_test_x"
        return json.loads(payload)
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(_fake_construct_event))


class FakeSessions:
    def __init__(self):
        self.created = []
        self.retrievable = {}

    def create(self, params=None, options=None):
        self.created.append({"params": params, "options": options})
        sid = f"cs_test_{len(self.created)}"
        return type("Session", (), {"id": sid, "url": f"https://checkout.stripe.test/{sid}"})()

    def retrieve(self, session_id):
        import stripe
        if session_id not in self.retrievable:
            raise stripe.InvalidRequestError("No such checkout session", "id")
        return self.retrievable[session_id]


class FakeStripeClient:
    def __init__(self):
        self.checkout = type("Checkout", (), {})()
        self.checkout.sessions = FakeSessions()


@pytest.fixture()
def fake_stripe(app, monkeypatch):
    monkeypatch.setitem(app.config, "STRIPE_SECRET_KEY", "sk_test_x")
    client = FakeStripeClient()
    monkeypatch.setattr("app.services.gateway._client", lambda: client)
    return client.checkout.sessions
