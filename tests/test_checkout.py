from datetime import timedelta

from app.extensions import db
from app.models import Account, PaymentRecord
from app.utils.helpers import utcnow


def _login(client, account_id: int):
    # Simulate Flask-Login session
    with client.session_transaction() as sess:
        sess["_user_id"] = str(account_id)


def test_free_plan_activates_without_gateway(app, client, make_account, fake_stripe):
    aid = make_account()
    _login(client, aid)

    resp = client.post("/billing/checkout/subscription", json={"plan": "free"})
    assert resp.status_code == 200
    assert resp.get_json() == {"activated": True, "plan": "free", "autoRenew": False, "paymentRequired": False}
    assert fake_stripe.created == []

    with app.app_context():
        acct = db.session.get(Account, aid)
        assert acct.subscription_is_active is True
        assert acct.subscription_plan == "free"
        assert acct.subscription_end is None
        assert PaymentRecord.query.count() == 0


def test_paid_plan_opens_session_with_metadata(app, client, make_account, fake_stripe):
    aid = make_account(email="buyer@example.com")
    _login(client, aid)

    resp = client.post("/billing/checkout/subscription", json={"plan": "premium", "autoRenew": True})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["sessionId"] == "cs_test_1"
    assert body["redirectUrl"].startswith("https://checkout.stripe.test/")

    params = fake_stripe.created[0]["params"]
    assert params["mode"] == "subscription"
    assert params["line_items"][0]["price_data"]["unit_amount"] == 5999
    assert params["line_items"][0]["price_data"]["recurring"] == {"interval": "month"}
    assert params["metadata"] == {
        "accountId": str(aid), "purpose": "subscription", "planName": "premium", "autoRenew": "true",
    }
    assert params["success_url"] == "http://example.test/subscription/success?session_id={CHECKOUT_SESSION_ID}"
    assert fake_stripe.created[0]["options"]["idempotency_key"].startswith("checkout:")

    # Nothing granted before the gateway confirms
    with app.app_context():
        acct = db.session.get(Account, aid)
        assert acct.subscription_is_active is False
        assert acct.boost_credits == 0


def test_same_request_reuses_idempotency_key(client, make_account, fake_stripe):
    aid = make_account()
    _login(client, aid)
    client.post("/billing/checkout/subscription", json={"plan": "basic"})
    client.post("/billing/checkout/subscription", json={"plan": "basic"})
    keys = [c["options"]["idempotency_key"] for c in fake_stripe.created]
    assert keys[0] == keys[1]
    assert fake_stripe.created[0]["params"]["mode"] == "payment"


def test_subscription_precondition_errors(client, make_account, fake_stripe):
    active_end = utcnow() + timedelta(days=10)
    aid = make_account(subscription_plan="basic", subscription_is_active=True, subscription_end=active_end)
    _login(client, aid)

    assert client.post("/billing/checkout/subscription", json={"plan": "gold"}).status_code == 400
    resp = client.post("/billing/checkout/subscription", json={"plan": "basic"})
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "conflict"
    assert fake_stripe.created == []


def test_role_restricted_plan_is_forbidden(app, client, make_account, fake_stripe):
    from decimal import Decimal
    from app.models import PlanDefinition
    with app.app_context():
        db.session.add(PlanDefinition(name="dealer", display_name="Dealer", price=Decimal("149.99"),
                                      duration_days=30, features=[], boost_credits=50, allowed_roles=["dealer"]))
        db.session.commit()
    aid = make_account(role="user")
    _login(client, aid)
    assert client.post("/billing/checkout/subscription", json={"plan": "dealer"}).status_code == 403


def test_unconfigured_gateway_fails_closed(client, make_account):
    aid = make_account()
    _login(client, aid)
    resp = client.post("/billing/checkout/subscription", json={"plan": "basic"})
    assert resp.status_code == 503
    assert resp.get_json()["error"] == "service_unavailable"


def test_boost_checkout_carries_owner_and_duration(client, make_account, make_listing, fake_stripe):
    aid = make_account()
    lid = make_listing(aid)
    _login(client, aid)

    resp = client.post("/billing/checkout/boost", json={"listingId": lid, "durationDays": 7})
    assert resp.status_code == 200
    params = fake_stripe.created[0]["params"]
    assert params["mode"] == "payment"
    assert params["line_items"][0]["price_data"]["unit_amount"] == 3500
    assert params["metadata"] == {
        "accountId": str(aid), "purpose": "boost", "listingId": str(lid), "ownerId": str(aid), "durationDays": "7",
    }


def test_boost_checkout_preconditions(client, make_account, make_listing, fake_stripe):
    owner = make_account(email="owner@example.com")
    other = make_account(email="other@example.com")
    listing = make_listing(owner)
    sold = make_listing(owner, status="sold")
    boosted = make_listing(owner, is_boosted=True, boost_priority=50, boost_expiry=utcnow() + timedelta(days=2))

    _login(client, owner)
    assert client.post("/billing/checkout/boost", json={"listingId": listing, "durationDays": 5}).status_code == 400
    assert client.post("/billing/checkout/boost", json={"listingId": 9999, "durationDays": 7}).status_code == 404
    assert client.post("/billing/checkout/boost", json={"listingId": sold, "durationDays": 7}).status_code == 400
    assert client.post("/billing/checkout/boost", json={"listingId": boosted, "durationDays": 7}).status_code == 409

    _login(client, other)
    assert client.post("/billing/checkout/boost", json={"listingId": listing, "durationDays": 7}).status_code == 403
    assert fake_stripe.created == []


def test_checkout_requires_login(client):
    resp = client.post("/billing/checkout/boost", json={"listingId": 1, "durationDays": 7})
    assert resp.status_code == 401
    assert resp.get_json() == {"error": "unauthorized", "code": 401}
