import json
from datetime import timedelta
from decimal import Decimal

from app.extensions import db
from app.models import Account, BoostHistoryEntry, Listing, PaymentRecord, ProcessedWebhookEvent
from app.utils.helpers import as_utc, utcnow


def _checkout_event(eid, metadata, *, session_id="cs_test_1", amount_total=3500, payment_status="paid",
                    etype="checkout.session.completed"):
    return {
        "id": eid,
        "type": etype,
        "livemode": False,
        "data": {"object": {
            "id": session_id,
            "object": "checkout.session",
            "payment_status": payment_status,
            "amount_total": amount_total,
            "currency": "usd",
            "metadata": metadata,
        }},
    }


def _post(client, event):
    return client.post(
        "/webhooks/stripe",
        data=json.dumps(event),
        headers={"Stripe-Signature": "t=1,v1=fake", "Content-Type": "application/json"},
    )


def _boost_meta(account_id, listing_id, days=7, owner_id=None):
    return {
        "accountId": str(account_id),
        "purpose": "boost",
        "listingId": str(listing_id),
        "ownerId": str(owner_id or account_id),
        "durationDays": str(days),
    }


def test_paid_boost_activates_listing(app, client, make_account, make_listing, stripe_webhook):
    aid = make_account(credits=0)
    lid = make_listing(aid)
    before = utcnow()

    resp = _post(client, _checkout_event("evt_boost_1", _boost_meta(aid, lid)))
    assert resp.status_code == 200
    assert resp.get_json() == {"received": True}

    with app.app_context():
        listing = db.session.get(Listing, lid)
        assert listing.is_boosted is True
        assert listing.boost_priority == 50
        expiry = as_utc(listing.boost_expiry)
        assert before + timedelta(days=7) <= expiry <= utcnow() + timedelta(days=7)

        history = BoostHistoryEntry.query.filter_by(listing_id=lid).all()
        assert len(history) == 1
        assert history[0].payment_method == "stripe"
        assert history[0].transaction_id == "cs_test_1"

        payment = PaymentRecord.query.one()
        assert payment.status == "completed"
        assert payment.amount == Decimal("35.00")
        assert payment.purpose == "boost"
        assert db.session.get(Account, aid).total_spent == Decimal("35.00")


def test_replayed_event_applies_once(app, client, make_account, make_listing, stripe_webhook):
    aid = make_account()
    lid = make_listing(aid)
    event = _checkout_event("evt_dup", _boost_meta(aid, lid))

    assert _post(client, event).get_json() == {"received": True}
    second = _post(client, event)
    assert second.status_code == 200
    assert second.get_json() == {"received": True, "duplicate": True}

    with app.app_context():
        assert PaymentRecord.query.count() == 1
        assert BoostHistoryEntry.query.count() == 1
        assert ProcessedWebhookEvent.query.filter_by(event_id="evt_dup").count() == 1
        assert db.session.get(Account, aid).total_spent == Decimal("35.00")


def test_same_session_under_new_event_id_is_not_reapplied(app, client, make_account, make_listing, stripe_webhook):
    aid = make_account()
    lid = make_listing(aid)
    _post(client, _checkout_event("evt_a", _boost_meta(aid, lid)))
    resp = _post(client, _checkout_event("evt_b", _boost_meta(aid, lid), etype="checkout.session.async_payment_succeeded"))
    assert resp.status_code == 200
    with app.app_context():
        assert PaymentRecord.query.count() == 1
        assert ProcessedWebhookEvent.query.filter_by(event_id="evt_b").one().meta["outcome"] == "duplicate"


def test_reowned_listing_records_payment_without_boost(app, client, make_account, make_listing, stripe_webhook):
    payer = make_account(email="payer@example.com")
    new_owner = make_account(email="new@example.com")
    lid = make_listing(new_owner)

    resp = _post(client, _checkout_event("evt_reowned", _boost_meta(payer, lid, owner_id=payer)))
    assert resp.status_code == 200

    with app.app_context():
        listing = db.session.get(Listing, lid)
        assert listing.is_boosted is False
        assert BoostHistoryEntry.query.count() == 0
        payment = PaymentRecord.query.one()
        assert payment.account_id == payer
        assert payment.status == "completed"
        assert payment.meta["skipReason"] == "listing_reowned"
        assert db.session.get(Account, payer).total_spent == Decimal("0.00")


def test_sold_listing_is_not_boosted(app, client, make_account, make_listing, stripe_webhook):
    aid = make_account()
    lid = make_listing(aid, status="sold")
    _post(client, _checkout_event("evt_sold", _boost_meta(aid, lid)))
    with app.app_context():
        assert db.session.get(Listing, lid).is_boosted is False
        assert PaymentRecord.query.one().meta["skipReason"] == "listing_sold"
        assert db.session.get(Account, aid).total_spent == Decimal("0.00")


def test_settlement_extends_boost_won_by_credits(app, client, make_account, make_listing, stripe_webhook):
    aid = make_account()
    current_expiry = utcnow() + timedelta(days=3)
    lid = make_listing(aid, is_boosted=True, boost_priority=50, boost_expiry=current_expiry)

    _post(client, _checkout_event("evt_stack", _boost_meta(aid, lid, days=7)))
    with app.app_context():
        expiry = as_utc(db.session.get(Listing, lid).boost_expiry)
        assert abs((expiry - (current_expiry + timedelta(days=7))).total_seconds()) < 1
        assert "extendedFrom" in PaymentRecord.query.one().meta


def test_paid_subscription_grants_plan_and_credits(app, client, make_account, stripe_webhook):
    aid = make_account(credits=2)
    meta = {"accountId": str(aid), "purpose": "subscription", "planName": "premium", "autoRenew": "true"}
    resp = _post(client, _checkout_event("evt_sub", meta, session_id="cs_sub", amount_total=5999))
    assert resp.status_code == 200

    with app.app_context():
        acct = db.session.get(Account, aid)
        assert acct.subscription_plan == "premium"
        assert acct.subscription_is_active is True
        assert acct.subscription_auto_renew is True
        assert as_utc(acct.subscription_end) > utcnow() + timedelta(days=29)
        assert acct.boost_credits == 22
        assert acct.total_spent == Decimal("59.99")
        payment = PaymentRecord.query.one()
        assert payment.purpose == "subscription"
        assert payment.transaction_id == "cs_sub"


def test_unpaid_and_orphan_sessions_are_acknowledged(app, client, make_account, make_listing, stripe_webhook):
    aid = make_account()
    lid = make_listing(aid)
    assert _post(client, _checkout_event("evt_unpaid", _boost_meta(aid, lid), payment_status="unpaid")).status_code == 200
    assert _post(client, _checkout_event("evt_orphan", _boost_meta(4242, lid))).status_code == 200
    assert _post(client, {"id": "evt_other", "type": "invoice.created", "data": {"object": {}}}).status_code == 200
    assert _post(client, {"id": "evt_subupd", "type": "customer.subscription.updated",
                          "data": {"object": {"id": "sub_1", "status": "active"}}}).status_code == 200

    with app.app_context():
        assert db.session.get(Listing, lid).is_boosted is False
        assert PaymentRecord.query.count() == 0
        assert ProcessedWebhookEvent.query.count() == 4


def test_bad_signature_is_rejected_without_writes(app, client, monkeypatch):
    monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", "whsec_test_x")
    import stripe

    def _reject(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("bad sig", sig_header)
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(_reject))

    resp = _post(client, {"id": "evt_forged", "type": "checkout.session.completed", "data": {"object": {}}})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "invalid_signature"
    with app.app_context():
        assert ProcessedWebhookEvent.query.count() == 0


def test_missing_secret_fails_closed(client):
    resp = _post(client, {"id": "evt_x", "type": "checkout.session.completed"})
    assert resp.status_code == 503


def test_malformed_event(client, stripe_webhook):
    assert _post(client, {"type": "checkout.session.completed"}).status_code == 400


def test_transient_failure_is_not_recorded(app, client, make_account, make_listing, stripe_webhook, monkeypatch):
    from sqlalchemy.exc import OperationalError

    def _db_down(event, **kw):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))
    monkeypatch.setattr("app.blueprints.webhooks.routes.reconcile", _db_down)

    resp = _post(client, {"id": "evt_retry", "type": "checkout.session.completed", "data": {"object": {}}})
    assert resp.status_code == 503
    with app.app_context():
        assert ProcessedWebhookEvent.query.count() == 0


def test_handler_crash_is_recorded_and_acknowledged(app, client, stripe_webhook, monkeypatch):
    def _boom(event, **kw):
        raise KeyError("metadata")
    monkeypatch.setattr("app.blueprints.webhooks.routes.reconcile", _boom)

    resp = _post(client, {"id": "evt_crash", "type": "checkout.session.completed", "data": {"object": {}}})
    assert resp.status_code == 200
    with app.app_context():
        rec = ProcessedWebhookEvent.query.filter_by(event_id="evt_crash").one()
        assert rec.notes == "handler_error:KeyError"


def test_route_uses_the_event_returned_by_verification(app, client, monkeypatch):
    monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", "whsec_test_x")
    import stripe

    def _verified(payload, sig_header, secret):
        return {"id": "evt_verified", "type": "invoice.created", "data": {"object": {}}}
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(_verified))

    resp = _post(client, {"id": "evt_body", "type": "invoice.created", "data": {"object": {}}})
    assert resp.status_code == 200
    with app.app_context():
        assert [r.event_id for r in ProcessedWebhookEvent.query.all()] == ["evt_verified"]


def test_verified_event_without_id_is_malformed(app, client, monkeypatch):
    monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", "whsec_test_x")
    import stripe
    monkeypatch.setattr(stripe.Webhook, "construct_event", staticmethod(lambda payload, sig_header, secret: None))

    resp = _post(client, {"id": "evt_x", "type": "invoice.created"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "malformed_event"


def test_settlement_keeps_higher_priority_of_active_boost(app, client, make_account, make_listing, stripe_webhook):
    aid = make_account()
    current_expiry = utcnow() + timedelta(days=2)
    lid = make_listing(aid, is_boosted=True, boost_priority=100, boost_expiry=current_expiry)

    _post(client, _checkout_event("evt_admin_stack", _boost_meta(aid, lid, days=3)))
    with app.app_context():
        listing = db.session.get(Listing, lid)
        assert listing.boost_priority == 100
        assert abs((as_utc(listing.boost_expiry) - (current_expiry + timedelta(days=3))).total_seconds()) < 1
