from datetime import timedelta

import pytest

from app.errors import DuplicateEventError
from app.extensions import db
from app.models import ProcessedWebhookEvent
from app.services import idempotency
from app.utils.helpers import utcnow


def _event(eid="evt_1", etype="checkout.session.completed"):
    return {"id": eid, "type": etype, "livemode": False, "data": {"object": {}}}


class _Result:
    status = "applied"


def test_process_once_applies_then_reports_duplicate(app):
    calls = []

    def _apply(ev):
        calls.append(ev["id"])
        return _Result()

    with app.app_context():
        duplicate, result = idempotency.process_once(_event(), _apply)
        assert duplicate is False
        assert result.status == "applied"

        duplicate, result = idempotency.process_once(_event(), _apply)
        assert duplicate is True
        assert result is None

        assert calls == ["evt_1"]
        rec = ProcessedWebhookEvent.query.filter_by(event_id="evt_1").one()
        assert rec.meta["outcome"] == "applied"


def test_concurrent_record_is_reported_as_duplicate(app):
    # Second delivery passed the lookup before the first committed
    with app.app_context():
        idempotency.commit_processed(_event("evt_race"))
        with pytest.raises(DuplicateEventError):
            idempotency.commit_processed(_event("evt_race"))
        assert ProcessedWebhookEvent.query.filter_by(event_id="evt_race").count() == 1


def test_race_loser_rolls_back_its_mutations(app, make_account):
    from app.models import Account
    aid = make_account(credits=0)

    def _apply(ev):
        from app.services import credits
        credits.grant(aid, 5, reason="test")
        return _Result()

    with app.app_context():
        idempotency.commit_processed(_event("evt_twice"))
        # Simulate the lookup having missed: apply + record in one transaction
        _apply(_event("evt_twice"))
        with pytest.raises(DuplicateEventError):
            idempotency.commit_processed(_event("evt_twice"))
        assert db.session.get(Account, aid).boost_credits == 0


def test_prune_removes_only_old_records(app):
    with app.app_context():
        old = ProcessedWebhookEvent(event_id="evt_old", event_type="x", meta={}, processed_at=utcnow() - timedelta(days=45))
        new = ProcessedWebhookEvent(event_id="evt_new", event_type="x", meta={}, processed_at=utcnow() - timedelta(days=2))
        db.session.add_all([old, new])
        db.session.commit()

        deleted = idempotency.prune(30)
        assert deleted == 1
        assert [r.event_id for r in ProcessedWebhookEvent.query.all()] == ["evt_new"]
