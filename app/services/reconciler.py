"""
Entitlement reconciler: turns a verified Stripe event into account and
listing changes.

Handlers stage their writes on db.session and never commit; the idempotency
guard commits them together with the processed-event record. Conditions that
a redelivery cannot fix (unpaid session, unknown account, listing sold since
checkout) are logged and acknowledged. Storage errors propagate so the
webhook answers 503 and Stripe retries.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional

from flask import current_app

from app.billing.plans import get_plan_store
from app.billing.state import is_boost_active
from app.errors import StaleStateError
from app.extensions import db
from app.models import Account, Listing, PaymentRecord
from app.models.listing import BOOST_TYPE_USER
from app.models.payment import PURPOSE_BOOST, PURPOSE_SUBSCRIPTION, STATUS_COMPLETED
from app.services import credits
from app.services.boosts import record_history
from app.services.subscriptions import activate_subscription
from app.utils.helpers import as_utc, from_minor_units, isoformat, parse_bool, round_currency, safe_int, utcnow

APPLIED = "applied"
SKIPPED = "skipped"
IGNORED = "ignored"
DUPLICATE = "duplicate"


class EventKind(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    CHECKOUT_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"

    @classmethod
    def parse(cls, event_type: str | None) -> Optional["EventKind"]:
        try:
            return cls(event_type)
        except ValueError:
            return None


@dataclass(frozen=True)
class Outcome:
    status: str
    reason: str | None = None
    detail: dict = field(default_factory=dict)


def reconcile(event: dict, *, now: datetime | None = None) -> Outcome:
    now = now or utcnow()
    kind = EventKind.parse(event.get("type"))
    if kind is None:
        current_app.logger.info(
            "billing.reconcile.unhandled_event",
            extra={"event_id": event.get("id"), "event_type": event.get("type")},
        )
        return Outcome(IGNORED, "unhandled_event_type")
    obj = (event.get("data") or {}).get("object") or {}
    return _HANDLERS[kind](event, obj, now)


# ----- checkout.session.* -----

def _handle_checkout_paid(event: dict, session: dict, now: datetime) -> Outcome:
    session_id = session.get("id")
    log_ctx = {"event_id": event.get("id"), "session_id": session_id}

    if session.get("payment_status") != "paid":
        current_app.logger.info(
            "billing.reconcile.not_paid",
            extra={**log_ctx, "payment_status": session.get("payment_status")},
        )
        return Outcome(IGNORED, "not_paid")

    meta = session.get("metadata") or {}
    account_id = safe_int(meta.get("accountId"))
    account = db.session.get(Account, account_id) if account_id is not None else None
    if account is None:
        current_app.logger.warning("billing.reconcile.unknown_account", extra={**log_ctx, "account_id": account_id})
        return Outcome(IGNORED, "unknown_account")

    if session_id and _already_settled(session_id):
        current_app.logger.info("billing.reconcile.already_settled", extra=log_ctx)
        return Outcome(DUPLICATE, "already_settled")

    purpose = meta.get("purpose")
    if purpose == PURPOSE_BOOST:
        return _settle_boost(session, meta, account, now)
    if purpose == PURPOSE_SUBSCRIPTION or meta.get("planName"):
        return _settle_subscription(session, meta, account, now)

    current_app.logger.warning("billing.reconcile.unknown_purpose", extra={**log_ctx, "purpose": purpose})
    return Outcome(IGNORED, "unknown_purpose")


def _already_settled(session_id: str) -> bool:
    return (
        db.session.query(PaymentRecord.id)
        .filter(PaymentRecord.transaction_id == session_id, PaymentRecord.status == STATUS_COMPLETED)
        .first()
        is not None
    )


def _paid_amount(session: dict, fallback):
    if session.get("amount_total") is not None:
        return from_minor_units(session["amount_total"])
    return round_currency(fallback)


def _record_payment(account: Account, session: dict, *, amount, purpose: str, meta: dict,
                    count_spend: bool = True) -> PaymentRecord:
    record = PaymentRecord(
        account_id=account.id,
        amount=amount,
        currency=(session.get("currency") or current_app.config.get("BILLING_CURRENCY", "usd")).upper(),
        method="stripe",
        transaction_id=session.get("id"),
        purpose=purpose,
        status=STATUS_COMPLETED,
        meta=meta,
    )
    db.session.add(record)
    if count_spend:
        credits.add_spend(account.id, amount)
    return record


def _lock_listing(listing_id: int | None) -> Listing | None:
    if listing_id is None:
        return None
    # FOR UPDATE serializes settlement against a concurrent credit boost (no-op on SQLite)
    return db.session.query(Listing).filter(Listing.id == listing_id).with_for_update().one_or_none()


def _check_settleable(listing: Listing | None, expected_owner_id: int, days: int | None) -> None:
    if days is None or days <= 0:
        raise StaleStateError("Boost duration missing from session", reason="invalid_duration")
    if listing is None:
        raise StaleStateError("Listing no longer exists", reason="listing_missing")
    if listing.owner_id != expected_owner_id:
        raise StaleStateError("Listing changed owner after checkout", reason="listing_reowned")
    if listing.is_terminal:
        raise StaleStateError(f"Listing is {listing.status}", reason=f"listing_{listing.status}")


def _settle_boost(session: dict, meta: dict, account: Account, now: datetime) -> Outcome:
    listing_id = safe_int(meta.get("listingId"))
    days = safe_int(meta.get("durationDays"))
    expected_owner_id = safe_int(meta.get("ownerId")) or account.id
    amount = _paid_amount(session, credits.boost_cost(days or 0))
    listing = _lock_listing(listing_id)

    try:
        _check_settleable(listing, expected_owner_id, days)
    except StaleStateError as e:
        # Paid but not applicable: keep the history entry, grant nothing, leave total_spent alone
        _record_payment(
            account, session, amount=amount, purpose=PURPOSE_BOOST,
            meta={"listingId": listing_id, "durationDays": days, "skipReason": e.reason},
            count_spend=False,
        )
        current_app.logger.warning(
            "billing.reconcile.boost_skipped",
            extra={"account_id": account.id, "listing_id": listing_id, "reason": e.reason, "session_id": session.get("id")},
        )
        return Outcome(SKIPPED, e.reason, {"listingId": listing_id})

    payment_meta = {"listingId": listing.id, "durationDays": days}
    priority = int(current_app.config.get("BOOST_USER_PRIORITY", 50))
    start = now
    if is_boost_active(listing, now):
        # A credit boost landed between checkout and settlement. Paid days extend the
        # current expiry instead of overwriting it, and the higher priority is kept.
        start = as_utc(listing.boost_expiry)
        priority = max(priority, listing.boost_priority or 0)
        payment_meta["extendedFrom"] = isoformat(start)
    expires_at = start + timedelta(days=days)

    listing.is_boosted = True
    listing.boost_expiry = expires_at
    listing.boost_priority = priority
    record_history(
        listing,
        boosted_by=account.id,
        boost_type=BOOST_TYPE_USER,
        days=days,
        boosted_at=now,
        expires_at=expires_at,
        payment_method="stripe",
        transaction_id=session.get("id"),
    )
    _record_payment(account, session, amount=amount, purpose=PURPOSE_BOOST, meta=payment_meta)
    current_app.logger.info(
        "billing.reconcile.boost_applied",
        extra={"account_id": account.id, "listing_id": listing.id, "days": days,
               "expires_at": isoformat(expires_at), "session_id": session.get("id")},
    )
    return Outcome(APPLIED, detail={"listingId": listing.id, "boostExpiry": isoformat(expires_at)})


def _settle_subscription(session: dict, meta: dict, account: Account, now: datetime) -> Outcome:
    plan_name = meta.get("planName")
    # Plain get(): a plan retired after checkout is still honoured once paid
    plan = get_plan_store().get(plan_name)
    if plan is None:
        current_app.logger.warning(
            "billing.reconcile.unknown_plan",
            extra={"account_id": account.id, "plan": plan_name, "session_id": session.get("id")},
        )
        return Outcome(IGNORED, "unknown_plan")

    auto_renew = parse_bool(meta.get("autoRenew"))
    balance = activate_subscription(account, plan, auto_renew=auto_renew, now=now)
    _record_payment(
        account, session,
        amount=_paid_amount(session, plan.price),
        purpose=PURPOSE_SUBSCRIPTION,
        meta={"planName": plan.name, "autoRenew": auto_renew, "subscriptionId": session.get("subscription")},
    )
    return Outcome(APPLIED, detail={"plan": plan.name, "boostCredits": balance})


# ----- customer.subscription.* -----

def _log_subscription_event(event: dict, subscription: dict, now: datetime) -> Outcome:
    # Recurring renewals are not reconciled; the record is for audit only
    current_app.logger.info(
        "billing.reconcile.subscription_event",
        extra={
            "event_id": event.get("id"),
            "event_type": event.get("type"),
            "subscription_id": subscription.get("id"),
            "subscription_status": subscription.get("status"),
        },
    )
    return Outcome(IGNORED, "logged_only")


_HANDLERS: Dict[EventKind, Callable[[dict, dict, datetime], Outcome]] = {
    EventKind.CHECKOUT_COMPLETED: _handle_checkout_paid,
    EventKind.CHECKOUT_ASYNC_PAYMENT_SUCCEEDED: _handle_checkout_paid,
    EventKind.SUBSCRIPTION_CREATED: _log_subscription_event,
    EventKind.SUBSCRIPTION_UPDATED: _log_subscription_event,
    EventKind.SUBSCRIPTION_DELETED: _log_subscription_event,
}

_unmapped = set(EventKind) - set(_HANDLERS)
if _unmapped:
    raise RuntimeError(f"EventKind without handler: {sorted(k.value for k in _unmapped)}")
