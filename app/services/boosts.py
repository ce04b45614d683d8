"""
Boost entitlements funded without a gateway round trip: prepaid credits and
administrator overrides. Gateway-funded boosts are settled by the reconciler.
"""
import uuid
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import or_, update

from app.billing.plans import get_plan_store
from app.billing.state import boost_status, effective_plan, is_boost_active
from app.errors import (
    BadRequestError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    OwnershipError,
)
from app.extensions import db
from app.models import Account, BoostHistoryEntry, Listing, PaymentRecord
from app.models.listing import BOOST_TYPE_ADMIN, BOOST_TYPE_USER, TERMINAL_STATUSES
from app.models.payment import PURPOSE_BOOST, STATUS_PENDING
from app.services import credits
from app.utils.helpers import isoformat, safe_int, utcnow

DEFAULT_DURATION_DAYS = 7
MAX_ADMIN_DURATION_DAYS = 365


def allowed_durations() -> tuple:
    return tuple(current_app.config.get("BOOST_DURATIONS", (3, 7, 14, 30)))


def validate_duration(value) -> int:
    days = safe_int(value)
    if days is None or days not in allowed_durations():
        raise BadRequestError(
            "Invalid boost duration",
            details={"availableDurations": list(allowed_durations())},
        )
    return days


def get_listing(listing_id) -> Listing:
    listing = db.session.get(Listing, safe_int(listing_id, -1))
    if listing is None:
        raise NotFoundError("Listing not found")
    return listing


def check_boostable(listing: Listing, account: Account, now: datetime | None = None) -> None:
    """Pre-payment checks shared by the credit path and gateway checkout."""
    if listing.owner_id != account.id and not account.is_admin:
        raise OwnershipError("You can only boost your own listings")
    if listing.is_terminal:
        raise BadRequestError(f"Listing is {listing.status} and cannot be boosted")
    if is_boost_active(listing, now):
        raise ConflictError(
            "This listing is already boosted. Wait for it to expire.",
            details={"boostExpiry": isoformat(listing.boost_expiry)},
        )


def record_history(listing: Listing, *, boosted_by, boost_type, days, boosted_at, expires_at,
                   payment_method=None, transaction_id=None) -> BoostHistoryEntry:
    entry = BoostHistoryEntry(
        listing_id=listing.id,
        boosted_at=boosted_at,
        boosted_by=boosted_by,
        boost_type=boost_type,
        duration_days=days,
        expired_at=expires_at,
        payment_method=payment_method,
        transaction_id=transaction_id,
    )
    db.session.add(entry)
    return entry


def _activate_if_inactive(listing_id: int, *, expires_at: datetime, priority: int, now: datetime) -> bool:
    """
    UPDATE ... WHERE the listing is sellable and not actively boosted.
    False means another request activated it first.
    """
    result = db.session.execute(
        update(Listing)
        .where(
            Listing.id == listing_id,
            Listing.status.notin_(TERMINAL_STATUSES),
            or_(
                Listing.is_boosted.is_(False),
                Listing.boost_expiry.is_(None),
                Listing.boost_expiry <= now,
            ),
        )
        .values(is_boosted=True, boost_expiry=expires_at, boost_priority=priority)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def boost_with_credits(account: Account, listing_id, duration_days=None, *, now: datetime | None = None) -> dict:
    now = now or utcnow()
    days = validate_duration(DEFAULT_DURATION_DAYS if duration_days is None else duration_days)
    listing = get_listing(listing_id)
    check_boostable(listing, account, now)

    cost = credits.boost_cost(days)
    try:
        remaining = credits.debit(account.id, cost)
    except InsufficientBalanceError as e:
        e.details.update(durationDays=days, listingId=listing.id)
        current_app.logger.info(
            "boosts.credits.insufficient",
            extra={"account_id": account.id, "listing_id": listing.id, "cost": cost, "balance": e.balance},
        )
        raise

    expires_at = now + timedelta(days=days)
    priority = int(current_app.config.get("BOOST_USER_PRIORITY", 50))
    if not _activate_if_inactive(listing.id, expires_at=expires_at, priority=priority, now=now):
        # Undo the debit with the rest of the transaction
        db.session.rollback()
        raise ConflictError("This listing was boosted by another request")

    record_history(
        listing,
        boosted_by=account.id,
        boost_type=BOOST_TYPE_USER,
        days=days,
        boosted_at=now,
        expires_at=expires_at,
        payment_method="credits",
    )
    db.session.commit()
    current_app.logger.info(
        "boosts.credits.activated",
        extra={"account_id": account.id, "listing_id": listing.id, "days": days, "cost": cost},
    )
    return {
        "message": f"Listing boosted for {days} days",
        "listingId": listing.id,
        "boost": boost_status(listing, now),
        "cost": cost,
        "remainingCredits": remaining,
    }


def admin_promote(admin: Account, listing_id, *, duration_days=None, priority=None, charge_user=True,
                  now: datetime | None = None) -> dict:
    """
    Force-activate a boost. Charging the owner never blocks the promotion:
    credits are debited when they cover the cost, otherwise a pending
    admin_charge payment is left for manual follow-up.
    """
    now = now or utcnow()
    days = safe_int(DEFAULT_DURATION_DAYS if duration_days is None else duration_days)
    if days is None or not (1 <= days <= MAX_ADMIN_DURATION_DAYS):
        raise BadRequestError(f"durationDays must be between 1 and {MAX_ADMIN_DURATION_DAYS}")
    if priority is None:
        priority = current_app.config.get("BOOST_ADMIN_PRIORITY", 100)
    priority = safe_int(priority)
    if priority is None or not (0 <= priority <= 100):
        raise BadRequestError("priority must be between 0 and 100")

    listing = get_listing(listing_id)
    if listing.is_terminal:
        raise BadRequestError(f"Listing is {listing.status} and cannot be boosted")

    expires_at = now + timedelta(days=days)
    listing.is_boosted = True
    listing.boost_expiry = expires_at
    listing.boost_priority = priority

    payment_method = None
    transaction_id = None
    charge = None
    if charge_user and listing.owner_id:
        cost = credits.boost_cost(days)
        try:
            credits.debit(listing.owner_id, cost)
            payment_method = "credits"
            charge = {"method": "credits", "amount": cost}
        except InsufficientBalanceError:
            transaction_id = f"ADMIN-BOOST-{listing.id}-{uuid.uuid4().hex[:12]}"
            payment_method = "admin_charge"
            db.session.add(PaymentRecord(
                account_id=listing.owner_id,
                amount=Decimal(cost),
                currency=current_app.config.get("BILLING_CURRENCY", "usd").upper(),
                method="admin_charge",
                transaction_id=transaction_id,
                purpose=PURPOSE_BOOST,
                status=STATUS_PENDING,
                meta={"listingId": listing.id, "durationDays": days, "promotedBy": admin.id},
            ))
            charge = {"method": "admin_charge", "amount": cost, "status": STATUS_PENDING,
                      "transactionId": transaction_id}

    record_history(
        listing,
        boosted_by=admin.id,
        boost_type=BOOST_TYPE_ADMIN,
        days=days,
        boosted_at=now,
        expires_at=expires_at,
        payment_method=payment_method,
        transaction_id=transaction_id,
    )
    db.session.commit()
    current_app.logger.info(
        "boosts.admin.promoted",
        extra={"admin_id": admin.id, "listing_id": listing.id, "days": days, "priority": priority,
               "charge_method": payment_method},
    )
    return {
        "message": f"Listing promoted for {days} days",
        "listingId": listing.id,
        "boost": boost_status(listing, now),
        "charge": charge,
    }


def remove_boost(admin: Account, listing_id) -> dict:
    listing = get_listing(listing_id)
    listing.is_boosted = False
    listing.boost_expiry = None
    listing.boost_priority = 0
    db.session.commit()
    current_app.logger.info("boosts.admin.removed", extra={"admin_id": admin.id, "listing_id": listing.id})
    return {"message": "Boost removed successfully", "listingId": listing.id, "boost": boost_status(listing)}


def pricing() -> dict:
    rate = int(current_app.config.get("BOOST_RATE_PER_DAY", 5))
    durations = allowed_durations()
    return {
        "costPerDay": rate,
        "currency": current_app.config.get("BILLING_CURRENCY", "usd"),
        "availableDurations": list(durations),
        "pricing": {str(d): credits.boost_cost(d) for d in durations},
    }


def boost_options(account: Account) -> dict:
    plan = get_plan_store().get(effective_plan(account))
    return {
        "boostCredits": credits.get_balance(account.id),
        "costPerDay": int(current_app.config.get("BOOST_RATE_PER_DAY", 5)),
        "availableDurations": list(allowed_durations()),
        "planBoostCredits": plan.boost_credits if plan else 0,
    }


def listing_boost_status(listing_id) -> dict:
    listing = get_listing(listing_id)
    return {
        "listingId": listing.id,
        **boost_status(listing),
        "boostHistory": [h.to_dict() for h in listing.boost_history],
    }
