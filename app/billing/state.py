"""
Read side of the boost and subscription state machines.

Nothing here writes. Activity is re-derived from stored timestamps on every
read, so an expired boost or subscription needs no sweep job to become
inactive, and there is no cached status that can drift.
"""
from datetime import datetime
from enum import Enum

from sqlalchemy import and_, case

from app.billing.plans import FREE_PLAN
from app.utils.helpers import as_utc, isoformat, utcnow


class BoostState(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class SubscriptionState(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    EXPIRED = "expired"


def boost_state(listing, now: datetime | None = None) -> BoostState:
    now = as_utc(now) or utcnow()
    expiry = as_utc(listing.boost_expiry)
    if listing.is_boosted and expiry is not None and expiry > now:
        return BoostState.ACTIVE
    return BoostState.INACTIVE


def is_boost_active(listing, now: datetime | None = None) -> bool:
    return boost_state(listing, now) is BoostState.ACTIVE


def boost_status(listing, now: datetime | None = None) -> dict:
    return {
        "isBoosted": bool(listing.is_boosted),
        "boostExpiry": isoformat(listing.boost_expiry),
        "boostPriority": listing.boost_priority,
        "isActive": is_boost_active(listing, now),
    }


def subscription_state(account, now: datetime | None = None) -> SubscriptionState:
    now = as_utc(now) or utcnow()
    if not account.subscription_is_active or not account.subscription_plan:
        return SubscriptionState.NONE
    end = as_utc(account.subscription_end)
    # end=None is a lifetime grant (free tier)
    if end is not None and now >= end:
        return SubscriptionState.EXPIRED
    return SubscriptionState.ACTIVE


def is_subscription_active(account, now: datetime | None = None) -> bool:
    return subscription_state(account, now) is SubscriptionState.ACTIVE


def has_active_plan(account, plan_name: str, now: datetime | None = None) -> bool:
    return is_subscription_active(account, now) and account.subscription_plan == plan_name


def effective_plan(account, now: datetime | None = None) -> str:
    if is_subscription_active(account, now):
        return account.subscription_plan
    return FREE_PLAN


def boost_active_clause(model, now: datetime | None = None):
    """SQL twin of is_boost_active, for queries and conditional UPDATEs."""
    now = now or utcnow()
    return and_(model.is_boosted.is_(True), model.boost_expiry.isnot(None), model.boost_expiry > now)


def ranking_order(model, now: datetime | None = None):
    """
    ORDER BY terms for listing search: actively boosted first, by priority
    descending; everything else after, in the caller's own order.
    """
    rank = case((boost_active_clause(model, now), model.boost_priority), else_=-1)
    return [rank.desc()]
