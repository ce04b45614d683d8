"""
Checkout session initiation.

Everything that can be rejected locally is rejected before Stripe is called.
Apart from the free-tier bypass, nothing here changes account or listing
state: entitlements are granted only once the gateway confirms payment
(see app.services.reconciler).
"""
from flask import current_app

from app.billing.plans import get_plan_store
from app.billing.state import has_active_plan
from app.errors import BadRequestError, ConflictError, OwnershipError
from app.extensions import db
from app.models import Account
from app.models.payment import PURPOSE_BOOST, PURPOSE_SUBSCRIPTION
from app.services import boosts, credits, gateway
from app.services.subscriptions import activate_subscription
from app.utils.helpers import parse_bool, to_minor_units, utcnow

SUBSCRIPTION_SUCCESS_PATH = "/subscription/success"
SUBSCRIPTION_CANCEL_PATH = "/subscription/cancel"
BOOST_SUCCESS_PATH = "/boost/success"
BOOST_CANCEL_PATH = "/boost/cancel"


def start_subscription_checkout(account: Account, plan_name, auto_renew=False) -> dict:
    plan_name = (plan_name or "").strip().lower()
    if not plan_name:
        raise BadRequestError("plan is required")
    plan = get_plan_store().get_active(plan_name)
    if plan is None:
        raise BadRequestError("Invalid subscription plan")
    if not plan.allows_role(account.role):
        raise OwnershipError("This plan is not available for your account type")

    now = utcnow()
    if has_active_plan(account, plan.name, now):
        raise ConflictError("You already have an active subscription to this plan")
    auto_renew = parse_bool(auto_renew)

    if plan.is_free:
        activate_subscription(account, plan, auto_renew=auto_renew, now=now)
        db.session.commit()
        return {
            "activated": True,
            "plan": plan.name,
            "autoRenew": auto_renew,
            "paymentRequired": False,
        }

    session = gateway.create_checkout_session(
        amount_minor=to_minor_units(plan.price),
        product_name=f"{plan.display_name} Subscription",
        description=plan.description or f"{plan.display_name} plan - {plan.duration_days} days",
        metadata={
            "accountId": str(account.id),
            "purpose": PURPOSE_SUBSCRIPTION,
            "planName": plan.name,
            "autoRenew": "true" if auto_renew else "false",
        },
        success_path=SUBSCRIPTION_SUCCESS_PATH,
        cancel_path=SUBSCRIPTION_CANCEL_PATH,
        customer_email=account.email,
        recurring_interval="month" if auto_renew else None,
    )
    current_app.logger.info(
        "billing.checkout.subscription_opened",
        extra={"account_id": account.id, "plan": plan.name, "session_id": session["id"]},
    )
    return {"sessionId": session["id"], "redirectUrl": session["url"]}


def start_boost_checkout(account: Account, listing_id, duration_days) -> dict:
    days = boosts.validate_duration(duration_days)
    listing = boosts.get_listing(listing_id)
    boosts.check_boostable(listing, account)

    cost = credits.boost_cost(days)
    session = gateway.create_checkout_session(
        amount_minor=to_minor_units(cost),
        product_name=f"Listing boost - {days} days",
        description=f"Boost \"{listing.title or listing.id}\" for {days} days",
        metadata={
            "accountId": str(account.id),
            "purpose": PURPOSE_BOOST,
            "listingId": str(listing.id),
            # Settlement re-checks that the listing still belongs to this owner
            "ownerId": str(listing.owner_id or account.id),
            "durationDays": str(days),
        },
        success_path=BOOST_SUCCESS_PATH,
        cancel_path=BOOST_CANCEL_PATH,
        customer_email=account.email,
    )
    current_app.logger.info(
        "billing.checkout.boost_opened",
        extra={"account_id": account.id, "listing_id": listing.id, "days": days, "session_id": session["id"]},
    )
    return {"sessionId": session["id"], "redirectUrl": session["url"]}
