from datetime import datetime, timedelta

from flask import current_app

from app.billing.plans import Plan, get_plan_store
from app.billing.state import subscription_state, effective_plan, SubscriptionState
from app.errors import BadRequestError, NotFoundError
from app.extensions import db
from app.models import Account, PaymentRecord
from app.services import credits
from app.utils.helpers import isoformat, round_currency, safe_int, utcnow


MAX_ADMIN_SUBSCRIPTION_DAYS = 3650


def activate_subscription(account: Account, plan: Plan, *, auto_renew: bool = False, now: datetime | None = None,
                          duration_days: int | None = None) -> int:
    """
    Put `account` on `plan` starting `now`, and grant the plan's boost credits.
    Lifetime plans (duration 0) get no end date unless `duration_days`
    overrides the plan's own duration. Returns the new credit balance.
    Does not commit.
    """
    now = now or utcnow()
    account.subscription_plan = plan.name
    account.subscription_start = now
    if duration_days is not None:
        account.subscription_end = now + timedelta(days=duration_days)
    else:
        account.subscription_end = None if plan.is_lifetime else now + timedelta(days=plan.duration_days)
    account.subscription_is_active = True
    account.subscription_auto_renew = bool(auto_renew)
    db.session.flush()

    balance = credits.grant(account.id, plan.boost_credits, reason=f"plan:{plan.name}")
    current_app.logger.info(
        "billing.subscription.activated",
        extra={
            "account_id": account.id,
            "plan": plan.name,
            "auto_renew": bool(auto_renew),
            "subscription_end": isoformat(account.subscription_end),
        },
    )
    return balance


def cancel_auto_renew(account: Account) -> dict:
    # The paid period runs out on its own; only renewal is switched off
    if subscription_state(account) is not SubscriptionState.ACTIVE:
        raise BadRequestError("No active subscription to cancel")
    account.subscription_auto_renew = False
    db.session.commit()
    current_app.logger.info("billing.subscription.auto_renew_cancelled", extra={"account_id": account.id})
    return {
        "message": "Subscription auto-renewal cancelled",
        "subscriptionEnd": isoformat(account.subscription_end),
    }


def _get_account(account_id) -> Account:
    acct = db.session.get(Account, account_id)
    if acct is None:
        raise NotFoundError("Account not found")
    return acct


def admin_grant_subscription(admin: Account, account_id, plan_name, *, duration_days=None,
                             now: datetime | None = None) -> dict:
    """
    Put an account on a plan without a payment. The plan's boost credits are
    granted as on a paid checkout; auto-renew stays off. Without
    `duration_days` the plan's own duration applies.
    """
    now = now or utcnow()
    plan = get_plan_store().get_active(plan_name)
    if plan is None:
        raise BadRequestError("Invalid subscription plan")
    days = None
    if duration_days is not None:
        days = safe_int(duration_days)
        if days is None or not (1 <= days <= MAX_ADMIN_SUBSCRIPTION_DAYS):
            raise BadRequestError(f"durationDays must be between 1 and {MAX_ADMIN_SUBSCRIPTION_DAYS}")

    account = _get_account(account_id)
    activate_subscription(account, plan, auto_renew=False, now=now, duration_days=days)
    db.session.commit()
    current_app.logger.info(
        "billing.subscription.admin_granted",
        extra={"admin_id": admin.id, "account_id": account.id, "plan": plan.name, "days": days},
    )
    return {
        "message": "Subscription updated successfully",
        "accountId": account.id,
        **describe_subscription(account),
    }


def admin_cancel_subscription(admin: Account, account_id) -> dict:
    # Ends access now; unlike cancel_auto_renew the paid period is not honoured
    account = _get_account(account_id)
    account.subscription_is_active = False
    account.subscription_auto_renew = False
    db.session.commit()
    current_app.logger.info(
        "billing.subscription.admin_cancelled",
        extra={"admin_id": admin.id, "account_id": account.id},
    )
    return {
        "message": "Subscription cancelled successfully",
        "accountId": account.id,
        **describe_subscription(account),
    }


def describe_subscription(account: Account) -> dict:
    now = utcnow()
    state = subscription_state(account, now)
    plan_name = effective_plan(account, now)
    plan = get_plan_store().get(plan_name)
    return {
        "subscription": {
            "plan": account.subscription_plan,
            "startDate": isoformat(account.subscription_start),
            "endDate": isoformat(account.subscription_end),
            "isActive": state is SubscriptionState.ACTIVE,
            "autoRenew": bool(account.subscription_auto_renew),
        },
        "state": state.value,
        "effectivePlan": plan_name,
        "boostCredits": int(account.boost_credits or 0),
        "planDetails": plan.to_dict() if plan else None,
    }


def payment_history(account: Account) -> dict:
    records = (
        db.session.query(PaymentRecord)
        .filter(PaymentRecord.account_id == account.id)
        .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
        .all()
    )
    return {
        "payments": [r.to_dict() for r in records],
        "totalSpent": str(round_currency(account.total_spent)),
    }
