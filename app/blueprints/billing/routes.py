from flask import request, jsonify
from flask_login import login_required, current_user

from . import bp
from app.extensions import db, limiter
from app.billing.plans import get_plan_store
from app.billing.state import boost_status
from app.errors import BadRequestError, OwnershipError
from app.models import Listing
from app.services import checkout as checkout_service
from app.services import gateway, subscriptions
from app.services.policy import require_admin
from app.services.tracking import track
from app.utils.helpers import safe_int


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequestError("JSON object body required")
    return payload


@bp.get("/plans")
def plans():
    role = current_user.role if current_user.is_authenticated else None
    return jsonify({p.name: p.to_dict() for p in get_plan_store().available_for(role)})


@bp.post("/checkout/subscription")
@limiter.limit("10/minute")
@login_required
def checkout_subscription():
    body = _json_body()
    result = checkout_service.start_subscription_checkout(
        current_user,
        body.get("plan"),
        auto_renew=body.get("autoRenew", False),
    )
    if result.get("sessionId"):
        track("checkout_opened", account_id=current_user.id, purpose="subscription", session_id=result["sessionId"])
    return jsonify(result), 200


@bp.post("/checkout/boost")
@limiter.limit("10/minute")
@login_required
def checkout_boost():
    body = _json_body()
    if body.get("listingId") is None:
        raise BadRequestError("listingId is required")
    result = checkout_service.start_boost_checkout(
        current_user,
        body.get("listingId"),
        body.get("durationDays"),
    )
    track("checkout_opened", account_id=current_user.id, purpose="boost", session_id=result["sessionId"])
    return jsonify(result), 200


@bp.get("/verify/<session_id>")
@limiter.limit("30/minute")
@login_required
def verify_session(session_id):
    """Read-only: the success page polls this while the webhook settles."""
    session = gateway.retrieve_checkout_session(session_id)
    metadata = dict(session.get("metadata") or {})
    if safe_int(metadata.get("accountId")) != current_user.id and not current_user.is_admin:
        raise OwnershipError("This payment session belongs to another account")

    status = None
    listing_id = safe_int(metadata.get("listingId"))
    if listing_id is not None:
        listing = db.session.get(Listing, listing_id)
        if listing is not None:
            status = boost_status(listing)

    return jsonify({
        "sessionId": session.get("id", session_id),
        "paymentStatus": session.get("payment_status"),
        "isPaid": session.get("payment_status") == "paid",
        "boostStatus": status,
        "metadata": metadata,
    }), 200


@bp.get("/subscription")
@login_required
def subscription():
    return jsonify(subscriptions.describe_subscription(current_user)), 200


@bp.post("/subscription/cancel")
@login_required
def cancel_subscription():
    return jsonify(subscriptions.cancel_auto_renew(current_user)), 200


@bp.get("/payments")
@login_required
def payments():
    return jsonify(subscriptions.payment_history(current_user)), 200


# Admin
@bp.post("/admin/accounts/<int:account_id>/subscription")
@require_admin
def admin_grant_subscription(account_id):
    body = _json_body()
    result = subscriptions.admin_grant_subscription(
        current_user,
        account_id,
        body.get("plan"),
        duration_days=body.get("durationDays"),
    )
    return jsonify(result), 200


@bp.post("/admin/accounts/<int:account_id>/subscription/cancel")
@require_admin
def admin_cancel_subscription(account_id):
    return jsonify(subscriptions.admin_cancel_subscription(current_user, account_id)), 200
