from flask import request, jsonify
from flask_login import login_required, current_user

from . import bp
from app.extensions import limiter
from app.services import boosts as boost_service
from app.services.policy import require_admin
from app.services.tracking import track
from app.utils.helpers import parse_bool


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


# Public
@bp.get("/pricing")
def pricing():
    return jsonify(boost_service.pricing()), 200


@bp.get("/options")
@login_required
def options():
    return jsonify(boost_service.boost_options(current_user)), 200


@bp.post("/<int:listing_id>")
@limiter.limit("20/minute")
@login_required
def boost_listing(listing_id):
    body = _json_body()
    result = boost_service.boost_with_credits(current_user, listing_id, body.get("durationDays"))
    return jsonify(result), 200


@bp.get("/<int:listing_id>/status")
@login_required
def boost_status(listing_id):
    result = boost_service.listing_boost_status(listing_id)
    track("boost_status_viewed", account_id=current_user.id, listing_id=listing_id, is_active=result["isActive"])
    return jsonify(result), 200


# Admin
@bp.post("/<int:listing_id>/admin-promote")
@require_admin
def admin_promote(listing_id):
    body = _json_body()
    result = boost_service.admin_promote(
        current_user,
        listing_id,
        duration_days=body.get("durationDays"),
        priority=body.get("priority"),
        charge_user=parse_bool(body.get("chargeUser"), default=True),
    )
    return jsonify(result), 200


@bp.delete("/<int:listing_id>")
@require_admin
def remove_boost(listing_id):
    return jsonify(boost_service.remove_boost(current_user, listing_id)), 200
