from flask import request, jsonify, current_app
from sqlalchemy.exc import OperationalError

from . import bp
from app.extensions import db, csrf, limiter
from app.errors import DuplicateEventError, TransientProcessingError
from app.services import gateway, idempotency
from app.services.reconciler import reconcile


# ----- Stripe Webhook (entitlement settlement) -----
@csrf.exempt
@limiter.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    Verifies signature, then applies the event at most once.
    """
    # 1) Verify signature over the raw body before trusting anything in it
    raw_bytes = request.get_data(cache=False, as_text=False)
    sig_header = request.headers.get("Stripe-Signature", "")
    event = gateway.verify_webhook(raw_bytes, sig_header)

    ev_id = event.get("id") if isinstance(event, dict) else None
    ev_type = event.get("type") if isinstance(event, dict) else None
    if not ev_id or not ev_type:
        return jsonify({"error": "malformed_event"}), 400

    # 2) Idempotency guard + reconcile, committed as one unit
    try:
        duplicate, outcome = idempotency.process_once(event, reconcile)
    except (OperationalError, TransientProcessingError):
        # Storage trouble: roll back, leave unrecorded, let Stripe redeliver
        db.session.rollback()
        current_app.logger.exception(
            "billing.webhook.transient_failure",
            extra={"event_id": ev_id, "event_type": ev_type},
        )
        return jsonify({"error": "retry_later"}), 503
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(
            "billing.webhook.handler_error",
            extra={"event_id": ev_id, "event_type": ev_type},
        )
        # Surface 200 to prevent endless retries; the record keeps the failure visible
        try:
            idempotency.commit_processed(event, notes=f"handler_error:{type(e).__name__}")
        except DuplicateEventError:
            pass
        return jsonify({"received": True}), 200

    if duplicate:
        return jsonify({"received": True, "duplicate": True}), 200

    current_app.logger.info(
        "billing.webhook.processed",
        extra={
            "event_id": ev_id,
            "event_type": ev_type,
            "outcome": outcome.status,
            "reason": outcome.reason,
        },
    )
    return jsonify({"received": True}), 200
