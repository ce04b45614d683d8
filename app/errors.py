"""
Billing error taxonomy.

Every error carries an HTTP status and a short machine code; the handler
registered in create_app() renders them as {"error": code, "message": ..., **details}.
"""
from typing import Any

from flask import current_app, jsonify


class BillingError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.details}


class ConfigurationError(BillingError):
    """Gateway not configured. Fail closed, never fall back silently."""
    status_code = 503
    code = "service_unavailable"


class AuthenticityError(BillingError):
    """Webhook signature did not verify."""
    status_code = 400
    code = "invalid_signature"


class BadRequestError(BillingError):
    status_code = 400
    code = "bad_request"


class NotFoundError(BillingError):
    status_code = 404
    code = "not_found"


class ConflictError(BillingError):
    """Already boosted / already subscribed."""
    status_code = 409
    code = "conflict"


class OwnershipError(BillingError):
    status_code = 403
    code = "forbidden"


class StaleStateError(BillingError):
    """Listing changed between checkout and settlement (sold, deleted, re-owned)."""
    status_code = 409
    code = "stale_state"

    def __init__(self, message: str, *, reason: str, **kwargs):
        super().__init__(message, **kwargs)
        self.reason = reason


class InsufficientBalanceError(BillingError):
    """Soft signal: the caller should fall through to a paid checkout."""
    status_code = 402
    code = "payment_required"

    def __init__(self, message: str, *, cost: int, balance: int, **kwargs):
        details = kwargs.pop("details", None) or {}
        details.update(
            requiresPayment=True,
            cost=cost,
            balance=balance,
            shortfall=max(cost - balance, 0),
        )
        super().__init__(message, details=details, **kwargs)
        self.cost = cost
        self.balance = balance

    @property
    def shortfall(self) -> int:
        return max(self.cost - self.balance, 0)


class DuplicateEventError(BillingError):
    """Event already processed. Callers treat this as success."""
    status_code = 200
    code = "duplicate"


class GatewayError(BillingError):
    status_code = 502
    code = "gateway_error"


class TransientProcessingError(BillingError):
    """Retryable webhook failure; a non-2xx makes Stripe redeliver."""
    status_code = 503
    code = "retry_later"


def register_error_handlers(app):
    @app.errorhandler(BillingError)
    def _billing_error(e: BillingError):
        if e.status_code >= 500:
            current_app.logger.warning("billing.error", extra={"code": e.code, "error_message": e.message})
        return jsonify(e.to_dict()), e.status_code
