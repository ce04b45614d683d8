from typing import Dict, Any
from urllib.parse import urljoin
from flask import current_app
import stripe
from stripe import StripeClient
import hashlib, json

from app.errors import AuthenticityError, ConfigurationError, GatewayError


def _client() -> StripeClient:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise ConfigurationError("Payment service is not configured. Set STRIPE_SECRET_KEY.")
    timeout = float(current_app.config.get("STRIPE_TIMEOUT_SECONDS", 10))
    return StripeClient(key, http_client=stripe.RequestsClient(timeout=timeout))


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when you change fields
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def to_plain(obj: Any) -> Dict[str, Any]:
    """Stripe objects -> plain dicts (SDK versions differ on the method name)."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    for attr in ("to_dict_recursive", "to_dict"):
        fn = getattr(obj, attr, None)
        if callable(fn):
            return fn()
    return dict(obj)


def create_checkout_session(
    *,
    amount_minor: int,
    product_name: str,
    description: str,
    metadata: Dict[str, str],
    success_path: str,
    cancel_path: str,
    customer_email: str | None = None,
    recurring_interval: str | None = None,
) -> Dict[str, Any]:
    """
    Create a Stripe Checkout Session for a single line item priced inline.
    Returns: {"id": <session_id>, "url": <redirect_url or None>}
    """
    client = _client()
    price_data: Dict[str, Any] = {
        "currency": current_app.config.get("BILLING_CURRENCY", "usd"),
        "product_data": {"name": product_name, "description": description},
        "unit_amount": int(amount_minor),
    }
    if recurring_interval:
        price_data["recurring"] = {"interval": recurring_interval}

    params: Dict[str, Any] = {
        "mode": "subscription" if recurring_interval else "payment",
        "payment_method_types": ["card"],
        "line_items": [{"price_data": price_data, "quantity": 1}],
        "success_url": _absolute_url(success_path + "?session_id={CHECKOUT_SESSION_ID}"),
        "cancel_url": _absolute_url(cancel_path),
        # Webhook context: the reconciler reads everything it needs from here
        "metadata": dict(metadata),
    }
    if recurring_interval:
        params["subscription_data"] = {"metadata": dict(metadata)}
    if customer_email:
        params["customer_email"] = customer_email

    # Param-aware idempotency: a retry after a timeout gets the same session back
    idem = make_idempotency_key(
        "checkout", "v1",
        metadata.get("accountId"), metadata.get("purpose"),
        _params_hash(params),
    )
    try:
        session = client.checkout.sessions.create(params=params, options={"idempotency_key": idem})
    except stripe.StripeError as e:
        current_app.logger.exception(
            "billing.gateway.session_create_failed",
            extra={"account_id": metadata.get("accountId"), "purpose": metadata.get("purpose")},
        )
        user_msg = getattr(e, "user_message", None) or "Could not create checkout session. Please try again."
        raise GatewayError(user_msg) from e

    url = getattr(session, "url", None)
    if not url:
        raise GatewayError("Could not create checkout session")
    return {"id": session.id, "url": url}


def retrieve_checkout_session(session_id: str) -> Dict[str, Any]:
    client = _client()
    try:
        session = client.checkout.sessions.retrieve(session_id)
    except stripe.InvalidRequestError as e:
        raise GatewayError("Checkout session not found", status_code=404) from e
    except stripe.StripeError as e:
        current_app.logger.warning("billing.gateway.session_retrieve_failed", extra={"session_id": session_id})
        raise GatewayError("Could not verify payment session") from e
    return to_plain(session)


def verify_webhook(raw_bytes: bytes, sig_header: str) -> Dict[str, Any]:
    """
    Check the Stripe-Signature header over the raw body and return the parsed
    event as a plain dict. Raises AuthenticityError.
    """
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise ConfigurationError("Stripe webhook secret not configured")
    try:
        event = stripe.Webhook.construct_event(
            payload=raw_bytes.decode("utf-8"),
            sig_header=sig_header,
            secret=secret,
        )
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise AuthenticityError("Webhook signature verification failed") from e
    return to_plain(event)
