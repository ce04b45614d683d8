from flask_talisman import Talisman


def init_security(app):
    """
    Staging/production security headers for a JSON API.
    Nothing here renders HTML, so the CSP denies everything by default;
    the only browser-facing hop is the redirect to Stripe Checkout.
    """
    csp = {
        "default-src": ["'none'"],
        "frame-ancestors": ["'none'"],
        "base-uri": ["'none'"],
        "form-action": ["'self'", "https://checkout.stripe.com"],
    }

    Talisman(
        app,
        content_security_policy=csp,
        force_https=True,
        strict_transport_security=True,
        session_cookie_secure=True,
        frame_options="DENY",
        referrer_policy="no-referrer",
    )
