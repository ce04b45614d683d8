import os
from flask import Flask, request

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)


from .config import get_config
from .errors import register_error_handlers
from .extensions import db, migrate, csrf, login_manager, limiter
from .security import init_security
from .observability import init_logging, init_sentry


def create_app():
    app = Flask(__name__)

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    app.config["APP_ENV"] = app_env

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        # Billing fails closed: no gateway keys, no boot
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("STRIPE_SECRET_KEY")
        _require("STRIPE_WEBHOOK_SECRET")

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    # Plan lookups go through one store per app (queried per request)
    from .billing.plans import PlanStore
    app.extensions["plan_store"] = PlanStore()

    # Blueprints (explicit, consistent prefixes)
    from .blueprints.billing import bp as billing_bp
    from .blueprints.boosts import bp as boosts_bp
    from .blueprints.webhooks import bp as webhooks_bp

    app.register_blueprint(billing_bp, url_prefix="/billing")
    app.register_blueprint(boosts_bp, url_prefix="/boosts")
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    # Health
    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}, 200

    # SPA clients send this back as X-CSRFToken on state-changing calls
    @app.get("/csrf-token")
    def csrf_token():
        from flask_wtf.csrf import generate_csrf
        return {"csrfToken": generate_csrf()}, 200

    # Error handlers: JSON everywhere
    register_error_handlers(app)

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "not_found", "code": 404}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "method_not_allowed", "code": 405}, 405

    @app.errorhandler(500)
    def server_error(e):
        return {"error": "internal_error", "code": 500}, 500

    # CSRF error handler (clean 400 instead of generic 500)
    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return {"error": "csrf_failed", "message": e.description}, 400

    # 429 Too Many Requests with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"error": "rate_limited", "code": 429}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        app.logger.info("ratelimit.exceeded", extra={"path": request.path})
        return (payload, 429, headers)

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    # Ensure the Stripe SDK is initialized for every worker/process.
    import stripe

    key = app.config.get("STRIPE_SECRET_KEY")
    if key:
        stripe.api_key = key
    else:
        app.logger.warning("Stripe secret key missing; checkout will answer 503")

    return app
