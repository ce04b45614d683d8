import os
from logging.config import dictConfig

import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration


def init_logging(app):
    """Structured logs (JSON) in staging/prod; keep default console in dev/tests."""
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    if app_env in ("staging", "production"):
        # extra={...} passed to logger calls lands as top-level JSON keys
        fmt = "%(asctime)s %(levelname)s %(name)s %(message)s"
        dictConfig({
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": "pythonjsonlogger.json.JsonFormatter", "fmt": fmt}},
            "handlers": {"wsgi": {"class": "logging.StreamHandler", "formatter": "json"}},
            "root": {"level": app.config.get("LOG_LEVEL", "INFO"), "handlers": ["wsgi"]},
        })


def init_sentry(app):
    """Wire Sentry if DSN present; safe no-op otherwise."""
    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        return
    try:
        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration()],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES", "0.0")),
            environment=os.getenv("APP_ENV", "development"),
            # payment metadata carries account ids; keep request bodies out
            send_default_pii=False,
        )
    except Exception as exc:
        app.logger.warning("Sentry init skipped: %s", exc)
