import os


def _int_list(raw: str) -> tuple:
    return tuple(int(p) for p in raw.split(",") if p.strip())


class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")
    WTF_CSRF_SECRET_KEY = SECRET_KEY
    WTF_CSRF_TIME_LIMIT = None

    # Database (env in prod; dev/test may use default)
    try:
        from dotenv import dotenv_values
        _ENV_FALLBACK = dotenv_values(".env")
    except Exception:
        _ENV_FALLBACK = {}
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Cookies: secure-by-default
    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    # Used for checkout success/cancel links (must be https in prod)
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5173")

    # --- Stripe (gateway) ---
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    # Session creation must never hang a worker; retry is safe on timeout
    STRIPE_TIMEOUT_SECONDS = float(os.getenv("STRIPE_TIMEOUT_SECONDS", "10"))
    BILLING_CURRENCY = os.getenv("BILLING_CURRENCY", "usd").lower()

    # --- Boosts ---
    BOOST_RATE_PER_DAY = int(os.getenv("BOOST_RATE_PER_DAY", "5"))
    BOOST_DURATIONS = _int_list(os.getenv("BOOST_DURATIONS", "3,7,14,30"))
    BOOST_USER_PRIORITY = int(os.getenv("BOOST_USER_PRIORITY", "50"))
    BOOST_ADMIN_PRIORITY = int(os.getenv("BOOST_ADMIN_PRIORITY", "100"))

    # Processed webhook events older than this are pruned; Stripe stops
    # redelivering long before
    WEBHOOK_EVENT_RETENTION_DAYS = int(os.getenv("WEBHOOK_EVENT_RETENTION_DAYS", "30"))


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # Presence is enforced in create_app(), not at import time
    SECRET_KEY = os.environ.get("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    STRIPE_SECRET_KEY = None
    STRIPE_WEBHOOK_SECRET = None


_ENV_MAP = {
    "development": DevelopmentConfig,
    "staging": ProductionConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
