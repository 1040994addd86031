# flowaid/config/config.py
# Canonical FlowAid configuration (env-first, production-safe)

from __future__ import annotations

import os
from typing import Optional


# ----------------------------
# Env helpers
# ----------------------------
_TRUTHY = {"1", "true", "yes", "on", "y"}
_FALSY = {"0", "false", "no", "off", "n"}


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    s = str(v).strip()
    return s if s else default


def _bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in _TRUTHY:
        return True
    if s in _FALSY:
        return False
    return default


def _int(name: str, default: int) -> int:
    v = _env(name)
    if v is None:
        return default
    try:
        return int(str(v).strip())
    except Exception:
        return default


def _float(name: str, default: float) -> float:
    v = _env(name)
    if v is None:
        return default
    try:
        return float(str(v).strip())
    except Exception:
        return default


def _clean_base_url(v: Optional[str]) -> str:
    s = (v or "").strip().rstrip("/")
    return s


# ----------------------------
# Config classes
# ----------------------------
class BaseConfig:
    """
    Env-first config:
    - all important settings can be overridden via environment variables
    - safe defaults for local dev
    """

    ENV = (_env("APP_ENV") or _env("ENV") or _env("FLASK_ENV") or "base").strip().lower()

    DEBUG = _bool("FLASK_DEBUG", False)
    TESTING = _bool("TESTING", False)

    SECRET_KEY = _env("SECRET_KEY", "dev-change-me")
    BRAND_NAME = _env("BRAND_NAME", "FlowAid")

    # URLs (callback URLs handed to the gateway are built from this)
    PUBLIC_BASE_URL = _clean_base_url(_env("PUBLIC_BASE_URL", ""))
    PREFERRED_URL_SCHEME = _env("PREFERRED_URL_SCHEME", "https")
    TRUST_PROXY = _bool("TRUST_PROXY", False)

    # Logging
    LOG_LEVEL = _env("LOG_LEVEL", "INFO")
    WERKZEUG_LOG_LEVEL = _env("WERKZEUG_LOG_LEVEL", "WARNING")

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = _env("SQLALCHEMY_DATABASE_URI", _env("DATABASE_URL", "sqlite:///flowaid-dev.db"))
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    AUTO_CREATE_SQLITE = _bool("AUTO_CREATE_SQLITE", True)

    # Payment gateway (Bitnob-style hosted checkout)
    BITNOB_API_KEY = _env("BITNOB_API_KEY", "")
    BITNOB_API_URL = _env("BITNOB_API_URL", "https://api.bitnob.com/api/v1/wallets/create-payment")
    GATEWAY_CURRENCY = (_env("GATEWAY_CURRENCY", "USD") or "USD").upper()
    GATEWAY_TIMEOUT = _float("GATEWAY_TIMEOUT", 15.0)
    PAYMENT_SUCCESS_URL = _env("PAYMENT_SUCCESS_URL", "")
    PAYMENT_FAILURE_URL = _env("PAYMENT_FAILURE_URL", "")

    # Identity provider session tokens
    AUTH_JWT_SECRET = _env("AUTH_JWT_SECRET", _env("SUPABASE_JWT_SECRET", ""))
    AUTH_JWT_ALG = _env("AUTH_JWT_ALG", "HS256")
    AUTH_JWT_AUDIENCE = _env("AUTH_JWT_AUDIENCE", "authenticated")

    # Donation-creation rate limit (fixed window)
    DONATION_RATE_LIMIT = _int("DONATION_RATE_LIMIT", 10)
    DONATION_RATE_WINDOW = _int("DONATION_RATE_WINDOW", 3600)
    RATE_LIMIT_STORAGE_URL = _env("RATE_LIMIT_STORAGE_URL", "")

    # Confirmation email
    EMAIL_TRANSPORT = (_env("EMAIL_TRANSPORT", "http") or "http").lower()
    RESEND_API_KEY = _env("RESEND_API_KEY", "")
    RESEND_API_URL = _env("RESEND_API_URL", "https://api.resend.com/emails")
    MAIL_DEFAULT_SENDER = _env("MAIL_DEFAULT_SENDER", "FlowAid <onboarding@resend.dev>")
    MAIL_SERVER = _env("MAIL_SERVER", "localhost")
    MAIL_PORT = _int("MAIL_PORT", 25)
    MAIL_USE_TLS = _bool("MAIL_USE_TLS", False)
    MAIL_USERNAME = _env("MAIL_USERNAME")
    MAIL_PASSWORD = _env("MAIL_PASSWORD")
    EMAIL_MAX_RETRIES = _int("EMAIL_MAX_RETRIES", 2)

    # Run background jobs on the request thread (tests)
    BG_SYNC = _bool("BG_SYNC", False)

    @classmethod
    def init_app(cls, app) -> None:
        """
        Optional hook for factory boot hardening.
        Called from create_app() after app.config.from_object(...)
        """
        uri = str(app.config.get("SQLALCHEMY_DATABASE_URI") or "")

        if uri.startswith("sqlite:"):
            opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
            connect_args = dict(opts.get("connect_args") or {})
            connect_args.setdefault("check_same_thread", False)
            opts["connect_args"] = connect_args
            opts.setdefault("pool_pre_ping", True)
            app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True

    PREFERRED_URL_SCHEME = _env("PREFERRED_URL_SCHEME", "http")


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    DEBUG = False

    SECRET_KEY = "testing-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    PUBLIC_BASE_URL = "https://flowaid.test"

    BITNOB_API_KEY = "sk_test_gateway"
    BITNOB_API_URL = "https://gateway.test/api/v1/wallets/create-payment"
    AUTH_JWT_SECRET = "testing-jwt-secret-with-enough-length"

    DONATION_RATE_LIMIT = 10
    DONATION_RATE_WINDOW = 3600
    RATE_LIMIT_STORAGE_URL = ""

    EMAIL_TRANSPORT = "http"
    RESEND_API_KEY = "re_test"
    EMAIL_MAX_RETRIES = 0
    BG_SYNC = True
    WTF_CSRF_ENABLED = False


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False

    PREFERRED_URL_SCHEME = _env("PREFERRED_URL_SCHEME", "https")
    TRUST_PROXY = _bool("TRUST_PROXY", True)

    @classmethod
    def init_app(cls, app) -> None:
        super().init_app(app)

        # ---- Production guardrails (fail fast) ----
        sk = app.config.get("SECRET_KEY")
        if not sk or sk == "dev-change-me":
            raise RuntimeError("SECRET_KEY must be set to a strong random value in production.")

        base = (app.config.get("PUBLIC_BASE_URL") or "").strip()
        if base and base.startswith("http://"):
            raise RuntimeError("PUBLIC_BASE_URL must be https:// in production.")

        if _bool("FLASK_DEBUG", False):
            raise RuntimeError("FLASK_DEBUG must be 0 in production.")
