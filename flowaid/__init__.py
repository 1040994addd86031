# flowaid/__init__.py
# FlowAid donation API: Flask app factory
# - deterministic blueprint registration
# - proxy-correct behind a reverse proxy
# - JSON error shape everywhere (this is an API service)

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional, Type, Union
from uuid import uuid4

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

# IMPORTANT: never override real env vars in prod
load_dotenv(override=False)

from flowaid.config import CONFIG_BY_NAME, DevelopmentConfig  # noqa: E402
from flowaid.extensions import cors, db, init_all_extensions  # noqa: E402
from flowaid import models  # noqa: E402,F401  tables must be registered before create_all

# Optional Sentry
try:
    import sentry_sdk  # type: ignore
    from sentry_sdk.integrations.flask import FlaskIntegration  # type: ignore
    from sentry_sdk.integrations.logging import LoggingIntegration  # type: ignore
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration  # type: ignore
except Exception:  # pragma: no cover
    sentry_sdk = None  # type: ignore

ConfigLike = Union[str, Type[Any]]

__version__ = "0.4.0"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _env_bool(name: str) -> Optional[bool]:
    v = os.getenv(name)
    if v is None:
        return None
    s = str(v).strip().lower()
    if s in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "f", "no", "n", "off"}:
        return False
    return None


def _resolve_config(target: Optional[ConfigLike]) -> ConfigLike:
    """
    Choose config class.
    - If explicitly provided, respect it (class, dotted path or short name).
    - Else FLASK_CONFIG, then APP_ENV, else DevelopmentConfig.
    """
    if target is None:
        target = (os.getenv("FLASK_CONFIG") or os.getenv("APP_ENV") or "").strip() or None
    if target is None:
        return DevelopmentConfig
    if isinstance(target, str):
        key = target.strip().lower()
        if key in {"prod"}:
            key = "production"
        elif key in {"dev", "local"}:
            key = "development"
        elif key in {"test"}:
            key = "testing"
        return CONFIG_BY_NAME.get(key, target)
    return target


def _json_error(message: str, status: int, **extra: Any):
    payload: Dict[str, Any] = {"ok": False, "error": {"code": int(status), "message": str(message)}}
    rid = extra.pop("request_id", None)
    if rid:
        payload["error"]["request_id"] = rid
    if extra:
        payload["error"].update(extra)

    resp = jsonify(payload)
    resp.status_code = int(status)
    return resp


def _parse_cors_origins(raw: str) -> Union[str, List[str]]:
    s = (raw or "").strip()
    if not s or s == "*":
        return "*"
    return [o.strip() for o in s.split(",") if o.strip()]


# -----------------------------------------------------------------------------
# Logging with request_id
# -----------------------------------------------------------------------------
class _RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        try:
            record.request_id = getattr(g, "request_id", "-")
        except Exception:
            record.request_id = "-"
        return True


def _configure_logging(app: Flask) -> None:
    fmt = "%(asctime)s [%(levelname)s] %(name)s [rid=%(request_id)s]: %(message)s"
    root = logging.getLogger()

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt))
        handler.addFilter(_RequestIDFilter())
        root.addHandler(handler)
    else:
        for h in root.handlers:
            if not any(isinstance(f, _RequestIDFilter) for f in h.filters):
                h.addFilter(_RequestIDFilter())
            if not getattr(h, "formatter", None) or "%(request_id)s" not in getattr(h.formatter, "_fmt", ""):
                h.setFormatter(logging.Formatter(fmt))

    root.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    logging.getLogger("werkzeug").setLevel(str(app.config.get("WERKZEUG_LOG_LEVEL", "WARNING")).upper())
    app.logger.info("Loaded config: ENV=%s DEBUG=%s", app.config.get("ENV", "?"), app.debug)


# -----------------------------------------------------------------------------
# ProxyFix
# -----------------------------------------------------------------------------
def _apply_proxyfix(app: Flask) -> None:
    trust = _env_bool("TRUST_PROXY")
    if trust is None:
        trust = bool(app.config.get("TRUST_PROXY", False))

    if not trust:
        return

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=1)
    app.logger.info("ProxyFix enabled (trusting X-Forwarded-* headers).")


# -----------------------------------------------------------------------------
# Integrations
# -----------------------------------------------------------------------------
def _init_sentry(app: Flask) -> None:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn or not sentry_sdk:
        return
    try:
        sentry_sdk.init(
            dsn=dsn,
            integrations=[
                FlaskIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.0")),
            send_default_pii=False,
            environment=app.config.get("ENV", "development"),
            release=os.getenv("GIT_COMMIT"),
        )
        app.logger.info("Sentry initialized")
    except Exception as e:
        app.logger.warning("Sentry init failed: %s", e)


def _init_cors(app: Flask, cors_origins: Union[str, List[str]]) -> None:
    if cors is None:
        return
    cors.init_app(
        app,
        supports_credentials=False,
        resources={
            r"/donations*": {"origins": cors_origins},
            r"/process-donation": {"origins": cors_origins},
            r"/send-donation-confirmation": {"origins": cors_origins},
            r"/payment-callback": {"origins": "*"},
        },
        expose_headers=["X-Request-ID", "Retry-After"],
        allow_headers=["Content-Type", "Authorization", "X-Client-Info", "Apikey", "X-Request-ID"],
        methods=["GET", "POST", "OPTIONS"],
    )


def _maybe_create_sqlite_tables(app: Flask) -> None:
    uri = (app.config.get("SQLALCHEMY_DATABASE_URI") or "").strip()
    if not uri.startswith("sqlite"):
        return
    if app.config.get("AUTO_CREATE_SQLITE", True) is not True:
        return
    try:
        with app.app_context():
            db.create_all()
    except Exception:
        app.logger.exception("SQLite create_all failed (continuing)")


# -----------------------------------------------------------------------------
# Request lifecycle + errors
# -----------------------------------------------------------------------------
def _register_request_lifecycle(app: Flask) -> None:
    @app.before_request
    def _bootstrap_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex
        g._start_ts = time.perf_counter()

    @app.after_request
    def _attach_request_headers(resp):
        resp.headers["X-Request-ID"] = getattr(g, "request_id", "-")
        start = getattr(g, "_start_ts", None)
        if start:
            resp.headers["X-Response-Time-ms"] = str(int((time.perf_counter() - start) * 1000))
        return resp


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def _http_err(err: HTTPException):
        return _json_error(err.description or err.name, err.code or 500, request_id=getattr(g, "request_id", "-"))

    @app.errorhandler(Exception)
    def _uncaught(err: Exception):
        app.logger.exception("Unhandled error")
        db.session.rollback()

        # gateway retries on non-2xx; the reconciler already absorbed what it could
        if (request.path or "").startswith("/payment-callback"):
            return jsonify({"success": True, "message": "Acknowledged with error"}), 200

        return _json_error("Internal Server Error", 500, request_id=getattr(g, "request_id", "-"))


# -----------------------------------------------------------------------------
# Blueprints
# -----------------------------------------------------------------------------
def _register_blueprints(app: Flask) -> None:
    from flowaid.blueprints.health import bp as health_bp
    from flowaid.blueprints.payments import bp as payments_bp

    for blueprint in (payments_bp, health_bp):
        if blueprint.name in app.blueprints:
            continue
        app.register_blueprint(blueprint)
        app.logger.info("Registered blueprint: %s", blueprint.name)


# -----------------------------------------------------------------------------
# App Factory
# -----------------------------------------------------------------------------
def create_app(config_class: Optional[ConfigLike] = None) -> Flask:
    app = Flask(__name__)

    # ---- Config loading
    cfg = _resolve_config(config_class)
    try:
        app.config.from_object(cfg)
    except Exception as exc:
        raise RuntimeError(f"Invalid FLASK_CONFIG '{cfg}': {exc}")

    init_hook = getattr(cfg, "init_app", None)
    if callable(init_hook):
        init_hook(app)

    app.url_map.strict_slashes = False
    app.config.setdefault("JSON_SORT_KEYS", False)
    app.config.setdefault("PROPAGATE_EXCEPTIONS", False)

    # ---- Proxy handling first
    _apply_proxyfix(app)

    # ---- Logging + optional integrations
    _configure_logging(app)
    _init_sentry(app)
    _init_cors(app, _parse_cors_origins(os.getenv("CORS_ORIGINS", "*")))

    # ---- Core extensions
    init_all_extensions(app)
    _maybe_create_sqlite_tables(app)

    from flowaid.services import init_services

    init_services(app)

    # ---- Request lifecycle / errors
    _register_request_lifecycle(app)
    _register_error_handlers(app)

    # ---- Blueprints
    _register_blueprints(app)

    # ---- CLI commands
    from flowaid.cli import seed_demo

    app.cli.add_command(seed_demo)

    return app
