import atexit
import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from flask_mail import Mail, Message
from flask_sqlalchemy import SQLAlchemy
from jinja2 import Environment, FileSystemLoader, select_autoescape

log = logging.getLogger(__name__)


# ── Optional deps (import-if-present) ─────────────────────────
def _try_import(module: str, attr: str) -> Any:
    try:
        mod = __import__(module, fromlist=[attr])
        return getattr(mod, attr)
    except Exception:
        return None


CSRFProtectCls = _try_import("flask_wtf.csrf", "CSRFProtect")
CORSCls = _try_import("flask_cors", "CORS")


# ─────────────────────────────────────────────────────────────
# Core singletons
# ─────────────────────────────────────────────────────────────
db = SQLAlchemy()
mail = Mail()

csrf = CSRFProtectCls() if CSRFProtectCls else None
cors = CORSCls() if CORSCls else None


# ─────────────────────────────────────────────────────────────
# Background tasks + clean shutdown
# ─────────────────────────────────────────────────────────────
_BG_MAX_WORKERS = int(os.getenv("BG_MAX_WORKERS", "8"))
_EXECUTOR = ThreadPoolExecutor(max_workers=_BG_MAX_WORKERS, thread_name_prefix="flowaid-bg")


def run_bg(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    return _EXECUTOR.submit(func, *args, **kwargs)


def run_inline(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    """Same contract as run_bg, executed on the calling thread (BG_SYNC mode)."""
    fut: Future = Future()
    try:
        fut.set_result(func(*args, **kwargs))
    except Exception as e:
        fut.set_exception(e)
    return fut


@atexit.register
def _shutdown_executor() -> None:
    try:
        _EXECUTOR.shutdown(wait=False, cancel_futures=True)
    except Exception:
        pass


# ─────────────────────────────────────────────────────────────
# Safe DB helpers
# ─────────────────────────────────────────────────────────────
def safe_commit() -> bool:
    try:
        db.session.commit()
        return True
    except Exception as e:
        log.error("DB commit failed: %s", e, exc_info=True)
        db.session.rollback()
        return False


# ─────────────────────────────────────────────────────────────
# Email helpers
# ─────────────────────────────────────────────────────────────
def get_mail_env(templates_dir: Optional[str] = None) -> Environment:
    """
    Loads the Jinja environment for email templates.
    Default path: flowaid/templates/emails.
    """
    if not templates_dir:
        templates_dir = str(Path(__file__).resolve().parent / "templates" / "emails")
    return Environment(loader=FileSystemLoader(templates_dir), autoescape=select_autoescape(["html", "xml"]))


def render_mail(env: Environment, template: str, **ctx: Any) -> str:
    return env.get_template(template).render(**ctx)


def send_mail_smtp(
    app: Any,
    subject: str,
    recipients: List[str],
    *,
    html: Optional[str] = None,
    body: Optional[str] = None,
    sender: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> None:
    """Deliver one message through Flask-Mail. Raises on SMTP failure."""
    with app.app_context():
        msg = Message(
            subject=subject,
            recipients=recipients,
            sender=sender or app.config.get("MAIL_DEFAULT_SENDER"),
            html=html,
            body=body,
            extra_headers=headers,
        )
        mail.send(msg)


# ─────────────────────────────────────────────────────────────
# Init all extensions
# ─────────────────────────────────────────────────────────────
def init_all_extensions(app: Any) -> None:
    """CORS is configured by create_app() itself (per-route resources)."""
    db.init_app(app)
    mail.init_app(app)

    if csrf:
        csrf.init_app(app)


__all__ = [
    "db",
    "mail",
    "csrf",
    "cors",
    "run_bg",
    "run_inline",
    "safe_commit",
    "get_mail_env",
    "render_mail",
    "send_mail_smtp",
    "init_all_extensions",
]
