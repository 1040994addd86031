from __future__ import annotations

import os
import socket
import time
from datetime import datetime, timezone
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from flowaid.extensions import db
from flowaid.services.payments import sanitize_api_key

bp = Blueprint("health", __name__)

APP_STARTED_AT = time.time()
HOSTNAME = socket.gethostname()

BUILD_VERSION = (
    os.getenv("BUILD_VERSION") or os.getenv("RELEASE") or os.getenv("VERSION") or "dev"
)
GIT_SHA = os.getenv("GIT_SHA", "")[:12]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _overall_status(parts: Dict[str, Dict[str, Any]]) -> str:
    states = [p.get("status", "ok") for p in parts.values()]
    if any(s == "fail" for s in states):
        return "fail"
    if any(s == "degraded" for s in states):
        return "degraded"
    return "ok"


def _db_check() -> Dict[str, Any]:
    try:
        db.session.execute(text("SELECT 1"))
        return {"status": "ok", "ok": True}
    except Exception as e:
        db.session.rollback()
        return {"status": "fail", "ok": False, "error": str(e)[:200]}


def _gateway_check() -> Dict[str, Any]:
    key = sanitize_api_key(current_app.config.get("BITNOB_API_KEY"))
    if not key:
        return {"status": "degraded", "ok": False, "reason": "no-api-key"}
    return {"status": "ok", "ok": True, "url": current_app.config.get("BITNOB_API_URL")}


def _email_check() -> Dict[str, Any]:
    transport = str(current_app.config.get("EMAIL_TRANSPORT") or "http").lower()
    if transport == "smtp":
        ok = bool(current_app.config.get("MAIL_SERVER"))
    else:
        ok = bool(current_app.config.get("RESEND_API_KEY"))
    return {"status": "ok" if ok else "degraded", "ok": ok, "transport": transport}


def _summary_payload() -> Dict[str, Any]:
    parts = {
        "db": _db_check(),
        "gateway": _gateway_check(),
        "email": _email_check(),
    }
    return {
        "status": _overall_status(parts),
        "version": BUILD_VERSION,
        "git": GIT_SHA,
        "hostname": HOSTNAME,
        "uptime_s": int(time.time() - APP_STARTED_AT),
        "now": _now_iso(),
        "parts": parts,
    }


@bp.get("/healthz")
def healthz():
    p = _summary_payload()
    code = 200 if p["status"] != "fail" else 503
    return jsonify(p), code


@bp.get("/live")
def live():
    return jsonify({"status": "ok", "now": _now_iso(), "uptime_s": int(time.time() - APP_STARTED_AT)})
