#!/usr/bin/env python3
"""
FlowAid donations + payment gateway blueprint

Endpoints:
  POST /donations                    (alias: /process-donation)
  GET  /donations                    caller-visible donations, newest first
  GET  /donations/<donation_id>
  POST /payment-callback             gateway webhook, always 200
  POST /send-donation-confirmation   queue a receipt email, 202

Contracts:
- JSON in, JSON out; never cached.
- Pipeline failures answer {"error": message} with the error's status code.
- The webhook acknowledges every delivery so the gateway does not retry-storm.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, cast

from flask import Blueprint, current_app, jsonify, request

from flowaid.auth import optional_caller
from flowaid.errors import AuthenticationRequired, DonationError, NotFound, RateLimitExceeded
from flowaid.extensions import db
from flowaid.models import Donation
from flowaid.services import get_notifier, get_orchestrator, get_reconciler
from flowaid.services.donations import DonationRecords
from flowaid.services.notifications import DonationSummary

bp = Blueprint("payments", __name__)

# ----------------------------
# CSRF exempt (API-style JSON)
# ----------------------------
try:
    from flowaid.extensions import csrf  # type: ignore

    if csrf:
        csrf.exempt(bp)  # type: ignore[attr-defined]
except Exception:
    pass


# ----------------------------
# Small utilities
# ----------------------------
def _request_payload() -> Any:
    data = request.get_json(silent=True)
    if data is not None:
        return data
    if request.form:
        return cast(Dict[str, Any], request.form.to_dict(flat=True))
    return None


def _json_response(payload: Dict[str, Any], status: int = 200):
    resp = jsonify(payload)
    resp.status_code = int(status)
    resp.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, max-age=0")
    resp.headers.setdefault("Pragma", "no-cache")
    resp.headers.setdefault("Expires", "0")
    return resp


@bp.errorhandler(DonationError)
def _donation_error(e: DonationError):
    if e.status_code >= 500:
        current_app.logger.error("payments: %s (%s)", e.message, e.__class__.__name__)
    else:
        current_app.logger.info("payments: rejected %s: %s", e.status_code, e.message)
    resp = _json_response(e.to_dict(), e.status_code)
    if isinstance(e, RateLimitExceeded):
        resp.headers["Retry-After"] = str(e.retry_after)
    return resp


# ----------------------------
# Donations
# ----------------------------
@bp.post("/donations")
@bp.post("/process-donation")
def create_donation():
    result = get_orchestrator().process(
        _request_payload(),
        remote_addr=request.remote_addr,
        auth_header=request.headers.get("Authorization"),
    )
    return _json_response(result, 200)


@bp.get("/donations")
def list_donations():
    caller = optional_caller(request.headers.get("Authorization"))
    if caller is None:
        raise AuthenticationRequired("Unauthorized")

    try:
        limit = max(1, min(int(request.args.get("limit", 50)), 200))
    except (TypeError, ValueError):
        limit = 50

    rows = DonationRecords.visible_to(caller).order_by(Donation.created_at.desc()).limit(limit).all()
    return _json_response({"success": True, "donations": [d.as_dict() for d in rows]})


@bp.get("/donations/<donation_id>")
def get_donation(donation_id: str):
    caller = optional_caller(request.headers.get("Authorization"))
    if caller is None:
        raise AuthenticationRequired("Unauthorized")

    d: Optional[Donation] = db.session.get(Donation, (donation_id or "").strip().lower())
    # same answer for "missing" and "not yours"
    if d is None or not DonationRecords.can_read(d, caller):
        raise NotFound("Donation not found", 404)

    return _json_response({"success": True, "donation": d.as_dict()})


# ----------------------------
# Gateway webhook
# ----------------------------
@bp.post("/payment-callback")
def payment_callback():
    payload = request.get_json(silent=True)
    current_app.logger.info(
        "payments: webhook received event=%s",
        (payload.get("event") if isinstance(payload, dict) else None),
    )
    result = get_reconciler().reconcile(payload)
    return _json_response({"success": True, "message": result.message}, 200)


# ----------------------------
# Confirmation email
# ----------------------------
@bp.post("/send-donation-confirmation")
def send_donation_confirmation():
    data = _request_payload()
    if not isinstance(data, dict):
        raise DonationError("Request body must be a JSON object")
    try:
        summary = DonationSummary.from_payload(data)
    except ValueError as e:
        raise DonationError(str(e))

    current_app.logger.info("payments: queueing confirmation for donation %s", summary.donation_id)
    get_notifier().notify(summary)
    return _json_response({"success": True}, 202)
