# flowaid/services/__init__.py
"""
Per-app service wiring. Instances live in app.extensions["flowaid"] so each
app (and each test app) gets its own rate-limit counters and HTTP sessions.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import requests
from flask import current_app

from flowaid.extensions import run_bg, run_inline
from flowaid.services.donations import DonationRecords
from flowaid.services.notifications import ConfirmationNotifier, build_transport
from flowaid.services.orchestrator import DonationOrchestrator
from flowaid.services.payments import PaymentGateway
from flowaid.services.rate_limit import build_rate_limiter
from flowaid.services.reconciler import WebhookReconciler

_KEY = "flowaid"


def _state(app: Any) -> Dict[str, Any]:
    return app.extensions.setdefault(_KEY, {})


def init_services(
    app: Any,
    *,
    gateway_session: Optional[requests.Session] = None,
    email_session: Optional[requests.Session] = None,
) -> None:
    """(Re)initialize service state. Tests pass fake HTTP sessions here."""
    state = _state(app)
    state.clear()
    state["gateway_session"] = gateway_session or requests.Session()
    state["email_session"] = email_session or requests.Session()


def get_rate_limiter(app: Any = None):
    app = app or current_app._get_current_object()
    state = _state(app)
    if "rate_limiter" not in state:
        state["rate_limiter"] = build_rate_limiter(app.config)
    return state["rate_limiter"]


def get_gateway(app: Any = None) -> PaymentGateway:
    """Built per call so rotated credentials apply; raises GatewayConfigError when unset."""
    app = app or current_app._get_current_object()
    return PaymentGateway.from_config(app.config, session=_state(app).get("gateway_session"))


def get_notifier(app: Any = None) -> ConfirmationNotifier:
    app = app or current_app._get_current_object()
    state = _state(app)
    if "notifier" not in state:
        state["notifier"] = ConfirmationNotifier(
            build_transport(app, session=state.get("email_session")),
            submit=run_inline if app.config.get("BG_SYNC") else run_bg,
            brand=str(app.config.get("BRAND_NAME") or "FlowAid"),
            max_retries=int(app.config.get("EMAIL_MAX_RETRIES", 2)),
        )
    return state["notifier"]


def get_orchestrator(app: Any = None) -> DonationOrchestrator:
    app = app or current_app._get_current_object()
    state = _state(app)
    if "orchestrator" not in state:
        currency = str(app.config.get("GATEWAY_CURRENCY") or "USD")
        state["orchestrator"] = DonationOrchestrator(
            rate_limiter=get_rate_limiter(app),
            gateway_factory=lambda: get_gateway(app),
            notifier=get_notifier(app),
            records=DonationRecords(currency=currency),
        )
    return state["orchestrator"]


def get_reconciler(app: Any = None) -> WebhookReconciler:
    app = app or current_app._get_current_object()
    state = _state(app)
    if "reconciler" not in state:
        state["reconciler"] = WebhookReconciler()
    return state["reconciler"]


__all__ = [
    "init_services",
    "get_rate_limiter",
    "get_gateway",
    "get_notifier",
    "get_orchestrator",
    "get_reconciler",
]
