# flowaid/services/payments.py
"""
Hosted-checkout payment gateway client (Bitnob wallet payments API).

One POST per donation, bearer-authenticated, no automatic retry. Gateways
have shipped several response shapes over time, so the reference and the
checkout URL are read through ordered candidate field paths.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import requests

from flowaid.errors import GatewayAuthError, GatewayConfigError, GatewayError

log = logging.getLogger(__name__)

REFERENCE_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("data", "reference"),
    ("reference",),
    ("data", "transactionReference"),
    ("data", "id"),
    ("id",),
)

CHECKOUT_URL_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("data", "paymentUrl"),
    ("paymentUrl",),
    ("data", "checkoutUrl"),
    ("checkoutUrl",),
    ("data", "url"),
    ("url",),
    ("data", "link"),
    ("link",),
)

ERROR_MESSAGE_PATHS: Tuple[Tuple[str, ...], ...] = (
    ("message",),
    ("error", "message"),
    ("error",),
    ("data", "message"),
)


def first_present(body: Any, paths: Sequence[Tuple[str, ...]]) -> Optional[str]:
    """Value at the first path that resolves to a non-empty scalar."""
    for path in paths:
        node: Any = body
        for key in path:
            if not isinstance(node, Mapping):
                node = None
                break
            node = node.get(key)
        if node is None or isinstance(node, (dict, list)):
            continue
        s = str(node).strip()
        if s:
            return s
    return None


def sanitize_api_key(raw: Optional[str]) -> str:
    parts = (raw or "").strip().split(None, 1)
    if parts and parts[0].lower() == "bearer":
        parts = parts[1:]
    return parts[0].strip() if parts else ""


@dataclass(frozen=True)
class Checkout:
    checkout_url: str
    reference: Optional[str]


class PaymentGateway:
    def __init__(
        self,
        api_key: str,
        api_url: str,
        *,
        callback_url: str,
        success_url: Optional[str] = None,
        failure_url: Optional[str] = None,
        currency: str = "USD",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        key = sanitize_api_key(api_key)
        if not key:
            raise GatewayConfigError("Payment gateway is not configured (BITNOB_API_KEY missing)")
        if not (api_url or "").strip():
            raise GatewayConfigError("Payment gateway is not configured (BITNOB_API_URL missing)")
        self._api_key = key
        self.api_url = api_url.strip()
        self.callback_url = callback_url
        self.success_url = success_url
        self.failure_url = failure_url
        self.currency = (currency or "USD").upper()
        self.timeout = float(timeout)
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: Mapping[str, Any], session: Optional[requests.Session] = None) -> "PaymentGateway":
        base = str(config.get("PUBLIC_BASE_URL") or "").rstrip("/")
        return cls(
            api_key=str(config.get("BITNOB_API_KEY") or ""),
            api_url=str(config.get("BITNOB_API_URL") or ""),
            callback_url=f"{base}/payment-callback",
            success_url=config.get("PAYMENT_SUCCESS_URL") or f"{base}/donate/success",
            failure_url=config.get("PAYMENT_FAILURE_URL") or f"{base}/donate/failed",
            currency=str(config.get("GATEWAY_CURRENCY") or "USD"),
            timeout=float(config.get("GATEWAY_TIMEOUT") or 15.0),
            session=session,
        )

    def build_payload(self, donation: Any, customer_email: Optional[str], product_name: str) -> Dict[str, Any]:
        amount = donation.amount if isinstance(donation.amount, Decimal) else Decimal(str(donation.amount))
        payload: Dict[str, Any] = {
            "amount": float(amount),
            "currency": (getattr(donation, "currency", None) or self.currency).upper(),
            "description": f"Donation: {product_name}",
            "customerEmail": customer_email,
            "reference": donation.id,
            "callbackUrl": self.callback_url,
        }
        if self.success_url:
            payload["successUrl"] = self.success_url
        if self.failure_url:
            payload["failureUrl"] = self.failure_url
        return payload

    def initiate(self, donation: Any, customer_email: Optional[str], product_name: str) -> Checkout:
        payload = self.build_payload(donation, customer_email, product_name)
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            resp = self.session.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            log.error("Gateway request failed for donation %s: %s", donation.id, e)
            raise GatewayError(f"Payment gateway unreachable: {e.__class__.__name__}")

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code == 401:
            log.error("Gateway rejected credentials (401) for donation %s", donation.id)
            raise GatewayAuthError()

        if not resp.ok:
            msg = first_present(body, ERROR_MESSAGE_PATHS) or f"HTTP {resp.status_code}"
            log.error("Gateway error for donation %s: status=%s message=%s", donation.id, resp.status_code, msg)
            raise GatewayError(f"Payment gateway error: {msg}", http_status=resp.status_code)

        checkout_url = first_present(body, CHECKOUT_URL_PATHS)
        if not checkout_url:
            log.error("Gateway response for donation %s has no checkout URL: keys=%s", donation.id, sorted(body)[:10] if isinstance(body, dict) else type(body).__name__)
            raise GatewayError("Payment gateway response did not include a checkout URL", http_status=resp.status_code)

        reference = first_present(body, REFERENCE_PATHS)
        log.info("Gateway checkout created donation=%s reference=%s", donation.id, reference)
        return Checkout(checkout_url=checkout_url, reference=reference)
