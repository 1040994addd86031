# flowaid/services/notifications.py
from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

import requests
from jinja2 import Environment

from flowaid.errors import NotificationError
from flowaid.extensions import get_mail_env, render_mail, run_bg, send_mail_smtp

log = logging.getLogger(__name__)

SUBJECT = "Thank you for your donation!"
DEFAULT_DONOR_NAME = "Generous Donor"
DEFAULT_SCHOOL_NAME = "a school in need"


@dataclass(frozen=True)
class DonationSummary:
    email: str
    product_name: str
    amount: Decimal
    quantity: int
    donation_id: str
    donor_name: Optional[str] = None
    school_name: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "DonationSummary":
        """Build from the public camelCase request body. Raises ValueError on missing fields."""
        missing = [k for k in ("email", "productName", "donationId") if not str(data.get(k) or "").strip()]
        if missing:
            raise ValueError(f"Missing required fields: {', '.join(missing)}")
        try:
            amount = Decimal(str(data.get("amount") if data.get("amount") is not None else "0"))
            quantity = int(data.get("quantity") or 1)
        except (ArithmeticError, TypeError, ValueError):
            raise ValueError("amount and quantity must be numeric")
        return cls(
            email=str(data["email"]).strip(),
            product_name=str(data["productName"]).strip(),
            amount=amount,
            quantity=quantity,
            donation_id=str(data["donationId"]).strip(),
            donor_name=(str(data.get("donorName") or "").strip() or None),
            school_name=(str(data.get("schoolName") or "").strip() or None),
        )

    def context(self, brand: str = "FlowAid") -> Dict[str, Any]:
        return {
            "brand": brand,
            "display_name": self.donor_name or DEFAULT_DONOR_NAME,
            "school_name": self.school_name or DEFAULT_SCHOOL_NAME,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "amount": f"{Decimal(self.amount).quantize(Decimal('0.01')):,}",
            "donation_id": self.donation_id,
            "year": time.gmtime().tm_year,
        }


# ─────────────────────────────────────────────────────────────
# Transports
# ─────────────────────────────────────────────────────────────
class ResendTransport:
    """HTTP email API (Resend-compatible)."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.sender = sender
        self.api_url = api_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        if not self.api_key:
            raise NotificationError("RESEND_API_KEY not configured", retryable=False)
        body: Dict[str, Any] = {"from": self.sender, "to": [to], "subject": subject, "html": html}
        if text:
            body["text"] = text
        try:
            resp = self.session.post(
                self.api_url,
                json=body,
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NotificationError(f"Email API unreachable: {e}") from e
        if not resp.ok:
            # 4xx other than 429 will fail the same way on every attempt
            raise NotificationError(
                f"Failed to send email: HTTP {resp.status_code} {resp.text[:300]}",
                retryable=not (400 <= resp.status_code < 500 and resp.status_code != 429),
            )


class SmtpTransport:
    """Flask-Mail delivery; needs the app object because it runs off-request."""

    def __init__(self, app: Any, sender: Optional[str] = None) -> None:
        self.app = app
        self.sender = sender

    def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        try:
            send_mail_smtp(self.app, subject, [to], html=html, body=text, sender=self.sender)
        except Exception as e:
            raise NotificationError(f"SMTP delivery failed: {e}") from e


# ─────────────────────────────────────────────────────────────
# Notifier
# ─────────────────────────────────────────────────────────────
class ConfirmationNotifier:
    def __init__(
        self,
        transport: Any,
        *,
        submit: Callable[..., Future] = run_bg,
        env: Optional[Environment] = None,
        brand: str = "FlowAid",
        max_retries: int = 2,
        retry_backoff: float = 0.5,
    ) -> None:
        self.transport = transport
        self.submit = submit
        self.env = env or get_mail_env()
        self.brand = brand
        self.max_retries = max(0, int(max_retries))
        self.retry_backoff = float(retry_backoff)

    def render(self, summary: DonationSummary) -> Dict[str, str]:
        ctx = summary.context(self.brand)
        return {
            "html": render_mail(self.env, "donation_confirmation.html", **ctx),
            "text": render_mail(self.env, "donation_confirmation.txt", **ctx),
        }

    def notify(self, summary: DonationSummary) -> Future:
        """Queue the receipt. The returned future resolves to True/False and never raises."""
        return self.submit(self._deliver, summary)

    def _deliver(self, summary: DonationSummary) -> bool:
        try:
            rendered = self.render(summary)
        except Exception as e:
            log.error("Confirmation email for donation %s could not be rendered: %s", summary.donation_id, e, exc_info=True)
            return False

        attempts = 0
        while True:
            try:
                self.transport.send(summary.email, SUBJECT, rendered["html"], rendered["text"])
                log.info("Confirmation email sent for donation %s", summary.donation_id)
                return True
            except NotificationError as e:
                attempts += 1
                if not e.retryable or attempts > self.max_retries:
                    log.error("Confirmation email for donation %s permanently failed: %s", summary.donation_id, e)
                    return False
                log.warning("Confirmation email send failed (attempt %s/%s): %s", attempts, self.max_retries, e)
                time.sleep(self.retry_backoff * attempts)


def build_transport(app: Any, session: Optional[requests.Session] = None):
    cfg = app.config
    if str(cfg.get("EMAIL_TRANSPORT") or "http").lower() == "smtp":
        return SmtpTransport(app, sender=cfg.get("MAIL_DEFAULT_SENDER"))
    return ResendTransport(
        api_key=str(cfg.get("RESEND_API_KEY") or ""),
        sender=str(cfg.get("MAIL_DEFAULT_SENDER") or "FlowAid <onboarding@resend.dev>"),
        api_url=str(cfg.get("RESEND_API_URL") or "https://api.resend.com/emails"),
        session=session,
    )
