# flowaid/services/orchestrator.py
"""
Donation creation pipeline:

    validate -> rate limit -> authenticate -> record (pending)
             -> gateway checkout -> processing | failed -> queue receipt

Everything up to the gateway response is synchronous and surfaces as a
DonationError. Once the gateway has issued a checkout the donor is sent to
it even if the processing write fails; the webhook settles the record. The
receipt is fire-and-forget.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from flowaid.auth import Caller, authenticate
from flowaid.errors import GatewayError, PersistenceError, RateLimitExceeded
from flowaid.forms import DonationRequest, validate_donation_payload
from flowaid.models import Donation, Product
from flowaid.services.donations import DonationRecords
from flowaid.services.notifications import ConfirmationNotifier, DonationSummary
from flowaid.services.payments import PaymentGateway

log = logging.getLogger(__name__)


class DonationOrchestrator:
    def __init__(
        self,
        *,
        rate_limiter: Any,
        gateway_factory: Callable[[], PaymentGateway],
        notifier: Optional[ConfirmationNotifier] = None,
        records: Optional[DonationRecords] = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.gateway_factory = gateway_factory
        self.notifier = notifier
        self.records = records or DonationRecords()

    @staticmethod
    def rate_limit_identifier(req: DonationRequest, remote_addr: Optional[str]) -> str:
        if req.is_anonymous and req.anonymous_email:
            return req.anonymous_email.lower()
        return (remote_addr or "unknown").strip() or "unknown"

    def process(self, payload: Any, *, remote_addr: Optional[str] = None, auth_header: Optional[str] = None) -> Dict[str, Any]:
        req = validate_donation_payload(payload)

        identifier = self.rate_limit_identifier(req, remote_addr)
        verdict = self.rate_limiter.check(identifier)
        if not verdict.allowed:
            log.warning("Donation rate limit hit for %s (retry in %ss)", identifier, verdict.reset_in)
            raise RateLimitExceeded(verdict.reset_in)

        caller: Optional[Caller] = None
        if not req.is_anonymous:
            caller = authenticate(auth_header)

        # GatewayConfigError here means nothing is written
        gateway = self.gateway_factory()

        donation = self.records.create(req, caller)
        product: Product = donation.product
        product_name = product.name if product is not None else "Donation"
        customer_email = req.anonymous_email if req.is_anonymous else (caller.email if caller else None)
        # read before any rollback can expire the instance
        summary = self._summary(donation, req, caller, product_name, customer_email)
        donation_id = donation.id

        try:
            checkout = gateway.initiate(donation, customer_email, product_name)
        except GatewayError:
            self.records.mark_failed(donation)
            raise

        reference = checkout.reference or donation_id
        try:
            self.records.mark_processing(donation, checkout.reference)
        except PersistenceError:
            log.error(
                "Donation %s left pending after gateway accepted it (reference=%s); webhook will settle it",
                donation_id,
                reference,
            )

        self._queue_receipt(donation_id, summary)

        log.info("Donation %s awaiting payment (reference=%s)", donation_id, reference)
        return {
            "success": True,
            "donationId": donation_id,
            "paymentUrl": checkout.checkout_url,
            "reference": reference,
        }

    @staticmethod
    def _summary(
        donation: Donation,
        req: DonationRequest,
        caller: Optional[Caller],
        product_name: str,
        email: Optional[str],
    ) -> Optional[DonationSummary]:
        if not email:
            return None
        donor_name = req.anonymous_name if req.is_anonymous else (caller.full_name if caller else None)
        return DonationSummary(
            email=email,
            product_name=product_name,
            amount=donation.amount,
            quantity=int(donation.quantity or 1),
            donation_id=donation.id,
            donor_name=donor_name,
            school_name=donation.school.name if donation.school is not None else None,
        )

    def _queue_receipt(self, donation_id: str, summary: Optional[DonationSummary]) -> None:
        if self.notifier is None:
            return
        if summary is None:
            log.info("No email on file for donation %s; receipt skipped", donation_id)
            return
        try:
            self.notifier.notify(summary)
        except Exception:
            # executor shut down or rejected the job; the donation stands
            log.exception("Could not queue receipt for donation %s", donation_id)
