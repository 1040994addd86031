# flowaid/services/reconciler.py
"""
Payment webhook reconciliation.

Gateway deliveries are at-least-once and may race each other. Status moves
are conditional UPDATEs keyed on the allowed source statuses; the move to
``completed`` also inserts a ledger_entries row (UNIQUE donation_id) and
increments the school total in the same transaction, so a school is
credited once per donation no matter how often the event is delivered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from flowaid.extensions import db, safe_commit
from flowaid.models import Donation, DonationStatus, LedgerEntry, PaymentEvent, School
from flowaid.models.mixins import utcnow
from flowaid.services.donations import DonationRecords

log = logging.getLogger(__name__)

EVENT_STATUS: Dict[str, str] = {
    "checkout.payment.successful": DonationStatus.COMPLETED,
    "checkout.completed": DonationStatus.COMPLETED,
    "payment.successful": DonationStatus.COMPLETED,
    "payment.completed": DonationStatus.COMPLETED,
    "checkout.payment.failed": DonationStatus.FAILED,
    "checkout.failed": DonationStatus.FAILED,
    "payment.failed": DonationStatus.FAILED,
    "checkout.payment.pending": DonationStatus.PROCESSING,
    "payment.pending": DonationStatus.PROCESSING,
    "checkout.expired": DonationStatus.EXPIRED,
}

# target status -> statuses it may be reached from
_ALLOWED_FROM: Dict[str, Tuple[str, ...]] = {
    DonationStatus.COMPLETED: (
        DonationStatus.PENDING,
        DonationStatus.PROCESSING,
        DonationStatus.FAILED,
        DonationStatus.EXPIRED,
    ),
    DonationStatus.FAILED: (DonationStatus.PENDING, DonationStatus.PROCESSING),
    DonationStatus.EXPIRED: (DonationStatus.PENDING, DonationStatus.PROCESSING),
    DonationStatus.PROCESSING: (DonationStatus.PENDING, DonationStatus.PROCESSING),
}


class Outcome:
    IGNORED = "ignored"
    NO_REFERENCE = "no_reference"
    UNHANDLED_EVENT = "unhandled_event"
    NOT_FOUND = "not_found"
    UPDATED = "updated"
    COMPLETED = "completed"
    DUPLICATE = "duplicate"
    STALE = "stale"
    ERROR = "error"


_MESSAGES = {
    Outcome.IGNORED: "Acknowledged",
    Outcome.NO_REFERENCE: "No reference found",
    Outcome.ERROR: "Acknowledged with error",
}


@dataclass(frozen=True)
class ReconcileOutcome:
    outcome: str
    event: Optional[str] = None
    reference: Optional[str] = None
    donation_id: Optional[str] = None
    status: Optional[str] = None
    credited: bool = False

    @property
    def message(self) -> str:
        return _MESSAGES.get(self.outcome, "Webhook processed")


def _s(v: Any) -> Optional[str]:
    if v is None or isinstance(v, (dict, list)):
        return None
    s = str(v).strip()
    return s or None


def _incoming_hash(data: Mapping[str, Any], reference: str) -> Optional[str]:
    explicit = _s(data.get("transactionHash")) or _s(data.get("transaction_hash"))
    if explicit:
        return explicit
    gateway_id = _s(data.get("id"))
    if gateway_id and gateway_id != reference:
        return gateway_id
    return None


class WebhookReconciler:
    def __init__(self, records: Optional[DonationRecords] = None) -> None:
        self.records = records or DonationRecords()

    def reconcile(self, payload: Any) -> ReconcileOutcome:
        """Apply one webhook delivery. Never raises."""
        try:
            result = self._reconcile(payload)
        except Exception:
            db.session.rollback()
            log.exception("Webhook reconciliation failed")
            event = _s(payload.get("event")) if isinstance(payload, Mapping) else None
            result = ReconcileOutcome(Outcome.ERROR, event=event)

        self._audit(result, payload)
        return result

    # ------------------------------------------------------------------
    def _reconcile(self, payload: Any) -> ReconcileOutcome:
        if not isinstance(payload, Mapping):
            log.info("Webhook payload is not a JSON object; acknowledging")
            return ReconcileOutcome(Outcome.IGNORED)

        event = _s(payload.get("event"))
        data = payload.get("data")
        if not event or not isinstance(data, Mapping) or not data:
            log.info("Invalid webhook payload (missing event or data)")
            return ReconcileOutcome(Outcome.IGNORED, event=event)

        reference = _s(data.get("reference")) or _s(data.get("id"))
        if not reference:
            log.info("Webhook %s carries no donation reference", event)
            return ReconcileOutcome(Outcome.NO_REFERENCE, event=event)

        target = EVENT_STATUS.get(event.lower())
        if target is None:
            log.info("Unhandled webhook event type: %s (reference=%s)", event, reference)
            return ReconcileOutcome(Outcome.UNHANDLED_EVENT, event=event, reference=reference)

        donation = self.records.find_by_reference(reference)
        if donation is None:
            log.warning("Webhook %s references unknown donation %s", event, reference)
            return ReconcileOutcome(Outcome.NOT_FOUND, event=event, reference=reference)

        new_hash = _incoming_hash(data, reference)
        if target == DonationStatus.COMPLETED:
            return self._complete(donation, event, reference, new_hash)
        return self._transition(donation, target, event, reference, new_hash)

    def _transition(
        self, donation: Donation, target: str, event: str, reference: str, new_hash: Optional[str]
    ) -> ReconcileOutcome:
        donation_id = donation.id
        vals: Dict[str, Any] = {"status": target, "updated_at": utcnow()}
        if new_hash:
            vals["transaction_hash"] = new_hash[:255]

        res = db.session.execute(
            sa_update(Donation)
            .where(Donation.id == donation_id, Donation.status.in_(_ALLOWED_FROM[target]))
            .values(**vals)
            .execution_options(synchronize_session=False)
        )
        if not getattr(res, "rowcount", 0):
            db.session.rollback()
            current = db.session.get(Donation, donation_id)
            log.info(
                "Webhook %s ignored for donation %s in status %s",
                event,
                donation_id,
                current.status if current else "?",
            )
            return ReconcileOutcome(Outcome.STALE, event, reference, donation_id, current.status if current else None)

        db.session.commit()
        db.session.expire_all()
        log.info("Donation %s -> %s (event=%s)", donation_id, target, event)
        return ReconcileOutcome(Outcome.UPDATED, event, reference, donation_id, target)

    def _complete(self, donation: Donation, event: str, reference: str, new_hash: Optional[str]) -> ReconcileOutcome:
        donation_id = donation.id
        school_id = donation.school_id
        amount = Decimal(donation.amount)

        vals: Dict[str, Any] = {"status": DonationStatus.COMPLETED, "updated_at": utcnow()}
        if new_hash:
            vals["transaction_hash"] = new_hash[:255]

        try:
            res = db.session.execute(
                sa_update(Donation)
                .where(Donation.id == donation_id, Donation.status != DonationStatus.COMPLETED)
                .values(**vals)
                .execution_options(synchronize_session=False)
            )
            if not getattr(res, "rowcount", 0):
                db.session.rollback()
                log.info("Duplicate completion for donation %s (event=%s); no credit", donation_id, event)
                return ReconcileOutcome(Outcome.DUPLICATE, event, reference, donation_id, DonationStatus.COMPLETED)

            credited = False
            if school_id:
                db.session.add(LedgerEntry(donation_id=donation_id, school_id=school_id, amount=amount, event=event[:120]))
                db.session.flush()
                db.session.execute(
                    sa_update(School)
                    .where(School.id == school_id)
                    .values(total_received=School.total_received + amount, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                credited = True
            else:
                log.warning("Donation %s completed without a school; nothing to credit", donation_id)

            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            log.info("Ledger already holds donation %s; duplicate completion ignored", donation_id)
            return ReconcileOutcome(Outcome.DUPLICATE, event, reference, donation_id, DonationStatus.COMPLETED)
        except SQLAlchemyError:
            db.session.rollback()
            raise

        db.session.expire_all()
        if credited:
            log.info("Donation %s completed; school %s credited %s", donation_id, school_id, amount)
        return ReconcileOutcome(Outcome.COMPLETED, event, reference, donation_id, DonationStatus.COMPLETED, credited)

    def _audit(self, result: ReconcileOutcome, payload: Any) -> None:
        try:
            db.session.add(
                PaymentEvent(
                    event=(result.event or "unknown")[:120],
                    reference=(result.reference[:255] if result.reference else None),
                    donation_id=result.donation_id,
                    outcome=result.outcome,
                    payload=dict(payload) if isinstance(payload, Mapping) else None,
                )
            )
        except Exception:
            log.exception("Failed to stage payment event audit row")
            db.session.rollback()
            return
        if not safe_commit():
            log.warning("Payment event audit row not stored (outcome=%s)", result.outcome)
