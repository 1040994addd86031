# flowaid/services/donations.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import or_, update as sa_update
from sqlalchemy.exc import SQLAlchemyError

from flowaid.auth import Caller
from flowaid.errors import NotFound, PersistenceError
from flowaid.extensions import db
from flowaid.forms import DonationRequest
from flowaid.models import Donation, DonationStatus, Product, School, User
from flowaid.models.mixins import utcnow

logger = logging.getLogger(__name__)


def build_purpose(product_name: str, is_anonymous: bool, anonymous_name: Optional[str] = None) -> str:
    name = (product_name or "").strip() or "a product"
    if not is_anonymous:
        return f"Donation for {name}"[:500]
    if anonymous_name:
        return f"Anonymous donation for {name} from {anonymous_name}"[:500]
    return f"Anonymous donation for {name}"[:500]


class DonationRecords:
    """Creates and updates Donation rows. Every method commits or rolls back."""

    def __init__(self, currency: str = "USD") -> None:
        self.currency = (currency or "USD").upper()[:3]

    # ---- lookups ----------------------------------------------------------
    def get_product(self, product_id: str) -> Product:
        try:
            product = db.session.get(Product, product_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Product lookup failed: %s", exc)
            raise PersistenceError("Failed to load product")
        if product is None:
            raise NotFound("Product not found")
        return product

    def resolve_school_id(self, product: Product, requested_school_id: Optional[str]) -> Optional[str]:
        """
        Precedence: product's linked school > caller-supplied schoolId >
        product's raw school field. A supplied schoolId must exist.
        """
        if product.school_id and product.school_link is not None:
            return product.school_id

        if requested_school_id:
            if db.session.get(School, requested_school_id) is None:
                raise NotFound("School not found")
            return requested_school_id

        raw = (product.school or "").strip()
        if raw and db.session.get(School, raw) is not None:
            return raw
        if raw:
            logger.warning("Product %s has unknown raw school reference %r", product.id, raw)
        return None

    def find_by_reference(self, reference: str) -> Optional[Donation]:
        """Our id first; gateways that echo their own reference match transaction_hash."""
        donation = db.session.get(Donation, reference)
        if donation is not None:
            return donation
        return (
            Donation.query.filter(Donation.transaction_hash == reference)
            .order_by(Donation.created_at.desc())
            .first()
        )

    # ---- writes -----------------------------------------------------------
    def create(self, req: DonationRequest, caller: Optional[Caller]) -> Donation:
        product = self.get_product(req.product_id)
        school_id = self.resolve_school_id(product, req.school_id)

        donation = Donation(
            school_id=school_id,
            product_id=product.id,
            amount=req.amount,
            quantity=req.quantity,
            currency=self.currency,
            status=DonationStatus.PENDING,
            purpose=build_purpose(product.name, req.is_anonymous, req.anonymous_name),
        )

        if req.is_anonymous:
            # no principal: written with service privileges
            donation.anonymous_email = req.anonymous_email
            donation.anonymous_name = req.anonymous_name
        else:
            if caller is None:
                raise PersistenceError("Registered donation without an authenticated caller")
            User.sync_from_claims(caller.user_id, caller.email, caller.full_name, caller.is_admin)
            donation.donor_id = caller.user_id

        try:
            db.session.add(donation)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Donation creation error: %s", exc, exc_info=True)
            raise PersistenceError("Failed to create donation record")

        logger.info(
            "Created donation %s product=%s school=%s amount=%s anonymous=%s",
            donation.id,
            product.id,
            school_id,
            donation.amount,
            req.is_anonymous,
        )
        return donation

    def _set_status(self, donation_id: str, status: str, *, from_statuses, transaction_hash: Optional[str] = None) -> bool:
        vals = {"status": status, "updated_at": utcnow()}
        if transaction_hash:
            vals["transaction_hash"] = transaction_hash[:255]
        try:
            res = db.session.execute(
                sa_update(Donation)
                .where(Donation.id == donation_id, Donation.status.in_(tuple(from_statuses)))
                .values(**vals)
                .execution_options(synchronize_session="fetch")
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Donation %s status update to %s failed: %s", donation_id, status, exc, exc_info=True)
            raise PersistenceError("Failed to update donation record")
        return bool(getattr(res, "rowcount", 0))

    def mark_processing(self, donation: Donation, transaction_hash: Optional[str]) -> bool:
        """pending -> processing after gateway acknowledgment."""
        ok = self._set_status(
            donation.id,
            DonationStatus.PROCESSING,
            from_statuses=(DonationStatus.PENDING,),
            transaction_hash=transaction_hash or donation.id,
        )
        db.session.refresh(donation)
        return ok

    def mark_failed(self, donation: Donation) -> bool:
        """pending -> failed after gateway rejection. Never raises."""
        try:
            ok = self._set_status(donation.id, DonationStatus.FAILED, from_statuses=(DonationStatus.PENDING,))
            db.session.refresh(donation)
            return ok
        except PersistenceError:
            return False

    # ---- read policy ------------------------------------------------------
    @staticmethod
    def can_read(donation: Donation, caller: Optional[Caller]) -> bool:
        """
        Donor, owner of the receiving school, or admin. Anonymous donations are
        therefore never visible to other donors; unauthenticated callers see nothing.
        """
        if caller is None:
            return False
        if caller.is_admin:
            return True
        if donation.donor_id and donation.donor_id == caller.user_id:
            return True
        school = donation.school
        return bool(school is not None and school.owner_id and school.owner_id == caller.user_id)

    @staticmethod
    def visible_to(caller: Caller):
        """Query of donations the caller may read (same policy as can_read)."""
        q = Donation.query
        if caller.is_admin:
            return q
        owned = db.session.query(School.id).filter(School.owner_id == caller.user_id)
        return q.filter(or_(Donation.donor_id == caller.user_id, Donation.school_id.in_(owned)))
