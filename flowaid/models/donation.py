from __future__ import annotations

# -----------------------------------------------------------------------------
# Donation Model
# One attempted contribution. Attributable to a registered donor XOR an
# anonymous contact email. Only status and transaction_hash change after
# creation.
# -----------------------------------------------------------------------------
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flowaid.extensions import db

from .mixins import TimestampMixin


class DonationStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    ALL = (PENDING, PROCESSING, COMPLETED, FAILED, EXPIRED)
    TERMINAL = (COMPLETED, FAILED, EXPIRED)


MAX_AMOUNT = Decimal("1000000")
MAX_QUANTITY = 10_000


class Donation(db.Model, TimestampMixin):
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donations_amount_pos"),
        CheckConstraint("amount <= 1000000", name="ck_donations_amount_max"),
        CheckConstraint("quantity > 0 AND quantity <= 10000", name="ck_donations_quantity_range"),
        CheckConstraint(
            "(donor_id IS NULL) <> (anonymous_email IS NULL)",
            name="ck_donations_donor_xor_anonymous_email",
        ),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'expired')",
            name="ck_donations_status",
        ),
        Index("ix_donations_school_status", "school_id", "status"),
    )

    # ---- Identifiers ----
    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # ---- Attribution ----
    donor_id: Mapped[Optional[str]] = mapped_column(
        db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    donor = relationship("User", back_populates="donations")
    anonymous_name: Mapped[Optional[str]] = mapped_column(db.String(100), nullable=True)
    anonymous_email: Mapped[Optional[str]] = mapped_column(db.String(255), nullable=True, index=True)

    # ---- Target ----
    school_id: Mapped[Optional[str]] = mapped_column(
        db.ForeignKey("schools.id", ondelete="SET NULL"), nullable=True, index=True
    )
    school = relationship("School", back_populates="donations")
    product_id: Mapped[Optional[str]] = mapped_column(
        db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    product = relationship("Product")

    # ---- Financials ----
    amount: Mapped[Decimal] = mapped_column(db.Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(db.Integer, nullable=False, default=1)
    currency: Mapped[str] = mapped_column(db.String(3), nullable=False, default="USD")

    # ---- Payment tracking ----
    status: Mapped[str] = mapped_column(
        db.String(20), nullable=False, default=DonationStatus.PENDING, index=True
    )
    transaction_hash: Mapped[Optional[str]] = mapped_column(
        db.String(255),
        nullable=True,
        index=True,
        doc="Gateway reference; falls back to the donation id when the gateway omits one.",
    )
    purpose: Mapped[Optional[str]] = mapped_column(db.String(500), nullable=True)

    @property
    def is_anonymous(self) -> bool:
        return self.donor_id is None

    @property
    def is_terminal(self) -> bool:
        return self.status in DonationStatus.TERMINAL

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "donorId": self.donor_id,
            "isAnonymous": self.is_anonymous,
            "anonymousName": self.anonymous_name,
            "schoolId": self.school_id,
            "productId": self.product_id,
            "amount": str(self.amount),
            "quantity": int(self.quantity or 0),
            "currency": self.currency,
            "status": self.status,
            "transactionHash": self.transaction_hash,
            "purpose": self.purpose,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Donation {self.id} {self.amount} {self.status}>"
