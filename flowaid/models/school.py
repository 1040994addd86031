from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flowaid.extensions import db
from flowaid.models.mixins import TimestampMixin

SCHOOL_STATUSES = ("pending", "approved")


class School(db.Model, TimestampMixin):
    """A donation-receiving school with a running total_received ledger."""

    __tablename__ = "schools"
    __table_args__ = (
        CheckConstraint("total_received >= 0", name="ck_schools_total_received_nonneg"),
        CheckConstraint("status IN ('pending', 'approved')", name="ck_schools_status"),
    )

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(db.String(200), nullable=True)
    students_count: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    total_received: Mapped[Decimal] = mapped_column(
        db.Numeric(14, 2),
        nullable=False,
        default=Decimal("0"),
        doc="Sum of completed donations. Only the webhook reconciler writes this.",
    )
    wallet_address: Mapped[Optional[str]] = mapped_column(db.String(120), nullable=True)
    status: Mapped[str] = mapped_column(db.String(20), nullable=False, default="pending", index=True)

    owner_id: Mapped[Optional[str]] = mapped_column(
        db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    owner = relationship("User", back_populates="schools")
    products = relationship("Product", back_populates="school_link", lazy="dynamic")
    donations = relationship("Donation", back_populates="school", lazy="dynamic")

    def __repr__(self) -> str:
        return f"<School {self.name!r} total={self.total_received}>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "students_count": int(self.students_count or 0),
            "total_received": str(self.total_received or Decimal("0")),
            "wallet_address": self.wallet_address,
            "status": self.status,
        }
