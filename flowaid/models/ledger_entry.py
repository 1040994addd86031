from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Mapped, mapped_column

from flowaid.extensions import db
from flowaid.models.mixins import TimestampMixin


class LedgerEntry(db.Model, TimestampMixin):
    """
    One credit applied to a school's total_received.

    donation_id is UNIQUE: a second credit for the same donation fails the
    insert, so redelivered webhooks cannot double-credit a school.
    """

    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(primary_key=True)

    donation_id: Mapped[str] = mapped_column(
        db.ForeignKey("donations.id", ondelete="RESTRICT"),
        unique=True,
        index=True,
        nullable=False,
    )
    school_id: Mapped[str] = mapped_column(
        db.ForeignKey("schools.id", ondelete="RESTRICT"),
        index=True,
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(db.Numeric(12, 2), nullable=False)
    event: Mapped[str] = mapped_column(db.String(120), nullable=False, doc="Webhook event that triggered the credit")
