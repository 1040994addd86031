from __future__ import annotations

from typing import Optional

from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column

from flowaid.extensions import db
from flowaid.models.mixins import TimestampMixin


class PaymentEvent(db.Model, TimestampMixin):
    __tablename__ = "payment_events"
    __table_args__ = (
        Index("ix_payment_events_event_created", "event", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    event: Mapped[str] = mapped_column(
        db.String(120),
        index=True,
        nullable=False,
        doc="Gateway event name (payment.successful, checkout.expired, etc)",
    )

    reference: Mapped[Optional[str]] = mapped_column(
        db.String(255),
        nullable=True,
        index=True,
        doc="data.reference or data.id as delivered",
    )

    donation_id: Mapped[Optional[str]] = mapped_column(
        db.String(36),
        nullable=True,
        index=True,
        doc="Donation the delivery resolved to, if any",
    )

    outcome: Mapped[str] = mapped_column(
        db.String(40),
        nullable=False,
        doc="completed / updated / duplicate / stale / not_found / unhandled_event / ...",
    )

    payload: Mapped[Optional[dict]] = mapped_column(db.JSON, nullable=True)
