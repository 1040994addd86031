from __future__ import annotations

from flowaid.extensions import db
from flowaid.models.donation import MAX_AMOUNT, MAX_QUANTITY, Donation, DonationStatus
from flowaid.models.ledger_entry import LedgerEntry
from flowaid.models.payment_event import PaymentEvent
from flowaid.models.product import Product
from flowaid.models.school import School
from flowaid.models.user import User

__all__ = [
    "db",
    "Donation",
    "DonationStatus",
    "LedgerEntry",
    "MAX_AMOUNT",
    "MAX_QUANTITY",
    "PaymentEvent",
    "Product",
    "School",
    "User",
]
