from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from flowaid.extensions import db
from flowaid.models.mixins import TimestampMixin


class Product(db.Model, TimestampMixin):
    """A donatable item or category, optionally scoped to one school."""

    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_products_price_nonneg"),
        CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
    )

    id: Mapped[str] = mapped_column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(db.Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    stock: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    category: Mapped[Optional[str]] = mapped_column(db.String(80), nullable=True, index=True)

    # Foreign-key link to the owning school (preferred when resolving a donation's school)
    school_id: Mapped[Optional[str]] = mapped_column(
        db.ForeignKey("schools.id", ondelete="SET NULL"), nullable=True, index=True
    )
    school_link = relationship("School", back_populates="products", lazy="joined")

    # Legacy free-text school reference carried over from catalogue imports
    school: Mapped[Optional[str]] = mapped_column(db.String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<Product {self.name!r}>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": str(self.price or Decimal("0")),
            "stock": int(self.stock or 0),
            "category": self.category,
            "school_id": self.school_id,
        }
