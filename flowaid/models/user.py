"""
User model: local mirror of identity-provider accounts.

Passwords and sessions live with the identity provider; this table only
keeps what the donation pipeline needs (id = token subject, email, name,
admin flag) so donations and schools can reference donors by foreign key.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from flowaid.extensions import db

from .mixins import TimestampMixin


class User(db.Model, TimestampMixin):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, doc="Identity provider subject (uuid)")
    email = db.Column(db.String(255), nullable=True, index=True)
    full_name = db.Column(db.String(160), nullable=True)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)

    donations = db.relationship("Donation", back_populates="donor", lazy="dynamic")
    schools = db.relationship("School", back_populates="owner", lazy="dynamic")

    def __repr__(self) -> str:
        return f"<User {self.email or self.id}>"

    @classmethod
    def sync_from_claims(cls, subject: str, email: Optional[str], full_name: Optional[str], is_admin: bool) -> "User":
        """Upsert the mirror row for a verified token subject (caller commits)."""
        user = db.session.get(cls, subject)
        if user is None:
            user = cls(id=subject)
            db.session.add(user)
        if email:
            user.email = email[:255]
        if full_name:
            user.full_name = full_name[:160]
        user.is_admin = bool(is_admin)
        return user

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "is_admin": bool(self.is_admin),
        }
