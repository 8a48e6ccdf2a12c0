from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


MEMBERSHIP_TYPES = ("none", "regular", "silver", "gold", "platinum")


class Customer(db.Model):
    """
    Customer master data. Sales may optionally reference a customer.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    phone = db.Column(db.String(32), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    membership_type = db.Column(db.String(16), nullable=False, default="regular")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "membership_type": self.membership_type,
        }

    def to_dict(self) -> dict:
        return {
            **self.to_summary(),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
