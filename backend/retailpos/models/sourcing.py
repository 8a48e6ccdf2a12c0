from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SourcedItem(db.Model):
    """
    Cost/profit record for a drop-shipped sale line.

    Analytics only: creating or deleting these rows never affects stock.
    profit_cents = (sale_price_cents - sourcing_cost_cents) * quantity
    """
    __tablename__ = "sourced_items"
    __table_args__ = (
        db.Index("ix_sourced_items_store_recorded", "store_id", "recorded_at"),
        db.Index("ix_sourced_items_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    sourcing_cost_cents = db.Column(db.Integer, nullable=False)
    sale_price_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    sourced_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False)

    store = db.relationship("Store")
    sale = db.relationship("Sale", backref=db.backref("sourced_items", lazy=True))
    sourced_by = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "store": self.store.to_summary() if self.store else None,
            "sale_id": self.sale_id,
            "sale_number": self.sale.sale_number if self.sale else None,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "sourcing_cost_cents": self.sourcing_cost_cents,
            "sale_price_cents": self.sale_price_cents,
            "profit_cents": self.profit_cents,
            "sourced_by": self.sourced_by.to_summary() if self.sourced_by else None,
            "recorded_at": to_utc_z(self.recorded_at),
        }
