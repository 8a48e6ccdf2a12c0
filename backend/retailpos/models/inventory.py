from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InventoryRecord(db.Model):
    """
    Per-(product, store) stock position.

    Created lazily on the first restock for a pair; a product with no
    record at a store is simply not store-partitioned there.

    batches: JSON list of {"batch_no", "expiry_date", "quantity", "cost_cents"}
    for regulated goods; serial_numbers: JSON list of strings.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint("product_id", "store_id", name="uq_inventory_product_store"),
        db.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        db.Index("ix_inventory_store_quantity", "store_id", "quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=True)
    max_stock = db.Column(db.Integer, nullable=True)
    location = db.Column(db.String(128), nullable=True)

    batches = db.Column(db.JSON, nullable=False, default=list)
    serial_numbers = db.Column(db.JSON, nullable=False, default=list)

    last_restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    store = db.relationship("Store")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "store_id": self.store_id,
            "quantity": self.quantity,
            "reserved": self.reserved,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "location": self.location,
            "batches": list(self.batches or []),
            "serial_numbers": list(self.serial_numbers or []),
            "last_restocked_at": to_utc_z(self.last_restocked_at) if self.last_restocked_at else None,
            "updated_at": to_utc_z(self.updated_at),
        }
