from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SALE_STATUSES = ("completed", "due", "refunded", "partially_refunded")

# Post-commit status changes. No transition ever touches lines, amounts or stock.
SALE_STATUS_TRANSITIONS = {
    "completed": frozenset({"refunded", "partially_refunded"}),
    "due": frozenset({"completed", "refunded"}),
    "refunded": frozenset(),
    "partially_refunded": frozenset(),
}

PAYMENT_METHODS = ("cash", "card", "mobile_wallet", "gift_card", "voucher")

SALE_NUMBER_CONSTRAINT = "uq_sales_sale_number"
IDEMPOTENCY_KEY_CONSTRAINT = "uq_sales_store_idempotency_key"


class Sale(db.Model):
    """
    Immutable record of a completed point-of-sale transaction.

    INVARIANTS (fixed at commit time):
    - subtotal_cents = sum(line.unit_price_cents * line.quantity)
    - total_cents = subtotal_cents - discount_cents + tax_cents

    Lines and payments are owned by the sale and never referenced on their
    own. After commit only status and notes change.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name=SALE_NUMBER_CONSTRAINT),
        db.UniqueConstraint("store_id", "idempotency_key", name=IDEMPOTENCY_KEY_CONSTRAINT),
        db.Index("ix_sales_store_created", "store_id", "created_at"),
        db.Index("ix_sales_created", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(64), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(24), nullable=False, default="completed", index=True)
    notes = db.Column(db.Text, nullable=True)

    # Client-supplied deduplication key for retried submissions
    idempotency_key = db.Column(db.String(128), nullable=True)
    # SHA-256 of the submitted cart; a replayed key must match it
    request_fingerprint = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    cashier = db.relationship("User", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        backref="sale",
        lazy=True,
        order_by="SaleLine.position",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "SalePayment",
        backref="sale",
        lazy=True,
        order_by="SalePayment.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, expand: bool = False) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "store_id": self.store_id,
            "cashier_id": self.cashier_id,
            "customer_id": self.customer_id,
            "items": [line.to_dict() for line in self.lines],
            "payments": [payment.to_dict() for payment in self.payments],
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_due_cents": self.change_due_cents,
            "status": self.status,
            "notes": self.notes,
            "idempotency_key": self.idempotency_key,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if expand:
            data["store"] = self.store.to_summary() if self.store else None
            data["cashier"] = self.cashier.to_summary() if self.cashier else None
            data["customer"] = self.customer.to_summary() if self.customer else None
        return data


class SaleLine(db.Model):
    """One resolved product/quantity/price entry of a sale."""
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    # Resolved variant selector (NULL when the base price was used)
    variant_index = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    is_sourced = db.Column(db.Boolean, nullable=False, default=False)
    sourcing_cost_cents = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "variant_index": self.variant_index,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "is_sourced": self.is_sourced,
            "sourcing_cost_cents": self.sourcing_cost_cents,
        }


class SalePayment(db.Model):
    """Payment allocation (split tenders are several rows)."""
    __tablename__ = "sale_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    method = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    reference = db.Column(db.String(128), nullable=True)

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "amount_cents": self.amount_cents,
            "reference": self.reference,
        }
