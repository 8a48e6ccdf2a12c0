# Overview: Stock ledger over the two stock counters (product-level and per-store inventory).

"""
Stock Ledger

Two co-located counters represent available quantity:
- Product.stock: denormalized product-level counter (NULL = not tracked)
- InventoryRecord.quantity: per-(product, store) position (absent = not
  store-partitioned; that is not an error)

INVARIANTS:
- Neither counter ever goes negative. Every write is a guarded
  UPDATE ... SET counter = counter - :qty WHERE counter >= :qty, so two
  concurrent decrements cannot both pass on the same remaining units.
- decrement() checks both counters before writing either. A failure in
  either check aborts the enclosing unit of work, so a sale never lowers one
  counter without the other.
- Sale decrements must run inside a UnitOfWork; reversal is a refund
  concern and is never done by calling an inverse from outside it.

Restocking is the external mutation path and follows the same guarded
update discipline.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import InventoryRecord, Product, Store
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .exceptions import (
    InactiveProductError,
    InsufficientStockError,
    ProductNotFoundError,
    ValidationError,
)


LEDGER_PRODUCT = "product"
LEDGER_INVENTORY = "inventory"


@dataclass(frozen=True)
class StockPosition:
    product_id: int
    store_id: int
    product_stock: int | None
    inventory_quantity: int | None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "store_id": self.store_id,
            "product_stock": self.product_stock,
            "inventory_quantity": self.inventory_quantity,
        }


def load_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def load_inventory_record(product_id: int, store_id: int, *, lock: bool = False) -> InventoryRecord | None:
    query = db.session.query(InventoryRecord).filter_by(product_id=product_id, store_id=store_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _check_counters(product: Product, inventory: InventoryRecord | None, quantity: int) -> None:
    if not product.is_active:
        raise InactiveProductError(product.id, product.name)

    if product.stock is not None and product.stock < quantity:
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            ledger=LEDGER_PRODUCT,
            available=product.stock,
            required=quantity,
        )

    if inventory is not None and inventory.quantity < quantity:
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            ledger=LEDGER_INVENTORY,
            available=inventory.quantity,
            required=quantity,
        )


def check_availability(store_id: int, requirements: Mapping[int, int]) -> None:
    """
    Check every (product, quantity) requirement of a cart against one locked
    snapshot before anything is decremented.

    Products are locked in ascending id order so that two carts touching the
    same products cannot deadlock each other.
    """
    for product_id in sorted(requirements):
        product = load_product(product_id, lock=True)
        inventory = load_inventory_record(product_id, store_id, lock=True)
        _check_counters(product, inventory, requirements[product_id])


def _guarded_decrement_product(product: Product, quantity: int) -> None:
    result = db.session.execute(
        update(Product)
        .where(Product.id == product.id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        db.session.refresh(product)
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            ledger=LEDGER_PRODUCT,
            available=product.stock or 0,
            required=quantity,
        )


def _guarded_decrement_inventory(product: Product, inventory: InventoryRecord, quantity: int) -> None:
    result = db.session.execute(
        update(InventoryRecord)
        .where(InventoryRecord.id == inventory.id, InventoryRecord.quantity >= quantity)
        .values(quantity=InventoryRecord.quantity - quantity)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        db.session.refresh(inventory)
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            ledger=LEDGER_INVENTORY,
            available=inventory.quantity,
            required=quantity,
        )


def decrement(product_id: int, store_id: int, quantity: int) -> StockPosition:
    """
    Reduce available stock for a non-sourced sale line.

    Both counters are checked before either write. Must be called inside a
    UnitOfWork: on any raised error the caller aborts and every staged
    decrement is discarded.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be > 0", details={"product_id": product_id})

    product = load_product(product_id, lock=True)
    inventory = load_inventory_record(product_id, store_id, lock=True)
    _check_counters(product, inventory, quantity)

    if product.stock is not None:
        _guarded_decrement_product(product, quantity)
    if inventory is not None:
        _guarded_decrement_inventory(product, inventory, quantity)

    return StockPosition(
        product_id=product.id,
        store_id=store_id,
        product_stock=product.stock,
        inventory_quantity=inventory.quantity if inventory is not None else None,
    )


def get_stock_position(product_id: int, store_id: int) -> StockPosition:
    product = load_product(product_id)
    inventory = load_inventory_record(product_id, store_id)
    return StockPosition(
        product_id=product.id,
        store_id=store_id,
        product_stock=product.stock,
        inventory_quantity=inventory.quantity if inventory is not None else None,
    )


def restock(
    *,
    product_id: int,
    store_id: int,
    quantity: int,
    location: str | None = None,
    batch: dict | None = None,
    serial_numbers: list[str] | None = None,
) -> StockPosition:
    """
    Receive stock into both counters.

    - The product-level counter is incremented only when it is tracked.
    - The (product, store) inventory record is created on first restock.

    Concurrent first restocks of the same pair race on the unique
    constraint; the loser rolls back and retries into the update branch.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    def _op() -> StockPosition:
        store = db.session.get(Store, store_id)
        if store is None:
            raise ValidationError(f"Store {store_id} not found", details={"store_id": store_id})

        product = load_product(product_id, lock=True)
        if not product.is_active:
            raise InactiveProductError(product.id, product.name)

        now = utcnow()

        if product.stock is not None:
            db.session.execute(
                update(Product)
                .where(Product.id == product.id)
                .values(stock=Product.stock + quantity)
                .execution_options(synchronize_session="fetch")
            )

        inventory = load_inventory_record(product_id, store_id, lock=True)
        if inventory is None:
            inventory = InventoryRecord(
                product_id=product_id,
                store_id=store_id,
                quantity=quantity,
                location=location,
                batches=[batch] if batch else [],
                serial_numbers=list(serial_numbers or []),
                last_restocked_at=now,
            )
            db.session.add(inventory)
            db.session.flush()
        else:
            db.session.execute(
                update(InventoryRecord)
                .where(InventoryRecord.id == inventory.id)
                .values(quantity=InventoryRecord.quantity + quantity, last_restocked_at=now)
                .execution_options(synchronize_session="fetch")
            )
            # JSON metadata is rewritten whole; the row is locked above
            if location:
                inventory.location = location
            if batch:
                inventory.batches = [*(inventory.batches or []), batch]
            if serial_numbers:
                inventory.serial_numbers = [*(inventory.serial_numbers or []), *serial_numbers]

        db.session.commit()
        return StockPosition(
            product_id=product.id,
            store_id=store_id,
            product_stock=product.stock,
            inventory_quantity=inventory.quantity,
        )

    return run_with_retry(_op, retry_on=(OperationalError, StaleDataError, IntegrityError))
