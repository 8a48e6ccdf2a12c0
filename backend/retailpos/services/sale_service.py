# Overview: Sale transaction coordinator plus post-commit sale queries and status changes.

"""
Sales Service

WHY: A sale touches the catalog, two stock counters, the sale-number
sequence, the sale document and the sourced-item ledger. All of it must land
together or not at all.

create_sale() runs one unit of work:

1. Preconditions, before any stateful work (store active, customer exists).
2. Idempotent replay of an already committed (store, idempotency_key),
   provided the cart matches the one first recorded under that key.
3. Load and lock every product of the cart in ascending id order.
4. Resolve price and tax per line.
5. Check every non-sourced requirement against the locked snapshot, then
   decrement both counters per product.
6. Allocate the sale number, record the sale, then its sourced items.
7. Commit.

Any failure in 3-7 rolls back every staged write: no partial sale and no
partial stock decrement is ever visible. Sale creation is never retried
here; callers decide whether to resubmit.

After commit a sale is immutable except for notes and status, and status
only moves along SALE_STATUS_TRANSITIONS.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Customer, Product, Sale, Store, User
from ..models.sales import SALE_STATUS_TRANSITIONS
from ..validation import SaleRequest, SaleUpdate
from .concurrency import UnitOfWork, lock_for_update, run_with_retry, unit_of_work
from .exceptions import (
    InactiveProductError,
    IdempotencyConflictError,
    InvalidStatusTransitionError,
    SaleError,
    SaleNotFoundError,
    TransactionAbortError,
    ValidationError,
)
from .pagination import paginate
from .pricing_service import price_line, summarize
from .sale_numbering import next_sale_number
from .sale_recorder import PaymentAllocation, PricedLine, is_idempotency_violation, record_sale
from .sourced_item_service import record_sourced_items
from .stock_ledger import check_availability, decrement, load_product


CANCELLED_MARKER = "[CANCELLED]"


def _check_preconditions(req: SaleRequest) -> None:
    store = db.session.get(Store, req.store_id)
    if store is None:
        raise ValidationError(f"Store {req.store_id} not found", details={"store_id": req.store_id})
    if not store.is_active:
        raise ValidationError(f"Store {store.name} is not active", details={"store_id": store.id})

    if req.customer_id is not None and db.session.get(Customer, req.customer_id) is None:
        raise ValidationError(
            f"Customer {req.customer_id} not found",
            details={"customer_id": req.customer_id},
        )


def find_by_idempotency_key(store_id: int, key: str) -> Sale | None:
    return (
        db.session.query(Sale)
        .filter_by(store_id=store_id, idempotency_key=key)
        .one_or_none()
    )


def _load_cart_products(req: SaleRequest) -> dict[int, Product]:
    # Ascending id order is the lock order shared with the stock ledger
    products = {}
    for product_id in sorted({item.product_id for item in req.items}):
        product = load_product(product_id, lock=True)
        if not product.is_active:
            raise InactiveProductError(product.id, product.name)
        products[product_id] = product
    return products


def _price_cart(req: SaleRequest, products: dict[int, Product]) -> list[PricedLine]:
    priced = []
    for item in req.items:
        product = products[item.product_id]
        economics = price_line(
            product,
            item.quantity,
            discount_cents=item.discount_cents,
            variant_index=item.variant_index,
            is_sourced=item.is_sourced,
            override_price_cents=item.override_price_cents,
        )
        priced.append(PricedLine(
            product_id=product.id,
            product_name=product.name,
            economics=economics,
            is_sourced=item.is_sourced,
            sourcing_cost_cents=item.sourcing_cost_cents if item.is_sourced else 0,
        ))
    return priced


def _run_sale(uow: UnitOfWork, req: SaleRequest, cashier: User, now: datetime | None) -> Sale:
    products = _load_cart_products(req)
    priced = _price_cart(req, products)
    totals = summarize(line.economics for line in priced)
    uow.checkpoint("pricing")

    requirements = req.stock_requirements()
    check_availability(req.store_id, requirements)
    for product_id in sorted(requirements):
        decrement(product_id, req.store_id, requirements[product_id])
    uow.checkpoint("stock")

    sale_number = next_sale_number(
        store_id=req.store_id,
        prefix=current_app.config.get("SALE_NUMBER_PREFIX", "SALE"),
        now=now,
    )
    sale = record_sale(
        uow,
        store_id=req.store_id,
        cashier_id=cashier.id,
        customer_id=req.customer_id,
        sale_number=sale_number,
        priced_lines=priced,
        totals=totals,
        payments=[
            PaymentAllocation(method=p.method, amount_cents=p.amount_cents, reference=p.reference)
            for p in req.payments
        ],
        notes=req.notes,
        idempotency_key=req.idempotency_key,
        request_fingerprint=req.fingerprint() if req.idempotency_key else None,
    )
    record_sourced_items(sale, priced, recorded_by=cashier)
    return sale


def _replay(req: SaleRequest, existing: Sale) -> Sale:
    if existing.request_fingerprint != req.fingerprint():
        current_app.logger.warning(
            "Idempotency key %s reused in store %s for a different cart (sale %s)",
            req.idempotency_key, req.store_id, existing.sale_number,
        )
        raise IdempotencyConflictError(req.idempotency_key, existing.sale_number)
    return existing


def submit_sale(req: SaleRequest, cashier: User, *, now: datetime | None = None) -> tuple[Sale, bool]:
    """
    Record a sale atomically.

    Returns (sale, replayed). When the request carries an idempotency key
    that already produced a sale in this store, that sale is returned with
    replayed=True and nothing is written. This also holds for the loser of
    two concurrent submissions of one key.

    Raises:
        ValidationError, ProductNotFoundError, InactiveProductError,
        PricingError, InsufficientStockError, DuplicateSaleNumberError,
        IdempotencyConflictError, TransactionAbortError
    """
    log = current_app.logger
    _check_preconditions(req)

    if req.idempotency_key:
        existing = find_by_idempotency_key(req.store_id, req.idempotency_key)
        if existing is not None:
            sale = _replay(req, existing)
            log.info("Replayed sale %s for idempotency key %s", sale.sale_number, req.idempotency_key)
            return sale, True

    timeout = current_app.config.get("SALE_TIMEOUT_SECONDS")
    try:
        with unit_of_work(timeout_seconds=timeout, label="sale") as uow:
            sale = _run_sale(uow, req, cashier, now)
    except IntegrityError as exc:
        if req.idempotency_key and is_idempotency_violation(exc):
            winner = find_by_idempotency_key(req.store_id, req.idempotency_key)
            if winner is not None:
                sale = _replay(req, winner)
                log.info("Concurrent submission of idempotency key %s resolved to %s",
                         req.idempotency_key, sale.sale_number)
                return sale, True
        log.warning("Sale aborted in store %s: integrity violation", req.store_id)
        raise TransactionAbortError(
            "sale aborted by a conflicting write",
            details={"reason": "integrity_error"},
        ) from exc
    except SaleError as exc:
        log.warning("Sale aborted in store %s: %s (%s)", req.store_id, exc.message, exc.code)
        raise

    log.info(
        "Committed sale %s in store %s: total=%s cents, lines=%s",
        sale.sale_number, sale.store_id, sale.total_cents, len(sale.lines),
    )
    return sale, False


def create_sale(req: SaleRequest, cashier: User, *, now: datetime | None = None) -> Sale:
    """Record a sale atomically and return it, whether newly written or replayed."""
    sale, _ = submit_sale(req, cashier, now=now)
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise SaleNotFoundError(sale_id)
    return sale


def _filtered_sales(
    store_id: int | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    customer_id: int | None = None,
    cashier_id: int | None = None,
):
    query = db.session.query(Sale)
    if store_id is not None:
        query = query.filter(Sale.store_id == store_id)
    if status:
        query = query.filter(Sale.status == status)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at <= end)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == cashier_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Sale.sale_number.ilike(pattern), Sale.notes.ilike(pattern)))
    return query


def list_sales(
    store_id: int | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    customer_id: int | None = None,
    cashier_id: int | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Newest first."""
    query = _filtered_sales(store_id, status, start, end, search, customer_id, cashier_id)
    query = query.order_by(Sale.created_at.desc(), Sale.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda s: s.to_dict(expand=True))


def _apply_status(sale: Sale, requested: str) -> None:
    if requested == sale.status:
        return
    if requested not in SALE_STATUS_TRANSITIONS.get(sale.status, frozenset()):
        raise InvalidStatusTransitionError(sale.status, requested)
    sale.status = requested


def update_sale(sale_id: int, update: SaleUpdate) -> Sale:
    """
    Change notes and/or status of a committed sale.

    Amounts, lines and stock are never touched. Optimistic version conflicts
    are retried against the fresh row.
    """
    def _op() -> Sale:
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise SaleNotFoundError(sale_id)
        if update.status is not None:
            _apply_status(sale, update.status)
        if update.has_notes:
            sale.notes = update.notes
        db.session.commit()
        return sale

    return run_with_retry(_op, retry_on=(OperationalError, StaleDataError))


def cancel_sale(sale_id: int) -> Sale:
    """Soft cancel: the sale is kept, marked refunded and flagged in its notes."""
    def _op() -> Sale:
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise SaleNotFoundError(sale_id)
        if sale.status == "refunded":
            raise InvalidStatusTransitionError(sale.status, "refunded")
        _apply_status(sale, "refunded")
        sale.notes = f"{sale.notes} {CANCELLED_MARKER}" if sale.notes else CANCELLED_MARKER
        db.session.commit()
        return sale

    sale = run_with_retry(_op, retry_on=(OperationalError, StaleDataError))
    current_app.logger.info("Cancelled sale %s", sale.sale_number)
    return sale


def get_sales_stats(
    store_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    query = _filtered_sales(store_id=store_id, start=start, end=end)
    count, revenue, discount, tax = query.with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.total_cents), 0),
        func.coalesce(func.sum(Sale.discount_cents), 0),
        func.coalesce(func.sum(Sale.tax_cents), 0),
    ).one()

    by_status = dict(
        query.with_entities(Sale.status, func.count(Sale.id)).group_by(Sale.status).all()
    )

    count = int(count)
    revenue = int(revenue)
    return {
        "total_sales": count,
        "total_revenue_cents": revenue,
        "total_discount_cents": int(discount),
        "total_tax_cents": int(tax),
        "average_sale_cents": revenue // count if count else 0,
        "completed_sales": by_status.get("completed", 0),
        "due_sales": by_status.get("due", 0),
        "refunded_sales": by_status.get("refunded", 0),
        "partially_refunded_sales": by_status.get("partially_refunded", 0),
    }
