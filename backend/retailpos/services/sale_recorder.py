# Overview: Persists the sale header, its lines and payment allocations.

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.exc import IntegrityError

from ..models import Sale, SaleLine, SalePayment
from ..models.sales import IDEMPOTENCY_KEY_CONSTRAINT, SALE_NUMBER_CONSTRAINT
from .concurrency import UnitOfWork
from .exceptions import DuplicateSaleNumberError
from .pricing_service import LineEconomics, SaleTotals


STATUS_COMPLETED = "completed"
STATUS_DUE = "due"


@dataclass(frozen=True)
class PricedLine:
    """A cart line after price resolution, ready to be recorded."""
    product_id: int
    product_name: str
    economics: LineEconomics
    is_sourced: bool = False
    sourcing_cost_cents: int = 0


@dataclass(frozen=True)
class PaymentAllocation:
    method: str
    amount_cents: int
    reference: str | None = None


def settlement_status(total_cents: int, amount_paid_cents: int) -> str:
    """Covered totals settle the sale. Anything less, no payment included, leaves it due."""
    return STATUS_COMPLETED if amount_paid_cents >= total_cents else STATUS_DUE


# SQLite names the violated columns rather than the constraint
_SQLITE_CONSTRAINT_COLUMNS = {
    IDEMPOTENCY_KEY_CONSTRAINT: "UNIQUE constraint failed: sales.store_id, sales.idempotency_key",
    SALE_NUMBER_CONSTRAINT: "UNIQUE constraint failed: sales.sale_number",
}


def violated_constraint(exc: IntegrityError) -> str | None:
    """Name of the unique constraint on sales that `exc` reports, if any."""
    diag = getattr(exc.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return name if name in _SQLITE_CONSTRAINT_COLUMNS else None

    message = str(exc.orig)
    for constraint, columns in _SQLITE_CONSTRAINT_COLUMNS.items():
        if message.startswith(columns):
            return constraint
    return None


def is_sale_number_violation(exc: IntegrityError) -> bool:
    return violated_constraint(exc) == SALE_NUMBER_CONSTRAINT


def is_idempotency_violation(exc: IntegrityError) -> bool:
    return violated_constraint(exc) == IDEMPOTENCY_KEY_CONSTRAINT


def record_sale(
    uow: UnitOfWork,
    *,
    store_id: int,
    cashier_id: int,
    sale_number: str,
    priced_lines: Sequence[PricedLine],
    totals: SaleTotals,
    payments: Sequence[PaymentAllocation] = (),
    customer_id: int | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
    request_fingerprint: str | None = None,
) -> Sale:
    """
    Stage the sale document inside the caller's unit of work.

    Runs after every ledger update of the sale. Nothing here commits: the
    sale becomes visible only when the coordinator commits the unit of work.

    Raises DuplicateSaleNumberError when the number is already taken. An
    idempotency key collision is re-raised as IntegrityError so the
    coordinator can hand back the sale that won the race.
    """
    amount_paid = sum(p.amount_cents for p in payments)

    sale = Sale(
        sale_number=sale_number,
        store_id=store_id,
        cashier_id=cashier_id,
        customer_id=customer_id,
        subtotal_cents=totals.subtotal_cents,
        discount_cents=totals.discount_cents,
        tax_cents=totals.tax_cents,
        total_cents=totals.total_cents,
        amount_paid_cents=amount_paid,
        change_due_cents=max(amount_paid - totals.total_cents, 0),
        status=settlement_status(totals.total_cents, amount_paid),
        notes=notes,
        idempotency_key=idempotency_key,
        request_fingerprint=request_fingerprint,
    )

    for position, line in enumerate(priced_lines):
        econ = line.economics
        sale.lines.append(SaleLine(
            position=position,
            product_id=line.product_id,
            product_name=line.product_name,
            variant_index=econ.variant_index,
            quantity=econ.quantity,
            unit_price_cents=econ.unit_price_cents,
            discount_cents=econ.discount_cents,
            tax_cents=econ.tax_cents,
            total_cents=econ.total_cents,
            is_sourced=line.is_sourced,
            sourcing_cost_cents=line.sourcing_cost_cents if line.is_sourced else None,
        ))

    for position, payment in enumerate(payments):
        sale.payments.append(SalePayment(
            position=position,
            method=payment.method,
            amount_cents=payment.amount_cents,
            reference=payment.reference,
        ))

    uow.stage(sale)
    try:
        uow.flush()
    except IntegrityError as exc:
        if is_idempotency_violation(exc):
            raise
        if is_sale_number_violation(exc):
            raise DuplicateSaleNumberError(sale_number) from exc
        raise

    return sale
