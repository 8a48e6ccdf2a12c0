# Overview: Cost/profit records for drop-shipped (sourced) sale lines.

"""
Sourced-Item Service

A sourced line is fulfilled from an outside supplier, so it never touches
the stock ledger. What the store needs to keep is the economics of the deal:
what it paid the supplier, what the customer paid, and the profit.

    profit_cents = (sale_price_cents - sourcing_cost_cents) * quantity

Records are written in the sale's unit of work, after the sale row has an
id, and are analytics only: deleting one never changes stock or the sale.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Sale, SourcedItem, User
from ..time_utils import utcnow
from .exceptions import SourcedItemNotFoundError, ValidationError
from .pagination import paginate
from .sale_recorder import PricedLine


def record_sourced_items(
    sale: Sale,
    staged: Iterable[PricedLine],
    recorded_by: User | None = None,
) -> list[SourcedItem]:
    """Stage one SourcedItem per sourced line of a flushed sale."""
    if sale.id is None:
        raise ValidationError("Sourced items require a persisted sale")

    now = utcnow()
    records = []
    for line in staged:
        if not line.is_sourced:
            continue
        sale_price = line.economics.unit_price_cents
        cost = line.sourcing_cost_cents or 0
        record = SourcedItem(
            store_id=sale.store_id,
            sale_id=sale.id,
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=line.economics.quantity,
            sourcing_cost_cents=cost,
            sale_price_cents=sale_price,
            profit_cents=(sale_price - cost) * line.economics.quantity,
            sourced_by_user_id=recorded_by.id if recorded_by is not None else None,
            recorded_at=now,
        )
        db.session.add(record)
        records.append(record)

    if records:
        db.session.flush()
    return records


def _filtered_query(
    store_id: int | None,
    start: datetime | None,
    end: datetime | None,
    search: str | None,
):
    query = db.session.query(SourcedItem)
    if store_id is not None:
        query = query.filter(SourcedItem.store_id == store_id)
    if start is not None:
        query = query.filter(SourcedItem.recorded_at >= start)
    if end is not None:
        query = query.filter(SourcedItem.recorded_at <= end)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.join(Sale, Sale.id == SourcedItem.sale_id).filter(
            or_(SourcedItem.product_name.ilike(pattern), Sale.sale_number.ilike(pattern))
        )
    return query


def sourced_item_stats(
    store_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
) -> dict:
    query = _filtered_query(store_id, start, end, search)
    total_items, total_quantity, total_cost, total_profit = query.with_entities(
        func.count(SourcedItem.id),
        func.coalesce(func.sum(SourcedItem.quantity), 0),
        func.coalesce(func.sum(SourcedItem.sourcing_cost_cents * SourcedItem.quantity), 0),
        func.coalesce(func.sum(SourcedItem.profit_cents), 0),
    ).one()
    return {
        "total_items": int(total_items),
        "total_quantity": int(total_quantity),
        "total_cost_cents": int(total_cost),
        "total_profit_cents": int(total_profit),
    }


def list_sourced_items(
    store_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Newest-first listing with the filter's aggregate stats attached."""
    query = _filtered_query(store_id, start, end, search).order_by(
        SourcedItem.recorded_at.desc(), SourcedItem.id.desc()
    )
    result = paginate(query, page=page, per_page=per_page, serialize=lambda r: r.to_dict())
    result["stats"] = sourced_item_stats(store_id, start, end, search)
    return result


def delete_sourced_item(item_id: int) -> None:
    item = db.session.get(SourcedItem, item_id)
    if item is None:
        raise SourcedItemNotFoundError(item_id)
    db.session.delete(item)
    db.session.commit()
