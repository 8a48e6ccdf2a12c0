# Overview: Sale number allocation backed by per-store, per-day sequence rows.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import utcnow
from .exceptions import ValidationError


SALE_DOCUMENT_TYPE = "SALE"


def format_sale_number(prefix: str, sequence_date: str, store_id: int, number: int) -> str:
    return f"{prefix}-{sequence_date}-{store_id:03d}-{number:05d}"


def _current_value(store_id: int, document_type: str, sequence_date: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(store_id=store_id, document_type=document_type, sequence_date=sequence_date)
        .scalar()
    )


def allocate_number(*, store_id: int, document_type: str, sequence_date: str) -> int:
    """
    Atomically take the next number of a (store, type, day) sequence.

    The increment is a single UPDATE on the sequence row, which holds the
    row lock until the caller's transaction ends: concurrent callers
    serialize, and a rolled-back caller gives its number back. The first
    caller of the day inserts the row inside a savepoint; losing that insert
    race falls back to the update.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.sequence_date == sequence_date,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        return _current_value(store_id, document_type, sequence_date) - 1

    try:
        with db.session.begin_nested():
            db.session.add(DocumentSequence(
                store_id=store_id,
                document_type=document_type,
                sequence_date=sequence_date,
                next_number=2,
            ))
        return 1
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        return _current_value(store_id, document_type, sequence_date) - 1


def next_sale_number(*, store_id: int, prefix: str = "SALE", now: datetime | None = None) -> str:
    """
    Allocate a sale number: {prefix}-{YYYYMMDD}-{store:03d}-{seq:05d}.

    Call inside the sale's unit of work so the number is only consumed when
    the sale commits.
    """
    if not store_id:
        raise ValidationError("store_id is required")

    sequence_date = (now or utcnow()).strftime("%Y%m%d")
    number = allocate_number(
        store_id=store_id,
        document_type=SALE_DOCUMENT_TYPE,
        sequence_date=sequence_date,
    )
    return format_sale_number(prefix, sequence_date, store_id, number)
