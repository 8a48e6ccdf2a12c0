# Overview: Transaction primitives shared by every stock-mutating service.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .exceptions import SaleError, TransactionAbortError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the whole write
    transaction is serialized by BEGIN IMMEDIATE (see UnitOfWork.begin).
    """
    return query.with_for_update()


class UnitOfWork:
    """
    Atomic scope for one business operation: begin / stage / commit / abort.

    Writes staged through the session stay invisible to other connections
    until commit(); abort() discards every one of them. A time budget bounds
    the whole scope: checkpoint() raises TransactionAbortError once it is
    exceeded, and commit() checks it one last time.
    """

    def __init__(self, *, timeout_seconds: float | None = None, label: str = "unit of work"):
        self.label = label
        self.timeout_seconds = timeout_seconds
        self._started = None
        self._closed = False

    @property
    def elapsed(self) -> float:
        if self._started is None:
            return 0.0
        return time.monotonic() - self._started

    def begin(self) -> None:
        self._started = time.monotonic()
        dialect = db.engine.dialect.name
        if dialect == "sqlite":
            # Take the write lock up front so concurrent units of work
            # serialize instead of failing at commit.
            raw = db.session.connection().connection.driver_connection
            if not getattr(raw, "in_transaction", False):
                db.session.execute(text("BEGIN IMMEDIATE"))
        elif dialect == "postgresql" and self.timeout_seconds:
            ms = int(self.timeout_seconds * 1000)
            db.session.execute(text(f"SET LOCAL statement_timeout = {ms}"))

    def stage(self, obj):
        db.session.add(obj)
        return obj

    def flush(self) -> None:
        self.checkpoint("flush")
        db.session.flush()

    def checkpoint(self, step: str) -> None:
        if self.timeout_seconds is None or self._started is None:
            return
        if self.elapsed > self.timeout_seconds:
            raise TransactionAbortError(
                f"{self.label} exceeded its time budget",
                details={"step": step, "timeout_seconds": self.timeout_seconds},
            )

    def commit(self) -> None:
        self.checkpoint("commit")
        db.session.commit()
        self._closed = True

    def abort(self) -> None:
        if self._closed:
            return
        db.session.rollback()
        self._closed = True


@contextmanager
def unit_of_work(*, timeout_seconds: float | None = None, label: str = "unit of work"):
    """
    Run a block as one all-or-nothing unit of work.

    - Business errors (SaleError) roll back and propagate unchanged.
    - IntegrityError rolls back and propagates so the caller can tell which
      constraint fired.
    - Any other storage failure rolls back and becomes TransactionAbortError.
    """
    uow = UnitOfWork(timeout_seconds=timeout_seconds, label=label)
    try:
        uow.begin()
        yield uow
        uow.commit()
    except (SaleError, IntegrityError):
        uow.abort()
        raise
    except SQLAlchemyError as exc:
        uow.abort()
        raise TransactionAbortError(
            f"{label} aborted by the storage layer",
            details={"reason": exc.__class__.__name__},
        ) from exc
    except BaseException:
        uow.abort()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on=None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) unless retry_on says otherwise. Used by
    maintenance paths such as restocking and status updates; sale creation
    is never retried.
    """
    retry_on = retry_on or (OperationalError, StaleDataError)
    for attempt in range(attempts):
        try:
            return func()
        except retry_on:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except SaleError:
            db.session.rollback()
            raise
