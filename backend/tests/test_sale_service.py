"""
Sale recording tests.

Verifies:
- A committed sale decrements both stock counters and records lines,
  payments and totals
- Any failure mid-cart leaves no sale, no stock change and no consumed
  sale number
- Sourced lines never touch stock and produce cost/profit records
- Idempotent replay, key reuse conflicts, settlement status and the time budget
- Unique-constraint violations are told apart by constraint, not by message text
"""

import sqlite3
from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from retailpos.models import DocumentSequence, Sale, SaleLine, SourcedItem
from retailpos.services import sale_recorder, sale_service
from retailpos.services.concurrency import UnitOfWork
from retailpos.services.exceptions import (
    DuplicateSaleNumberError,
    IdempotencyConflictError,
    InactiveProductError,
    InsufficientStockError,
    PricingError,
    ProductNotFoundError,
    TransactionAbortError,
    ValidationError,
)
from retailpos.validation import parse_sale_request


def _stock(db_session, product, record=None):
    db_session.refresh(product)
    if record is None:
        return product.stock
    db_session.refresh(record)
    return product.stock, record.quantity


def _assert_nothing_recorded(db_session):
    assert db_session.query(Sale).count() == 0
    assert db_session.query(SaleLine).count() == 0
    assert db_session.query(SourcedItem).count() == 0
    assert db_session.query(DocumentSequence).count() == 0


# =============================================================================
# COMMITTED SALES
# =============================================================================


class TestCreateSale:

    def test_simple_sale(self, db_session, store, cashier, make_product, stock_in, sale_request):
        # P: price 10.00, tax 0, stock 5 -> {P x 2}
        product = make_product(price_cents=1000, stock=5)
        record = stock_in(product, store, 5)

        sale = sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 2}],
                         payments=[{"method": "cash", "amount_cents": 2000}]),
            cashier,
        )

        assert sale.id is not None
        assert sale.subtotal_cents == 2000
        assert sale.tax_cents == 0
        assert sale.total_cents == 2000
        assert sale.status == "completed"
        assert sale.cashier_id == cashier.id
        assert sale.sale_number.startswith("SALE-")
        assert sale.sale_number.endswith(f"-{store.id:03d}-00001")
        assert _stock(db_session, product, record) == (3, 3)

    def test_lines_and_payments_recorded_in_order(self, db_session, store, cashier, make_product, sale_request):
        a = make_product(name="Apple", price_cents=150, stock=10)
        b = make_product(name="Bread", price_cents=320, stock=10)

        sale = sale_service.create_sale(
            sale_request(
                store,
                [
                    {"product_id": b.id, "quantity": 1},
                    {"product_id": a.id, "quantity": 4},
                ],
                payments=[
                    {"method": "card", "amount_cents": 500, "reference": "AUTH-1"},
                    {"method": "cash", "amount_cents": 500},
                ],
            ),
            cashier,
        )

        data = sale.to_dict()
        assert [line["product_name"] for line in data["items"]] == ["Bread", "Apple"]
        assert [p["method"] for p in data["payments"]] == ["card", "cash"]
        assert data["payments"][0]["reference"] == "AUTH-1"
        assert sale.amount_paid_cents == 1000
        assert sale.change_due_cents == 1000 - 920

    def test_total_invariant_with_tax_and_discounts(self, db_session, store, cashier, make_product, sale_request):
        a = make_product(name="A", price_cents=1000, tax_rate_bps=500)
        b = make_product(name="B", price_cents=333, tax_rate_bps=750)
        c = make_product(name="C", price_cents=2500)

        sale = sale_service.create_sale(
            sale_request(store, [
                {"product_id": a.id, "quantity": 2, "discount_cents": 100},
                {"product_id": b.id, "quantity": 3},
                {"product_id": c.id, "quantity": 1, "discount_cents": 250},
            ]),
            cashier,
        )

        lines = sale.lines
        assert sale.subtotal_cents == sum(l.unit_price_cents * l.quantity for l in lines)
        assert sale.discount_cents == sum(l.discount_cents for l in lines) == 350
        assert sale.tax_cents == sum(l.tax_cents for l in lines)
        assert sale.total_cents == sale.subtotal_cents - sale.discount_cents + sale.tax_cents
        # A: (2000 - 100) * 5% = 95; B: 999 * 7.5% = 74.925 -> 75
        assert [l.tax_cents for l in lines] == [95, 75, 0]

    def test_tax_rounds_half_up(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(price_cents=333, tax_rate_bps=750)

        sale = sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 1}]), cashier)

        assert sale.tax_cents == 25
        assert sale.total_cents == 358

    def test_variant_price(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(price_cents=1000, variants=[1200, 1500], stock=4)

        sale = sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 2, "variant_index": 1}]),
            cashier,
        )

        line = sale.lines[0]
        assert line.unit_price_cents == 1500
        assert line.variant_index == 1
        assert sale.subtotal_cents == 3000
        # Variant sales draw from the product-level counter
        assert _stock(db_session, product) == 2

    def test_unknown_variant_sells_at_base_price(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(price_cents=1000, variants=[1200])

        sale = sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 1, "variant_index": 5}]),
            cashier,
        )

        assert sale.lines[0].unit_price_cents == 1000
        assert sale.lines[0].variant_index is None

    def test_same_product_on_two_lines(self, db_session, store, cashier, make_product, stock_in, sale_request):
        product = make_product(stock=5)
        record = stock_in(product, store, 5)

        sale_service.create_sale(
            sale_request(store, [
                {"product_id": product.id, "quantity": 2},
                {"product_id": product.id, "quantity": 3, "discount_cents": 100},
            ]),
            cashier,
        )

        assert _stock(db_session, product, record) == (0, 0)

    def test_sale_numbers_increment(self, db_session, store, cashier, make_product, sale_request):
        product = make_product()
        now = datetime(2026, 5, 1, 10, 0)

        first = sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 1}]), cashier, now=now)
        second = sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 1}]), cashier, now=now)

        assert first.sale_number == f"SALE-20260501-{store.id:03d}-00001"
        assert second.sale_number == f"SALE-20260501-{store.id:03d}-00002"

    def test_customer_attached(self, db_session, store, cashier, customer, make_product, sale_request):
        product = make_product()

        sale = sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 1}], customer_id=customer.id, notes="gift wrap"),
            cashier,
        )

        expanded = sale.to_dict(expand=True)
        assert expanded["customer"]["name"] == "Ada Lovelace"
        assert expanded["cashier"]["id"] == cashier.id
        assert expanded["store"]["name"] == "Main Street"
        assert sale.notes == "gift wrap"


# =============================================================================
# SETTLEMENT STATUS
# =============================================================================


class TestSettlement:

    def test_underpaid_sale_is_due(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(price_cents=1000)

        sale = sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 2}],
                         payments=[{"method": "cash", "amount_cents": 500}]),
            cashier,
        )

        assert sale.status == "due"
        assert sale.amount_paid_cents == 500
        assert sale.change_due_cents == 0

    def test_no_payments_is_due(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(price_cents=1000)

        sale = sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 1}]), cashier)

        assert sale.status == "due"

    def test_exact_payment_completes(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(price_cents=1000)

        sale = sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 1}],
                         payments=[{"method": "mobile_wallet", "amount_cents": 1000}]),
            cashier,
        )

        assert sale.status == "completed"
        assert sale.change_due_cents == 0


# =============================================================================
# ATOMICITY
# =============================================================================


class TestAtomicity:

    def test_insufficient_stock_scenario(self, db_session, store, cashier, make_product, sale_request):
        # P stock 1 -> {P x 2}
        product = make_product(stock=1)

        with pytest.raises(InsufficientStockError) as exc:
            sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 2}]), cashier)

        assert exc.value.details["available"] == 1
        assert exc.value.details["required"] == 2
        assert _stock(db_session, product) == 1
        _assert_nothing_recorded(db_session)

    def test_inactive_product_scenario(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=10, is_active=False)

        with pytest.raises(InactiveProductError):
            sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 1}]), cashier)

        assert _stock(db_session, product) == 10
        _assert_nothing_recorded(db_session)

    def test_failure_on_last_line_discards_earlier_decrements(
        self, db_session, store, cashier, make_product, stock_in, sale_request
    ):
        a = make_product(name="A", stock=5)
        b = make_product(name="B", stock=5)
        a_record = stock_in(a, store, 5)
        b_record = stock_in(b, store, 1)

        with pytest.raises(InsufficientStockError) as exc:
            sale_service.create_sale(
                sale_request(store, [
                    {"product_id": a.id, "quantity": 2},
                    {"product_id": b.id, "quantity": 2},
                ]),
                cashier,
            )

        assert exc.value.ledger == "inventory"
        assert _stock(db_session, a, a_record) == (5, 5)
        assert _stock(db_session, b, b_record) == (5, 1)
        _assert_nothing_recorded(db_session)

    def test_aggregate_quantity_exceeds_stock(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=3)

        with pytest.raises(InsufficientStockError) as exc:
            sale_service.create_sale(
                sale_request(store, [
                    {"product_id": product.id, "quantity": 2},
                    {"product_id": product.id, "quantity": 2},
                ]),
                cashier,
            )

        assert exc.value.required == 4
        assert _stock(db_session, product) == 3

    def test_pricing_error_mid_cart(self, db_session, store, cashier, make_product, sale_request):
        priced = make_product(name="Priced", stock=5)
        unpriced = make_product(name="Unpriced", price_cents=0, stock=5)

        with pytest.raises(PricingError):
            sale_service.create_sale(
                sale_request(store, [
                    {"product_id": priced.id, "quantity": 1},
                    {"product_id": unpriced.id, "quantity": 1},
                ]),
                cashier,
            )

        assert _stock(db_session, priced) == 5
        _assert_nothing_recorded(db_session)

    def test_missing_product_mid_cart(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=5)

        with pytest.raises(ProductNotFoundError):
            sale_service.create_sale(
                sale_request(store, [
                    {"product_id": product.id, "quantity": 1},
                    {"product_id": 999999, "quantity": 1},
                ]),
                cashier,
            )

        assert _stock(db_session, product) == 5
        _assert_nothing_recorded(db_session)

    def test_failed_sale_does_not_consume_a_number(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=1)
        now = datetime(2026, 5, 1, 10, 0)

        with pytest.raises(InsufficientStockError):
            sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 2}]), cashier, now=now)
        sale = sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 1}]), cashier, now=now)

        assert sale.sale_number.endswith("-00001")

    def test_duplicate_sale_number_aborts(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=5)
        now = datetime(2026, 5, 1, 10, 0)
        taken = f"SALE-20260501-{store.id:03d}-00001"
        db_session.add(Sale(
            sale_number=taken,
            store_id=store.id,
            cashier_id=cashier.id,
            subtotal_cents=100,
            total_cents=100,
        ))
        db_session.commit()

        with pytest.raises(DuplicateSaleNumberError) as exc:
            sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 1}]), cashier, now=now)

        assert exc.value.details["sale_number"] == taken
        assert _stock(db_session, product) == 5
        assert db_session.query(Sale).count() == 1

    def test_time_budget_exceeded_aborts(
        self, app, db_session, store, cashier, make_product, sale_request, monkeypatch
    ):
        product = make_product(stock=5)
        monkeypatch.setitem(app.config, "SALE_TIMEOUT_SECONDS", 5)
        monkeypatch.setattr(UnitOfWork, "elapsed", property(lambda self: 60.0))

        with pytest.raises(TransactionAbortError) as exc:
            sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 1}]), cashier)

        assert exc.value.code == "transaction_aborted"
        assert _stock(db_session, product) == 5
        _assert_nothing_recorded(db_session)


# =============================================================================
# PRECONDITIONS
# =============================================================================


class TestPreconditions:

    def test_unknown_store(self, db_session, store, cashier, make_product, sale_request):
        product = make_product()
        req = parse_sale_request({"store_id": 999999, "items": [{"product_id": product.id, "quantity": 1}]})

        with pytest.raises(ValidationError):
            sale_service.create_sale(req, cashier)

    def test_inactive_store(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=5)
        store.is_active = False
        db_session.commit()

        with pytest.raises(ValidationError):
            sale_service.create_sale(sale_request(store, [{"product_id": product.id, "quantity": 1}]), cashier)

        assert _stock(db_session, product) == 5

    def test_unknown_customer(self, db_session, store, cashier, make_product, sale_request):
        product = make_product()

        with pytest.raises(ValidationError) as exc:
            sale_service.create_sale(
                sale_request(store, [{"product_id": product.id, "quantity": 1}], customer_id=999999),
                cashier,
            )

        assert exc.value.details == {"customer_id": 999999}


# =============================================================================
# SOURCED ITEMS
# =============================================================================


class TestSourcedLines:

    def test_sourced_item_scenario(self, db_session, store, cashier, make_product, stock_in, sale_request):
        # {P x 2, sourced, cost 8.00, override 15.00}
        product = make_product(price_cents=1000, stock=5)
        record = stock_in(product, store, 5)

        sale = sale_service.create_sale(
            sale_request(store, [{
                "product_id": product.id,
                "quantity": 2,
                "is_sourced": True,
                "sourcing_cost_cents": 800,
                "override_price_cents": 1500,
            }]),
            cashier,
        )

        line = sale.lines[0]
        assert line.unit_price_cents == 1500
        assert line.is_sourced is True
        assert line.sourcing_cost_cents == 800
        assert _stock(db_session, product, record) == (5, 5)

        items = db_session.query(SourcedItem).all()
        assert len(items) == 1
        item = items[0]
        assert item.sale_id == sale.id
        assert item.store_id == store.id
        assert item.quantity == 2
        assert item.sale_price_cents == 1500
        assert item.profit_cents == 1400
        assert item.sourced_by_user_id == cashier.id

    def test_sourced_line_ignores_stock_shortage(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=0)

        sale = sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 3, "is_sourced": True, "sourcing_cost_cents": 100}]),
            cashier,
        )

        assert sale.lines[0].unit_price_cents == 1000
        assert _stock(db_session, product) == 0
        assert db_session.query(SourcedItem).one().profit_cents == (1000 - 100) * 3

    def test_mixed_cart_only_owned_lines_touch_stock(self, db_session, store, cashier, make_product, sale_request):
        owned = make_product(name="Owned", stock=5)
        dropship = make_product(name="Dropship", stock=5)

        sale_service.create_sale(
            sale_request(store, [
                {"product_id": owned.id, "quantity": 2},
                {"product_id": dropship.id, "quantity": 4, "is_sourced": True,
                 "sourcing_cost_cents": 600, "override_price_cents": 900},
            ]),
            cashier,
        )

        assert _stock(db_session, owned) == 3
        assert _stock(db_session, dropship) == 5
        assert db_session.query(SourcedItem).count() == 1

    def test_loss_making_sourced_line(self, db_session, store, cashier, make_product, sale_request):
        product = make_product()

        sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 2, "is_sourced": True,
                                  "sourcing_cost_cents": 1200, "override_price_cents": 1000}]),
            cashier,
        )

        assert db_session.query(SourcedItem).one().profit_cents == -400


# =============================================================================
# IDEMPOTENCY
# =============================================================================


class TestIdempotency:

    def test_replay_returns_original_sale(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=5)
        payload = [{"product_id": product.id, "quantity": 2}]

        first = sale_service.create_sale(sale_request(store, payload, idempotency_key="till-1-0001"), cashier)
        again = sale_service.create_sale(sale_request(store, payload, idempotency_key="till-1-0001"), cashier)

        assert again.id == first.id
        assert db_session.query(Sale).count() == 1
        assert _stock(db_session, product) == 3

    def test_key_is_scoped_per_store(self, db_session, store, other_store, cashier, make_product, sale_request):
        product = make_product(stock=5)

        a = sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 1}], idempotency_key="k-1"), cashier
        )
        b = sale_service.create_sale(
            sale_request(other_store, [{"product_id": product.id, "quantity": 1}], idempotency_key="k-1"), cashier
        )

        assert a.id != b.id
        assert _stock(db_session, product) == 3

    def test_failed_attempt_does_not_claim_key(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=1)

        with pytest.raises(InsufficientStockError):
            sale_service.create_sale(
                sale_request(store, [{"product_id": product.id, "quantity": 2}], idempotency_key="retry-me"), cashier
            )
        sale = sale_service.create_sale(
            sale_request(store, [{"product_id": product.id, "quantity": 1}], idempotency_key="retry-me"), cashier
        )

        assert sale.idempotency_key == "retry-me"
        assert _stock(db_session, product) == 0

    def test_submit_reports_replay(self, db_session, store, cashier, make_product, sale_request):
        product = make_product(stock=5)
        payload = [{"product_id": product.id, "quantity": 1}]

        first, first_replayed = sale_service.submit_sale(sale_request(store, payload, idempotency_key="t-9"), cashier)
        again, again_replayed = sale_service.submit_sale(sale_request(store, payload, idempotency_key="t-9"), cashier)

        assert (first_replayed, again_replayed) == (False, True)
        assert again.id == first.id

    def test_same_key_different_cart_conflicts(self, db_session, store, cashier, make_product, sale_request):
        mug = make_product(name="Mug", stock=5)
        lamp = make_product(name="Lamp", stock=5)
        first = sale_service.create_sale(
            sale_request(store, [{"product_id": mug.id, "quantity": 1}], idempotency_key="till-3-0007"), cashier
        )

        with pytest.raises(IdempotencyConflictError) as exc:
            sale_service.create_sale(
                sale_request(store, [{"product_id": lamp.id, "quantity": 3}], idempotency_key="till-3-0007"), cashier
            )

        assert exc.value.http_status == 409
        assert exc.value.details == {"idempotency_key": "till-3-0007", "sale_number": first.sale_number}
        assert db_session.query(Sale).count() == 1
        assert _stock(db_session, lamp) == 5
        assert _stock(db_session, mug) == 4

    def test_losing_concurrent_submission_gets_winner(
        self, db_session, monkeypatch, store, cashier, make_product, sale_request
    ):
        product = make_product(stock=5)
        payload = [{"product_id": product.id, "quantity": 2}]
        winner = sale_service.create_sale(sale_request(store, payload, idempotency_key="till-4-0001"), cashier)

        # The loser's first lookup runs before the winner commits
        real_lookup = sale_service.find_by_idempotency_key
        lookups = []

        def lookup_misses_first(store_id, key):
            lookups.append(key)
            return None if len(lookups) == 1 else real_lookup(store_id, key)

        monkeypatch.setattr(sale_service, "find_by_idempotency_key", lookup_misses_first)

        sale, replayed = sale_service.submit_sale(sale_request(store, payload, idempotency_key="till-4-0001"), cashier)

        assert replayed is True
        assert sale.id == winner.id
        assert len(lookups) == 2
        assert db_session.query(Sale).count() == 1
        assert _stock(db_session, product) == 3


# =============================================================================
# CONSTRAINT VIOLATIONS
# =============================================================================


class _DriverError(Exception):
    """Driver error carrying the violated constraint the way psycopg does."""

    def __init__(self, message, constraint_name=None):
        super().__init__(message)
        self.diag = SimpleNamespace(constraint_name=constraint_name)


def _integrity_error(orig):
    return IntegrityError("INSERT INTO sales ...", {}, orig)


class TestConstraintViolations:

    def test_sqlite_sale_number(self):
        exc = _integrity_error(sqlite3.IntegrityError("UNIQUE constraint failed: sales.sale_number"))
        assert sale_recorder.is_sale_number_violation(exc)
        assert not sale_recorder.is_idempotency_violation(exc)

    def test_sqlite_idempotency_key(self):
        exc = _integrity_error(
            sqlite3.IntegrityError("UNIQUE constraint failed: sales.store_id, sales.idempotency_key")
        )
        assert sale_recorder.is_idempotency_violation(exc)
        assert not sale_recorder.is_sale_number_violation(exc)

    def test_key_value_mentioning_sale_number(self):
        exc = _integrity_error(_DriverError(
            'duplicate key value violates unique constraint "uq_sales_store_idempotency_key"\n'
            "DETAIL:  Key (store_id, idempotency_key)=(1, sale_number-retry) already exists.",
            constraint_name="uq_sales_store_idempotency_key",
        ))
        assert sale_recorder.is_idempotency_violation(exc)
        assert not sale_recorder.is_sale_number_violation(exc)

    def test_unrelated_constraint(self):
        exc = _integrity_error(_DriverError(
            'duplicate key value violates unique constraint "uq_sale_lines_position" (sale_number, idempotency_key)',
            constraint_name="uq_sale_lines_position",
        ))
        assert sale_recorder.violated_constraint(exc) is None
