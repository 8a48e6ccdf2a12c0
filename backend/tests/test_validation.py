"""
Request validation tests.

Verifies that malformed sale, update and restock payloads are rejected
before any stateful work, with strict integer handling for ids, quantities
and money.
"""

import pytest

from retailpos.services.exceptions import ValidationError
from retailpos.validation import (
    parse_datetime_param,
    parse_restock_request,
    parse_sale_request,
    parse_sale_update,
)


def _sale(**overrides):
    payload = {"store_id": 1, "items": [{"product_id": 1, "quantity": 1}]}
    payload.update(overrides)
    return payload


# =============================================================================
# SALE REQUESTS
# =============================================================================


class TestParseSaleRequest:

    def test_minimal_request(self):
        req = parse_sale_request(_sale())

        assert req.store_id == 1
        assert len(req.items) == 1
        assert req.items[0].discount_cents == 0
        assert req.items[0].is_sourced is False
        assert req.payments == []
        assert req.idempotency_key is None

    def test_numeric_strings_accepted(self):
        req = parse_sale_request(_sale(store_id="3", items=[{"product_id": "7", "quantity": " 2 "}]))
        assert req.store_id == 3
        assert req.items[0].product_id == 7
        assert req.items[0].quantity == 2

    @pytest.mark.parametrize("payload", [None, {}, {"items": [{"product_id": 1, "quantity": 1}]}])
    def test_missing_store(self, payload):
        with pytest.raises(ValidationError):
            parse_sale_request(payload)

    def test_non_object_body(self):
        with pytest.raises(ValidationError):
            parse_sale_request(["not", "an", "object"])

    @pytest.mark.parametrize("items", [None, []])
    def test_empty_cart(self, items):
        with pytest.raises(ValidationError) as exc:
            parse_sale_request(_sale(items=items))
        assert "item" in exc.value.message

    def test_unknown_top_level_field(self):
        with pytest.raises(ValidationError) as exc:
            parse_sale_request(_sale(total_cents=1))
        assert exc.value.details == {"fields": ["total_cents"]}

    def test_unknown_line_field(self):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(items=[{"product_id": 1, "quantity": 1, "unit_price_cents": 5}]))

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity(self, quantity):
        with pytest.raises(ValidationError) as exc:
            parse_sale_request(_sale(items=[{"product_id": 1, "quantity": quantity}]))
        assert exc.value.details["quantity"] == quantity

    @pytest.mark.parametrize("quantity", [1.5, "1.0", "1e3", True, "", "abc"])
    def test_non_integer_quantity(self, quantity):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(items=[{"product_id": 1, "quantity": quantity}]))

    def test_quantity_upper_bound(self):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(items=[{"product_id": 1, "quantity": 1_000_001}]))

    def test_missing_product_id(self):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(items=[{"quantity": 1}]))

    def test_negative_discount(self):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(items=[{"product_id": 1, "quantity": 1, "discount_cents": -1}]))

    def test_negative_variant_index(self):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(items=[{"product_id": 1, "quantity": 1, "variant_index": -1}]))

    def test_sourcing_fields_require_sourced_flag(self):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(items=[{"product_id": 1, "quantity": 1, "sourcing_cost_cents": 100}]))

    def test_sourced_line(self):
        req = parse_sale_request(_sale(items=[{
            "product_id": 1,
            "quantity": 2,
            "is_sourced": True,
            "sourcing_cost_cents": 800,
            "override_price_cents": 1500,
        }]))

        line = req.items[0]
        assert line.is_sourced is True
        assert line.sourcing_cost_cents == 800
        assert line.override_price_cents == 1500

    def test_sourced_flag_must_be_boolean(self):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(items=[{"product_id": 1, "quantity": 1, "is_sourced": "yes"}]))

    def test_payments(self):
        req = parse_sale_request(_sale(payments=[
            {"method": "card", "amount_cents": 1500, "reference": " AUTH-9 "},
            {"method": "cash", "amount_cents": "500"},
        ]))

        assert [(p.method, p.amount_cents) for p in req.payments] == [("card", 1500), ("cash", 500)]
        assert req.payments[0].reference == "AUTH-9"

    def test_unknown_payment_method(self):
        with pytest.raises(ValidationError) as exc:
            parse_sale_request(_sale(payments=[{"method": "barter", "amount_cents": 100}]))
        assert exc.value.details == {"method": "barter"}

    def test_payment_amount_bounds(self):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(payments=[{"method": "cash", "amount_cents": 1_000_000_000}]))

    def test_idempotency_key_length(self):
        with pytest.raises(ValidationError):
            parse_sale_request(_sale(idempotency_key="k" * 129))

    def test_blank_notes_become_none(self):
        assert parse_sale_request(_sale(notes="   ")).notes is None


class TestStockRequirements:

    def test_aggregates_owned_lines_per_product(self):
        req = parse_sale_request(_sale(items=[
            {"product_id": 2, "quantity": 1},
            {"product_id": 1, "quantity": 2},
            {"product_id": 2, "quantity": 4},
            {"product_id": 3, "quantity": 9, "is_sourced": True},
        ]))

        assert req.stock_requirements() == {1: 2, 2: 5}


class TestFingerprint:

    def test_stable_for_equal_carts(self):
        a = parse_sale_request(_sale(payments=[{"method": "cash", "amount_cents": 500}]))
        b = parse_sale_request(_sale(payments=[{"method": "cash", "amount_cents": "500"}]))
        assert a.fingerprint() == b.fingerprint()
        assert len(a.fingerprint()) == 64

    def test_notes_do_not_count(self):
        assert parse_sale_request(_sale(notes="gift")).fingerprint() == parse_sale_request(_sale()).fingerprint()

    @pytest.mark.parametrize("overrides", [
        {"items": [{"product_id": 1, "quantity": 2}]},
        {"items": [{"product_id": 2, "quantity": 1}]},
        {"payments": [{"method": "card", "amount_cents": 100}]},
        {"customer_id": 4},
    ])
    def test_changes_with_cart(self, overrides):
        assert parse_sale_request(_sale(**overrides)).fingerprint() != parse_sale_request(_sale()).fingerprint()


# =============================================================================
# SALE UPDATES
# =============================================================================


class TestParseSaleUpdate:

    def test_status_only(self):
        update = parse_sale_update({"status": "refunded"})
        assert update.status == "refunded"
        assert update.has_notes is False

    def test_notes_can_be_cleared(self):
        update = parse_sale_update({"notes": None})
        assert update.has_notes is True
        assert update.notes is None

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            parse_sale_update({"status": "voided"})

    @pytest.mark.parametrize("field", ["total_cents", "items", "store_id"])
    def test_amounts_and_lines_are_not_editable(self, field):
        with pytest.raises(ValidationError):
            parse_sale_update({field: 1})


# =============================================================================
# RESTOCK & QUERY PARAMETERS
# =============================================================================


class TestParseRestockRequest:

    def test_full_request(self):
        req = parse_restock_request({
            "product_id": 4,
            "store_id": 2,
            "quantity": 10,
            "location": "Back room",
            "batch": {"batch_no": "B-7", "expiry_date": "2027-06-30", "cost_cents": 250},
            "serial_numbers": [" SN-1 ", "SN-2"],
        })

        assert req.quantity == 10
        assert req.batch == {"batch_no": "B-7", "expiry_date": "2027-06-30", "quantity": 10, "cost_cents": 250}
        assert req.serial_numbers == ["SN-1", "SN-2"]

    @pytest.mark.parametrize("missing", ["product_id", "store_id", "quantity"])
    def test_required_fields(self, missing):
        payload = {"product_id": 1, "store_id": 1, "quantity": 1}
        del payload[missing]
        with pytest.raises(ValidationError):
            parse_restock_request(payload)

    def test_non_positive_quantity(self):
        with pytest.raises(ValidationError):
            parse_restock_request({"product_id": 1, "store_id": 1, "quantity": 0})

    def test_blank_serial_number(self):
        with pytest.raises(ValidationError):
            parse_restock_request({"product_id": 1, "store_id": 1, "quantity": 1, "serial_numbers": [""]})


class TestParseDatetimeParam:

    def test_absent(self):
        assert parse_datetime_param("start", None) is None

    def test_iso_value(self):
        value = parse_datetime_param("start", "2026-03-01T00:00:00Z")
        assert (value.year, value.month, value.day) == (2026, 3, 1)

    def test_garbage(self):
        with pytest.raises(ValidationError) as exc:
            parse_datetime_param("end", "yesterday")
        assert exc.value.details == {"end": "yesterday"}
