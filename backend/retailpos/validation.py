from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from .models.sales import PAYMENT_METHODS, SALE_STATUSES
from .time_utils import parse_iso_datetime
from .services.exceptions import ValidationError


# Maximum money value: $9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999
MAX_QUANTITY = 1_000_000
MAX_IDEMPOTENCY_KEY_LENGTH = 128

SALE_FIELDS = {"store_id", "items", "payments", "customer_id", "notes", "idempotency_key"}
LINE_FIELDS = {
    "product_id",
    "quantity",
    "variant_index",
    "discount_cents",
    "is_sourced",
    "sourcing_cost_cents",
    "override_price_cents",
}
PAYMENT_FIELDS = {"method", "amount_cents", "reference"}
SALE_UPDATE_FIELDS = {"notes", "status"}


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int
    variant_index: int | None = None
    discount_cents: int = 0
    is_sourced: bool = False
    sourcing_cost_cents: int = 0
    override_price_cents: int | None = None


@dataclass(frozen=True)
class PaymentRequest:
    method: str
    amount_cents: int
    reference: str | None = None


@dataclass(frozen=True)
class SaleRequest:
    store_id: int
    items: list[SaleLineRequest]
    payments: list[PaymentRequest] = field(default_factory=list)
    customer_id: int | None = None
    notes: str | None = None
    idempotency_key: str | None = None

    def stock_requirements(self) -> dict[int, int]:
        """Total quantity per product over the non-sourced lines."""
        totals: dict[int, int] = {}
        for item in self.items:
            if item.is_sourced:
                continue
            totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
        return totals

    def fingerprint(self) -> str:
        """
        SHA-256 over the cart, payments and customer.

        Two submissions under one idempotency key must carry the same
        fingerprint to be treated as the same sale. Notes are left out.
        """
        body = {
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "items": [asdict(item) for item in self.items],
            "payments": [asdict(p) for p in self.payments],
        }
        canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class SaleUpdate:
    notes: str | None = None
    status: str | None = None
    has_notes: bool = False


def _coerce_int(name: str, value: Any) -> int:
    # bool is a subclass of int and is never a valid integer here
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def _coerce_id(name: str, value: Any) -> int:
    result = _coerce_int(name, value)
    if result <= 0:
        raise ValidationError(f"{name} must be a positive id")
    return result


def _coerce_cents(name: str, value: Any) -> int:
    result = _coerce_int(name, value)
    if result < 0:
        raise ValidationError(f"{name} must be >= 0")
    if result > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT_CENTS}")
    return result


def _coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{name} must be a boolean")


def _coerce_text(name: str, value: Any, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    text = value.strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return text or None


def _reject_unknown(payload: dict, allowed: set[str], where: str) -> None:
    unknown = sorted(k for k in payload if k not in allowed)
    if unknown:
        raise ValidationError(
            f"Unknown field(s) in {where}: {', '.join(unknown)}",
            details={"fields": unknown},
        )


def _parse_line(index: int, raw: Any) -> SaleLineRequest:
    where = f"items[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{where} must be an object")
    _reject_unknown(raw, LINE_FIELDS, where)

    if raw.get("product_id") is None:
        raise ValidationError(f"{where}.product_id is required")
    if raw.get("quantity") is None:
        raise ValidationError(f"{where}.quantity is required")

    quantity = _coerce_int(f"{where}.quantity", raw["quantity"])
    if quantity <= 0:
        raise ValidationError(
            f"{where}.quantity must be > 0",
            details={"index": index, "quantity": quantity},
        )
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"{where}.quantity cannot exceed {MAX_QUANTITY}")

    variant_index = None
    if raw.get("variant_index") is not None:
        variant_index = _coerce_int(f"{where}.variant_index", raw["variant_index"])
        if variant_index < 0:
            raise ValidationError(f"{where}.variant_index must be >= 0")

    is_sourced = False
    if raw.get("is_sourced") is not None:
        is_sourced = _coerce_bool(f"{where}.is_sourced", raw["is_sourced"])

    sourcing_cost = 0
    override_price = None
    if is_sourced:
        if raw.get("sourcing_cost_cents") is not None:
            sourcing_cost = _coerce_cents(f"{where}.sourcing_cost_cents", raw["sourcing_cost_cents"])
        if raw.get("override_price_cents") is not None:
            override_price = _coerce_cents(f"{where}.override_price_cents", raw["override_price_cents"])
    elif raw.get("sourcing_cost_cents") is not None or raw.get("override_price_cents") is not None:
        raise ValidationError(f"{where}: sourcing fields require is_sourced=true")

    discount = 0
    if raw.get("discount_cents") is not None:
        discount = _coerce_cents(f"{where}.discount_cents", raw["discount_cents"])

    return SaleLineRequest(
        product_id=_coerce_id(f"{where}.product_id", raw["product_id"]),
        quantity=quantity,
        variant_index=variant_index,
        discount_cents=discount,
        is_sourced=is_sourced,
        sourcing_cost_cents=sourcing_cost,
        override_price_cents=override_price,
    )


def _parse_payment(index: int, raw: Any) -> PaymentRequest:
    where = f"payments[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{where} must be an object")
    _reject_unknown(raw, PAYMENT_FIELDS, where)

    method = raw.get("method")
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"{where}.method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"method": method},
        )
    if raw.get("amount_cents") is None:
        raise ValidationError(f"{where}.amount_cents is required")

    return PaymentRequest(
        method=method,
        amount_cents=_coerce_cents(f"{where}.amount_cents", raw["amount_cents"]),
        reference=_coerce_text(f"{where}.reference", raw.get("reference"), max_length=128),
    )


def parse_sale_request(payload: Any) -> SaleRequest:
    """
    Validate a create-sale body into a SaleRequest.

    Rejected before any stateful work: non-object body, unknown fields,
    missing store, empty cart, non-positive quantities, malformed money.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    _reject_unknown(payload, SALE_FIELDS, "sale")

    if payload.get("store_id") in (None, ""):
        raise ValidationError("Store ID is required")
    store_id = _coerce_id("store_id", payload["store_id"])

    items = payload.get("items")
    if not items:
        raise ValidationError("At least one item is required")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    payments = payload.get("payments") or []
    if not isinstance(payments, list):
        raise ValidationError("payments must be a list")

    customer_id = None
    if payload.get("customer_id") not in (None, ""):
        customer_id = _coerce_id("customer_id", payload["customer_id"])

    return SaleRequest(
        store_id=store_id,
        items=[_parse_line(i, raw) for i, raw in enumerate(items)],
        payments=[_parse_payment(i, raw) for i, raw in enumerate(payments)],
        customer_id=customer_id,
        notes=_coerce_text("notes", payload.get("notes")),
        idempotency_key=_coerce_text(
            "idempotency_key",
            payload.get("idempotency_key"),
            max_length=MAX_IDEMPOTENCY_KEY_LENGTH,
        ),
    )


def parse_sale_update(payload: Any) -> SaleUpdate:
    """Only notes and status may change on a committed sale."""
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    _reject_unknown(payload, SALE_UPDATE_FIELDS, "sale update")

    status = payload.get("status")
    if status is not None and status not in SALE_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(SALE_STATUSES)}",
            details={"status": status},
        )

    has_notes = "notes" in payload
    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string")

    return SaleUpdate(notes=notes, status=status, has_notes=has_notes)


RESTOCK_FIELDS = {"product_id", "store_id", "quantity", "location", "batch", "serial_numbers"}
BATCH_FIELDS = {"batch_no", "expiry_date", "cost_cents"}


@dataclass(frozen=True)
class RestockRequest:
    product_id: int
    store_id: int
    quantity: int
    location: str | None = None
    batch: dict | None = None
    serial_numbers: list[str] = field(default_factory=list)


def parse_restock_request(payload: Any) -> RestockRequest:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    _reject_unknown(payload, RESTOCK_FIELDS, "restock")

    for name in ("product_id", "store_id", "quantity"):
        if payload.get(name) is None:
            raise ValidationError(f"{name} is required")

    quantity = _coerce_int("quantity", payload["quantity"])
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}")

    batch = None
    raw_batch = payload.get("batch")
    if raw_batch is not None:
        if not isinstance(raw_batch, dict):
            raise ValidationError("batch must be an object")
        _reject_unknown(raw_batch, BATCH_FIELDS, "batch")
        batch = {
            "batch_no": _coerce_text("batch.batch_no", raw_batch.get("batch_no"), max_length=64),
            "expiry_date": _coerce_text("batch.expiry_date", raw_batch.get("expiry_date"), max_length=32),
            "quantity": quantity,
            "cost_cents": (
                _coerce_cents("batch.cost_cents", raw_batch["cost_cents"])
                if raw_batch.get("cost_cents") is not None else None
            ),
        }

    serials = payload.get("serial_numbers") or []
    if not isinstance(serials, list) or not all(isinstance(s, str) and s.strip() for s in serials):
        raise ValidationError("serial_numbers must be a list of non-empty strings")

    return RestockRequest(
        product_id=_coerce_id("product_id", payload["product_id"]),
        store_id=_coerce_id("store_id", payload["store_id"]),
        quantity=quantity,
        location=_coerce_text("location", payload.get("location"), max_length=128),
        batch=batch,
        serial_numbers=[s.strip() for s in serials],
    )


def parse_datetime_param(name: str, value: str | None) -> datetime | None:
    """Query-string datetime; ISO-8601 with or without offset."""
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime", details={name: value})
