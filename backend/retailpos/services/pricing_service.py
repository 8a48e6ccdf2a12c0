# Overview: Price & tax resolution for sale lines; pure functions over catalog rows.

"""
Pricing Service

Unit price resolution order:
1. Sourced line with a client-supplied override price -> the override.
2. Variant selector that addresses an existing variant -> the variant price.
3. Otherwise -> the product's base price.

A line whose resolved unit price is missing or zero is rejected with
PricingError; nothing is ever recorded as free.

Money is integer cents. Tax rates are basis points read from the product at
sale time (NULL -> 0):

    line_tax   = round_half_up((subtotal - discount) * rate_bps / 10000)
    line_total = subtotal - discount + line_tax
    sale_total = sum(subtotals) - sum(discounts) + sum(taxes)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ..models import Product
from .exceptions import PricingError


BPS_DENOMINATOR = 10_000

PRICE_SOURCE_OVERRIDE = "sourced_override"
PRICE_SOURCE_VARIANT = "variant"
PRICE_SOURCE_BASE = "base"


@dataclass(frozen=True)
class ResolvedPrice:
    unit_price_cents: int
    variant_index: int | None
    source: str


@dataclass(frozen=True)
class LineEconomics:
    unit_price_cents: int
    quantity: int
    subtotal_cents: int
    discount_cents: int
    tax_rate_bps: int
    tax_cents: int
    total_cents: int
    variant_index: int | None
    price_source: str


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounded to nearest, halves away from zero."""
    if numerator >= 0:
        return (numerator + denominator // 2) // denominator
    return -((-numerator + denominator // 2) // denominator)


def resolve_unit_price(
    product: Product,
    variant_index: int | None = None,
    *,
    is_sourced: bool = False,
    override_price_cents: int | None = None,
) -> ResolvedPrice:
    if is_sourced and override_price_cents:
        resolved = ResolvedPrice(override_price_cents, None, PRICE_SOURCE_OVERRIDE)
    else:
        variant = product.variant_at(variant_index)
        if variant is not None:
            resolved = ResolvedPrice(variant.price_cents, variant.position, PRICE_SOURCE_VARIANT)
        else:
            resolved = ResolvedPrice(product.price_cents, None, PRICE_SOURCE_BASE)

    if not resolved.unit_price_cents:
        raise PricingError(
            f"Price not found for product {product.name}",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "variant_index": variant_index,
            },
        )
    return resolved


def tax_rate_bps(product: Product) -> int:
    return product.tax_rate_bps or 0


def price_line(
    product: Product,
    quantity: int,
    *,
    discount_cents: int = 0,
    variant_index: int | None = None,
    is_sourced: bool = False,
    override_price_cents: int | None = None,
) -> LineEconomics:
    """Compute the full economics of one sale line."""
    resolved = resolve_unit_price(
        product,
        variant_index,
        is_sourced=is_sourced,
        override_price_cents=override_price_cents,
    )

    subtotal = resolved.unit_price_cents * quantity
    discount = discount_cents or 0
    if discount > subtotal:
        raise PricingError(
            f"Discount exceeds line subtotal for product {product.name}",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "subtotal_cents": subtotal,
                "discount_cents": discount,
            },
        )

    rate = tax_rate_bps(product)
    tax = round_half_up_div((subtotal - discount) * rate, BPS_DENOMINATOR)

    return LineEconomics(
        unit_price_cents=resolved.unit_price_cents,
        quantity=quantity,
        subtotal_cents=subtotal,
        discount_cents=discount,
        tax_rate_bps=rate,
        tax_cents=tax,
        total_cents=subtotal - discount + tax,
        variant_index=resolved.variant_index,
        price_source=resolved.source,
    )


def summarize(lines: Iterable[LineEconomics]) -> SaleTotals:
    subtotal = discount = tax = 0
    for line in lines:
        subtotal += line.subtotal_cents
        discount += line.discount_cents
        tax += line.tax_cents
    return SaleTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        tax_cents=tax,
        total_cents=subtotal - discount + tax,
    )
