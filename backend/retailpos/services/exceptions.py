# backend/retailpos/services/exceptions.py

"""
SALE ENGINE ERRORS

Every business-rule violation is fatal to the sale attempt that raised it.
Nothing here is recovered locally or retried by the engine; callers decide
whether to resubmit.

Each error carries a stable `code`, an HTTP status for the API layer, and a
`details` dict with enough context (offending product, shortfall) to render a
user-facing message.
"""


class SaleError(Exception):
    """Base exception for sale engine failures."""
    code = "sale_error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(SaleError):
    """Malformed request: missing store, empty cart, non-positive quantity, ..."""
    code = "validation_error"
    http_status = 400


class ProductNotFoundError(SaleError):
    code = "product_not_found"
    http_status = 404

    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found", details={"product_id": product_id})


class InactiveProductError(SaleError):
    code = "inactive_product"
    http_status = 409

    def __init__(self, product_id: int, product_name: str):
        super().__init__(
            f"Product {product_name} is not active",
            details={"product_id": product_id, "product_name": product_name},
        )


class PricingError(SaleError):
    """No resolvable non-zero unit price, or an unusable discount."""
    code = "pricing_error"
    http_status = 422


class InsufficientStockError(SaleError):
    code = "insufficient_stock"
    http_status = 409

    def __init__(
        self,
        *,
        product_id: int,
        product_name: str,
        ledger: str,
        available: int,
        required: int,
    ):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Required: {required}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "ledger": ledger,
                "available": available,
                "required": required,
            },
        )
        self.product_id = product_id
        self.ledger = ledger
        self.available = available
        self.required = required


class DuplicateSaleNumberError(SaleError):
    code = "duplicate_sale_number"
    http_status = 409

    def __init__(self, sale_number: str):
        super().__init__(
            f"Sale number {sale_number} is already in use",
            details={"sale_number": sale_number},
        )


class IdempotencyConflictError(SaleError):
    code = "idempotency_key_conflict"
    http_status = 409

    def __init__(self, key: str, sale_number: str):
        super().__init__(
            f"Idempotency key {key} was already used for a different sale",
            details={"idempotency_key": key, "sale_number": sale_number},
        )


class TransactionAbortError(SaleError):
    """Storage conflict, infrastructure failure or exhausted time budget."""
    code = "transaction_aborted"
    http_status = 503


class SaleNotFoundError(SaleError):
    code = "sale_not_found"
    http_status = 404

    def __init__(self, sale_id: int):
        super().__init__(f"Sale {sale_id} not found", details={"sale_id": sale_id})


class InvalidStatusTransitionError(SaleError):
    code = "invalid_status_transition"
    http_status = 409

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change sale status from {current} to {requested}",
            details={"current_status": current, "requested_status": requested},
        )


class SourcedItemNotFoundError(SaleError):
    code = "sourced_item_not_found"
    http_status = 404

    def __init__(self, item_id: int):
        super().__init__(f"Sourced item {item_id} not found", details={"sourced_item_id": item_id})
