"""
Storefront Inventory - Domain errors

Every error the inventory core raises on purpose derives from StorefrontError.
The API layer renders them as {"detail": message, "error": code, **details}.
"""
from typing import Any


class StorefrontError(Exception):
    status_code: int = 400
    code: str = "storefront_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


# ── Contention ────────────────────────────────────────────────────────────────

class InsufficientStock(StorefrontError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, product_id: str, product_name: str | None, requested: int, available: int):
        label = product_name or product_id
        super().__init__(
            f"Not enough stock for {label}: requested={requested}, available={available}",
            product_id=product_id,
            product_name=product_name,
            requested=requested,
            available=available,
            shortfall=max(0, requested - available),
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class CartChanged(StorefrontError):
    status_code = 409
    code = "cart_changed"


# ── Policy violations ─────────────────────────────────────────────────────────

class QuotaExceeded(StorefrontError):
    status_code = 400
    code = "quota_exceeded"

    def __init__(self, product_name: str, limit: int, bought: int, requested: int):
        super().__init__(
            f"Quota exceeded for {product_name}. Limit: {limit}, Bought: {bought}, Requested: {requested}",
            limit=limit,
            bought=bought,
            requested=requested,
        )


class DuplicateSlipDetected(StorefrontError):
    status_code = 409
    code = "duplicate_slip"

    def __init__(self, order_id: str, amount: int, date: str):
        super().__init__(
            f"Duplicate payment detected: matches order {order_id}",
            duplicate_order_id=order_id,
            duplicate_amount=amount,
            duplicate_date=date,
        )


class AmountMismatch(StorefrontError):
    status_code = 400
    code = "amount_mismatch"

    def __init__(self, expected: int, received: int):
        super().__init__(
            f"Amount mismatch: expected {expected}, received {received}",
            expected=expected,
            received=received,
        )


class EmptyCart(StorefrontError):
    status_code = 400
    code = "empty_cart"

    def __init__(self):
        super().__init__("Cart is empty")


class InvalidTransition(StorefrontError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, order_id: str, current: str, target: str):
        super().__init__(
            f"Order {order_id} cannot move from '{current}' to '{target}'",
            order_id=order_id,
            current_status=current,
            target_status=target,
        )


class OrderAlreadyFinalized(StorefrontError):
    status_code = 400
    code = "order_finalized"

    def __init__(self, order_id: str, status: str):
        super().__init__(f"Order is already {status}", order_id=order_id, status=status)


class ProductHasHistory(StorefrontError):
    status_code = 409
    code = "product_has_history"

    def __init__(self, product_id: str):
        super().__init__(
            f"Product {product_id} has stock ledger history and cannot be deleted",
            product_id=product_id,
        )


# ── Not found ─────────────────────────────────────────────────────────────────

class ProductNotFound(StorefrontError):
    status_code = 404
    code = "product_not_found"

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}", product_id=product_id)


class OrderNotFound(StorefrontError):
    status_code = 404
    code = "order_not_found"

    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}", order_id=order_id)


class LocationNotFound(StorefrontError):
    status_code = 404
    code = "location_not_found"

    def __init__(self, location_id: str):
        super().__init__(f"Location not found: {location_id}", location_id=location_id)
