"""Checkout and payment errors.

Each error carries a short machine ``code`` (the same strings the HTTP layer
puts under ``detail.error``) and, for client-correctable failures, the facts
needed to render a useful message.
"""
from __future__ import annotations

from typing import Any, Dict


class OrderError(Exception):
    code = "order_error"

    def detail(self) -> Dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class EmptyCart(OrderError):
    code = "empty_cart"

    def __init__(self) -> None:
        super().__init__("No order items")


class TotalMismatch(OrderError):
    code = "total_mismatch"

    def __init__(self, submitted, computed) -> None:
        self.submitted = submitted
        self.computed = computed
        super().__init__(f"Total amount mismatch: submitted {submitted}, items add up to {computed}")

    def detail(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": str(self),
            "submitted": str(self.submitted),
            "computed": str(self.computed),
        }


class StockError(OrderError):
    """Reservation failed for one product; nothing was reserved."""

    def __init__(self, product_id: int, message: str) -> None:
        self.product_id = product_id
        super().__init__(message)


class ProductNotFound(StockError):
    code = "product_not_found"

    def __init__(self, product_id: int) -> None:
        super().__init__(product_id, f"Product not found: {product_id}")

    def detail(self) -> Dict[str, Any]:
        return {"error": self.code, "product_id": self.product_id, "message": str(self)}


class InsufficientStock(StockError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int, name: str | None = None) -> None:
        self.requested = requested
        self.available = available
        self.name = name
        label = f"'{name}' (ID: {product_id})" if name else f"{product_id}"
        super().__init__(
            product_id,
            f"Insufficient stock for product {label}. Available: {available}, Requested: {requested}",
        )

    def detail(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "product_id": self.product_id,
            "requested": self.requested,
            "available": self.available,
            "message": str(self),
        }


class PersistenceFailure(OrderError):
    code = "persistence_failure"


class TransientStoreError(OrderError):
    """The store dropped out mid-transaction. The whole call is safe to retry."""
    code = "store_unavailable"


class OrderNotFound(OrderError):
    code = "order_not_found"

    def __init__(self, order_id: int) -> None:
        self.order_id = order_id
        super().__init__(f"Order with id {order_id} not found")


class InvalidPaymentTransition(OrderError):
    code = "invalid_payment_transition"

    def __init__(self, order_id: int, payment_status: str, requested: str) -> None:
        self.order_id = order_id
        self.payment_status = payment_status
        self.requested = requested
        super().__init__(
            f"Order {order_id} payment is already '{payment_status}', cannot mark it '{requested}'"
        )


class InvalidStatusTransition(OrderError):
    code = "invalid_status_transition"

    def __init__(self, order_id: int, current: str, requested: str) -> None:
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(f"Order {order_id} is '{current}', cannot move it to '{requested}'")

    def detail(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "current": self.current,
            "requested": self.requested,
            "message": str(self),
        }


class ImmediatePaymentDisabled(OrderError):
    code = "immediate_payment_disabled"

    def __init__(self) -> None:
        super().__init__("Immediate payment is only available when ALLOW_IMMEDIATE_PAYMENT is set")


class GatewayNotConfigured(OrderError):
    code = "gateway_not_configured"

    def __init__(self) -> None:
        super().__init__("Stripe is not configured. Set STRIPE_SECRET_KEY.")


class GatewayError(OrderError):
    """The payment provider rejected or failed the request."""
    code = "gateway_error"
