"""
Error taxonomy for the order engine.

Every error carries a stable ``code`` so the HTTP layer can map it to a status
without inspecting messages.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class ValidationIssue:
    """A single problem found in an input struct."""

    field: str
    message: str

    def as_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class OrderEngineError(Exception):
    """Base exception for order engine errors."""

    code = "ORDER_ENGINE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderEngineError):
    """Malformed, missing or out-of-range input, including pricing mismatches."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, issues: Optional[Sequence[ValidationIssue]] = None):
        super().__init__(message)
        self.issues: List[ValidationIssue] = list(issues or [])


class InvalidCouponError(ValidationError):
    """Raised when a coupon code is not recognized."""

    code = "INVALID_COUPON"


class PricingMismatchError(ValidationError):
    """Raised when declared or stored pricing disagrees with the calculator."""

    code = "PRICING_MISMATCH"


class NotFoundError(OrderEngineError):
    """Raised when an order does not exist (or is not visible to the operation)."""

    code = "NOT_FOUND"


class ConflictError(OrderEngineError):
    """Duplicate order id, replayed confirmation or a transition from a terminal state."""

    code = "CONFLICT"


class SignatureError(OrderEngineError):
    """Raised when a payment callback signature does not match."""

    code = "INVALID_SIGNATURE"


class ExpiryError(OrderEngineError):
    """Raised when a pending gateway order is past its payment window."""

    code = "ORDER_EXPIRED"


class GatewayError(OrderEngineError):
    """Raised when the payment gateway fails, times out or answers unusably."""

    code = "GATEWAY_ERROR"


class StoreError(OrderEngineError):
    """Raised when the order store cannot complete an operation."""

    code = "STORE_ERROR"


class DuplicateOrderError(ConflictError):
    """Raised by stores when an order id already exists."""

    code = "DUPLICATE_ORDER"
