"""Order & payment reconciliation core."""
from .errors import (
    ConflictError,
    DuplicateOrderError,
    ExpiryError,
    GatewayError,
    InvalidCouponError,
    NotFoundError,
    OrderEngineError,
    PricingMismatchError,
    SignatureError,
    StoreError,
    ValidationError,
    ValidationIssue,
)
from .expiry import ExpiryPolicy
from .gateway import GatewayCoordinator, PaymentInitiation, compute_signature, normalize_instrument
from .notifications import LogNotifier, NotificationService, WebhookNotifier
from .orders import OrderService, generate_order_id
from .pricing import PricingBreakdown, PricingCalculator
from .state_machine import OrderEvent, OrderState, OrderStateMachine
from .store import Guard, InMemoryOrderStore, OrderFilters, OrderStore

__all__ = [
    "ConflictError",
    "DuplicateOrderError",
    "ExpiryError",
    "ExpiryPolicy",
    "GatewayCoordinator",
    "GatewayError",
    "Guard",
    "InMemoryOrderStore",
    "InvalidCouponError",
    "LogNotifier",
    "NotFoundError",
    "NotificationService",
    "OrderEngineError",
    "OrderEvent",
    "OrderFilters",
    "OrderService",
    "OrderState",
    "OrderStateMachine",
    "OrderStore",
    "PaymentInitiation",
    "PricingBreakdown",
    "PricingCalculator",
    "PricingMismatchError",
    "SignatureError",
    "StoreError",
    "ValidationError",
    "ValidationIssue",
    "WebhookNotifier",
    "compute_signature",
    "generate_order_id",
    "normalize_instrument",
]
