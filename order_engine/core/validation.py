"""
Input structs for every order operation and the pure validators that check them.

Validators never raise on bad input; they return a list of ``ValidationIssue`` so the
caller decides how to surface them. ``ensure_valid`` is the usual way to do that.
"""
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from .errors import ValidationError, ValidationIssue
from .models import Address, Customer, GstDetails, LineItem, OrderStatus, PaymentMethod, ShippingType

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[0-9]{10}$")
PINCODE_PATTERN = re.compile(r"^[0-9]{6}$")
GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")
ORDER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
GATEWAY_ID_PATTERN = re.compile(r"^[A-Za-z0-9_]{1,64}$")
MARKUP_PATTERN = re.compile(r"[<>]")

MAX_TEXT_LENGTH = 200
MAX_ITEMS = 100


@dataclass(frozen=True)
class OrderIntake:
    """Everything a client sends to place an order."""

    customer: Customer
    shipping_address: Address
    items: Tuple[LineItem, ...]
    payment_method: str
    total: Decimal
    shipping_type: str = ShippingType.STANDARD.value
    shipping_cost: Decimal = Decimal("0")
    coupon_code: str = ""
    gst_details: GstDetails = field(default_factory=GstDetails)


@dataclass(frozen=True)
class InitiatePaymentInput:
    order_id: str


@dataclass(frozen=True)
class VerifyPaymentInput:
    order_id: str
    payment_id: str
    gateway_order_id: str
    signature: str


@dataclass(frozen=True)
class ForceConfirmInput:
    order_id: str
    gateway_payment_id: Optional[str] = None


@dataclass(frozen=True)
class StatusUpdateInput:
    order_id: str
    order_status: str


def _require_text(issues: List[ValidationIssue], field_name: str, value: Optional[str]) -> None:
    if not value or not value.strip():
        issues.append(ValidationIssue(field_name, "This field is required"))
        return
    _check_text(issues, field_name, value)


def _check_text(issues: List[ValidationIssue], field_name: str, value: Optional[str]) -> None:
    if not value:
        return
    if len(value) > MAX_TEXT_LENGTH:
        issues.append(
            ValidationIssue(field_name, f"Must be at most {MAX_TEXT_LENGTH} characters")
        )
    if MARKUP_PATTERN.search(value):
        issues.append(ValidationIssue(field_name, "Must not contain markup characters"))


def _check_order_id(issues: List[ValidationIssue], value: Optional[str]) -> None:
    if not value or not ORDER_ID_PATTERN.match(value):
        issues.append(ValidationIssue("orderId", "A valid order id is required"))


def validate_customer(customer: Customer) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    _require_text(issues, "customer.firstName", customer.first_name)
    _require_text(issues, "customer.lastName", customer.last_name)
    if not customer.email or not EMAIL_PATTERN.match(customer.email):
        issues.append(ValidationIssue("customer.email", "Please enter a valid email address"))
    if not customer.phone or not PHONE_PATTERN.match(customer.phone):
        issues.append(ValidationIssue("customer.phone", "Phone number must be 10 digits"))
    return issues


def validate_address(address: Address) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    _require_text(issues, "shippingAddress.address1", address.address1)
    _check_text(issues, "shippingAddress.address2", address.address2)
    _require_text(issues, "shippingAddress.city", address.city)
    _require_text(issues, "shippingAddress.state", address.state)
    _check_text(issues, "shippingAddress.country", address.country)
    if not address.pincode or not PINCODE_PATTERN.match(address.pincode):
        issues.append(ValidationIssue("shippingAddress.pincode", "Pincode must be 6 digits"))
    return issues


def validate_gst_details(gst: GstDetails) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    if not gst.gst_number:
        return issues
    if not GSTIN_PATTERN.match(gst.gst_number):
        issues.append(ValidationIssue("gstDetails.gstNumber", "Please enter a valid GST number"))
    _require_text(issues, "gstDetails.state", gst.state)
    _require_text(issues, "gstDetails.city", gst.city)
    return issues


def validate_items(items: Sequence[LineItem]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    if not items:
        issues.append(ValidationIssue("items", "Order must contain at least one item"))
        return issues
    if len(items) > MAX_ITEMS:
        issues.append(ValidationIssue("items", f"Order may contain at most {MAX_ITEMS} items"))
    for index, item in enumerate(items):
        prefix = f"items[{index}]"
        _require_text(issues, f"{prefix}.productId", item.product_id)
        _require_text(issues, f"{prefix}.name", item.name)
        _check_text(issues, f"{prefix}.variant", item.variant)
        if item.quantity < 1:
            issues.append(ValidationIssue(f"{prefix}.quantity", "Quantity must be at least 1"))
        if item.price < 0:
            issues.append(ValidationIssue(f"{prefix}.price", "Price cannot be negative"))
    return issues


def validate_order_intake(intake: OrderIntake) -> List[ValidationIssue]:
    """Check shape and ranges of an order. Pricing is checked separately."""
    issues: List[ValidationIssue] = []
    issues.extend(validate_customer(intake.customer))
    issues.extend(validate_address(intake.shipping_address))
    issues.extend(validate_gst_details(intake.gst_details))
    issues.extend(validate_items(intake.items))

    if intake.payment_method not in {m.value for m in PaymentMethod}:
        issues.append(
            ValidationIssue("paymentMethod", "Payment method must be one of: COD, Gateway")
        )
    if intake.shipping_type not in {t.value for t in ShippingType}:
        issues.append(
            ValidationIssue("shippingMethod.type", "Shipping type must be Standard or Express")
        )
    if intake.shipping_cost < 0:
        issues.append(ValidationIssue("shippingMethod.cost", "Shipping cost cannot be negative"))
    if intake.total < 0:
        issues.append(ValidationIssue("total", "Total cannot be negative"))
    _check_text(issues, "coupon.code", intake.coupon_code)
    return issues


def validate_initiate(data: InitiatePaymentInput) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    _check_order_id(issues, data.order_id)
    return issues


def validate_verify(data: VerifyPaymentInput) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    _check_order_id(issues, data.order_id)
    if not data.payment_id or not GATEWAY_ID_PATTERN.match(data.payment_id):
        issues.append(ValidationIssue("paymentId", "A valid payment id is required"))
    if not data.gateway_order_id or not GATEWAY_ID_PATTERN.match(data.gateway_order_id):
        issues.append(ValidationIssue("gatewayOrderId", "A valid gateway order id is required"))
    if not data.signature:
        issues.append(ValidationIssue("signature", "Signature is required"))
    return issues


def validate_force_confirm(data: ForceConfirmInput) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    _check_order_id(issues, data.order_id)
    if data.gateway_payment_id and not GATEWAY_ID_PATTERN.match(data.gateway_payment_id):
        issues.append(ValidationIssue("gatewayPaymentId", "A valid payment id is required"))
    return issues


def validate_status_update(data: StatusUpdateInput) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    _check_order_id(issues, data.order_id)
    allowed = (OrderStatus.CONFIRMED, OrderStatus.DELIVERED, OrderStatus.CANCELLED)
    if data.order_status not in {s.value for s in allowed}:
        issues.append(
            ValidationIssue(
                "orderStatus", "Status must be one of: Confirmed, Delivered, Cancelled"
            )
        )
    return issues


def ensure_valid(issues: Sequence[ValidationIssue], message: str = "Validation failed") -> None:
    """
    Raises:
        ValidationError: If ``issues`` is non-empty
    """
    if issues:
        raise ValidationError(message, issues)
