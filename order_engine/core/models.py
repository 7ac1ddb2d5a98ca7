"""
Order aggregate and its value objects.

State lives in two enums, ``PaymentStatus`` and ``OrderStatus``; the pair of them is
what the state machine reasons about. Orders are immutable dataclasses: stores hand
out fresh copies and every mutation goes through a conditional write.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class PaymentMethod(str, Enum):
    """How the customer pays."""

    COD = "COD"
    GATEWAY = "Gateway"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class ShippingType(str, Enum):
    STANDARD = "Standard"
    EXPRESS = "Express"


class PaymentInstrument(str, Enum):
    """Normalized label of the instrument the gateway actually charged."""

    UPI = "UPI"
    CARD = "Card"
    NET_BANKING = "Net Banking"
    WALLET = "Wallet"
    EMI = "EMI"
    BANK_TRANSFER = "Bank Transfer"
    PAY_LATER = "Pay Later"


class NotificationKind(str, Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    ADMIN_NEW_ORDER = "admin_new_order"
    DELIVERY = "delivery"
    CANCELLATION = "cancellation"


# Persisted flag guarding each customer-facing notification.
NOTIFICATION_FLAGS: Dict[NotificationKind, str] = {
    NotificationKind.ORDER_CONFIRMATION: "email_sent",
    NotificationKind.DELIVERY: "delivery_email_sent",
    NotificationKind.CANCELLATION: "cancellation_email_sent",
}


@dataclass(frozen=True)
class Customer:
    first_name: str
    last_name: str
    email: str
    phone: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Address:
    address1: str
    city: str
    state: str
    pincode: str
    address2: str = ""
    country: str = "India"


@dataclass(frozen=True)
class GstDetails:
    gst_number: str = ""
    state: str = ""
    city: str = ""


@dataclass(frozen=True)
class LineItem:
    product_id: str
    name: str
    quantity: int
    price: Decimal
    variant: str = ""

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class ShippingMethod:
    type: ShippingType = ShippingType.STANDARD
    cost: Decimal = Decimal("0")


@dataclass(frozen=True)
class Coupon:
    code: str = ""
    discount: Decimal = Decimal("0")


@dataclass(frozen=True)
class Order:
    """Order aggregate root, identified by ``order_id``."""

    order_id: str
    customer: Customer
    shipping_address: Address
    items: Tuple[LineItem, ...]
    shipping_method: ShippingMethod
    coupon: Coupon
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    order_status: OrderStatus
    total: Decimal
    created_at: datetime
    gst_details: GstDetails = field(default_factory=GstDetails)
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_instrument: Optional[str] = None
    email_sent: bool = False
    delivery_email_sent: bool = False
    cancellation_email_sent: bool = False
    updated_at: Optional[datetime] = None

    def with_changes(self, **changes: Any) -> "Order":
        return replace(self, **changes)

    def notification_sent(self, kind: NotificationKind) -> bool:
        flag = NOTIFICATION_FLAGS.get(kind)
        return bool(flag and getattr(self, flag))

    def to_document(self) -> Dict[str, Any]:
        """Plain-JSON representation (camelCase keys, decimals as strings)."""
        return {
            "orderId": self.order_id,
            "customer": {
                "firstName": self.customer.first_name,
                "lastName": self.customer.last_name,
                "email": self.customer.email,
                "phone": self.customer.phone,
            },
            "shippingAddress": {
                "address1": self.shipping_address.address1,
                "address2": self.shipping_address.address2,
                "city": self.shipping_address.city,
                "state": self.shipping_address.state,
                "pincode": self.shipping_address.pincode,
                "country": self.shipping_address.country,
            },
            "gstDetails": {
                "gstNumber": self.gst_details.gst_number,
                "state": self.gst_details.state,
                "city": self.gst_details.city,
            },
            "items": [
                {
                    "productId": item.product_id,
                    "name": item.name,
                    "quantity": item.quantity,
                    "price": str(item.price),
                    "variant": item.variant,
                }
                for item in self.items
            ],
            "shippingMethod": {
                "type": self.shipping_method.type.value,
                "cost": str(self.shipping_method.cost),
            },
            "coupon": {"code": self.coupon.code, "discount": str(self.coupon.discount)},
            "paymentMethod": self.payment_method.value,
            "paymentStatus": self.payment_status.value,
            "orderStatus": self.order_status.value,
            "total": str(self.total),
            "gatewayOrderId": self.gateway_order_id,
            "gatewayPaymentId": self.gateway_payment_id,
            "gatewayInstrument": self.gateway_instrument,
            "emailSent": self.email_sent,
            "deliveryEmailSent": self.delivery_email_sent,
            "cancellationEmailSent": self.cancellation_email_sent,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def public_view(self) -> Dict[str, Any]:
        """Redacted view returned to the paying customer."""
        document = self.to_document()
        return {
            key: document[key]
            for key in (
                "orderId",
                "paymentStatus",
                "orderStatus",
                "gatewayPaymentId",
                "gatewayOrderId",
                "gatewayInstrument",
                "total",
                "customer",
                "shippingAddress",
                "items",
                "shippingMethod",
                "coupon",
                "createdAt",
            )
        }


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def line_items_from_documents(raw_items: Any) -> Tuple[LineItem, ...]:
    return tuple(
        LineItem(
            product_id=item["productId"],
            name=item["name"],
            quantity=int(item["quantity"]),
            price=Decimal(str(item["price"])),
            variant=item.get("variant", "") or "",
        )
        for item in raw_items
    )


def order_from_parts(
    *,
    order_id: str,
    customer: Dict[str, Any],
    shipping_address: Dict[str, Any],
    gst_details: Optional[Dict[str, Any]],
    items: Any,
    shipping_method: Dict[str, Any],
    coupon: Dict[str, Any],
    payment_method: str,
    payment_status: str,
    order_status: str,
    total: Any,
    created_at: datetime,
    updated_at: Optional[datetime] = None,
    gateway_order_id: Optional[str] = None,
    gateway_payment_id: Optional[str] = None,
    gateway_instrument: Optional[str] = None,
    email_sent: bool = False,
    delivery_email_sent: bool = False,
    cancellation_email_sent: bool = False,
) -> Order:
    """Rebuild an ``Order`` from document-shaped parts (JSON columns, API payloads)."""
    gst = gst_details or {}
    return Order(
        order_id=order_id,
        customer=Customer(
            first_name=customer["firstName"],
            last_name=customer["lastName"],
            email=customer["email"],
            phone=customer["phone"],
        ),
        shipping_address=Address(
            address1=shipping_address["address1"],
            address2=shipping_address.get("address2", "") or "",
            city=shipping_address["city"],
            state=shipping_address["state"],
            pincode=shipping_address["pincode"],
            country=shipping_address.get("country") or "India",
        ),
        gst_details=GstDetails(
            gst_number=gst.get("gstNumber", "") or "",
            state=gst.get("state", "") or "",
            city=gst.get("city", "") or "",
        ),
        items=line_items_from_documents(items),
        shipping_method=ShippingMethod(
            type=ShippingType(shipping_method.get("type") or ShippingType.STANDARD.value),
            cost=Decimal(str(shipping_method.get("cost", "0"))),
        ),
        coupon=Coupon(
            code=coupon.get("code", "") or "",
            discount=Decimal(str(coupon.get("discount", "0"))),
        ),
        payment_method=PaymentMethod(payment_method),
        payment_status=PaymentStatus(payment_status),
        order_status=OrderStatus(order_status),
        total=Decimal(str(total)),
        created_at=ensure_aware(created_at),
        updated_at=ensure_aware(updated_at) if updated_at else None,
        gateway_order_id=gateway_order_id,
        gateway_payment_id=gateway_payment_id,
        gateway_instrument=gateway_instrument,
        email_sent=email_sent,
        delivery_email_sent=delivery_email_sent,
        cancellation_email_sent=cancellation_email_sent,
    )


def order_from_document(document: Dict[str, Any]) -> Order:
    """Inverse of ``Order.to_document``."""
    return order_from_parts(
        order_id=document["orderId"],
        customer=document["customer"],
        shipping_address=document["shippingAddress"],
        gst_details=document.get("gstDetails"),
        items=document["items"],
        shipping_method=document["shippingMethod"],
        coupon=document.get("coupon") or {},
        payment_method=document["paymentMethod"],
        payment_status=document["paymentStatus"],
        order_status=document["orderStatus"],
        total=document["total"],
        created_at=datetime.fromisoformat(document["createdAt"]),
        updated_at=(
            datetime.fromisoformat(document["updatedAt"]) if document.get("updatedAt") else None
        ),
        gateway_order_id=document.get("gatewayOrderId"),
        gateway_payment_id=document.get("gatewayPaymentId"),
        gateway_instrument=document.get("gatewayInstrument"),
        email_sent=bool(document.get("emailSent")),
        delivery_email_sent=bool(document.get("deliveryEmailSent")),
        cancellation_email_sent=bool(document.get("cancellationEmailSent")),
    )


__all__ = [
    "Address",
    "Coupon",
    "Customer",
    "GstDetails",
    "LineItem",
    "NOTIFICATION_FLAGS",
    "NotificationKind",
    "Order",
    "OrderStatus",
    "PaymentInstrument",
    "PaymentMethod",
    "PaymentStatus",
    "ShippingMethod",
    "ShippingType",
    "ensure_aware",
    "order_from_document",
    "order_from_parts",
    "utcnow",
]
