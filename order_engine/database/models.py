"""SQLAlchemy database models for the order engine."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, Index, Numeric, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..core.models import Order, order_from_parts

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class OrderRecord(Base):
    """
    Orders table.

    One row per order, keyed by the unique ``order_id``. Status fields, gateway ids
    and notification flags are scalar columns so conditional updates can compare
    them; customer, address and line items are immutable JSON documents.
    """

    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    order_status: Mapped[str] = mapped_column(String(20), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    customer: Mapped[Dict[str, Any]] = mapped_column(JsonDocument, nullable=False)
    shipping_address: Mapped[Dict[str, Any]] = mapped_column(JsonDocument, nullable=False)
    gst_details: Mapped[Dict[str, Any] | None] = mapped_column(JsonDocument, nullable=True)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JsonDocument, nullable=False)
    shipping_method: Mapped[Dict[str, Any]] = mapped_column(JsonDocument, nullable=False)
    coupon: Mapped[Dict[str, Any]] = mapped_column(JsonDocument, nullable=False)

    gateway_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    gateway_payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    gateway_instrument: Mapped[str | None] = mapped_column(String(50), nullable=True)

    email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivery_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancellation_email_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("total >= 1", name="minimum_total"),
        CheckConstraint("payment_method IN ('COD', 'Gateway')", name="valid_payment_method"),
        CheckConstraint(
            "payment_status IN ('Pending', 'Success', 'Failed')", name="valid_payment_status"
        ),
        CheckConstraint(
            "order_status IN ('Pending', 'Confirmed', 'Delivered', 'Cancelled')",
            name="valid_order_status",
        ),
        Index("idx_orders_status_created", "payment_status", "created_at"),
        Index("idx_orders_pending_gateway", "payment_method", "payment_status", "created_at"),
    )

    @classmethod
    def from_domain(cls, order: Order) -> "OrderRecord":
        document = order.to_document()
        return cls(
            order_id=order.order_id,
            payment_method=order.payment_method.value,
            payment_status=order.payment_status.value,
            order_status=order.order_status.value,
            total=order.total,
            customer=document["customer"],
            shipping_address=document["shippingAddress"],
            gst_details=document["gstDetails"],
            items=document["items"],
            shipping_method=document["shippingMethod"],
            coupon=document["coupon"],
            gateway_order_id=order.gateway_order_id,
            gateway_payment_id=order.gateway_payment_id,
            gateway_instrument=order.gateway_instrument,
            email_sent=order.email_sent,
            delivery_email_sent=order.delivery_email_sent,
            cancellation_email_sent=order.cancellation_email_sent,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

    def to_domain(self) -> Order:
        return order_from_parts(
            order_id=self.order_id,
            customer=self.customer,
            shipping_address=self.shipping_address,
            gst_details=self.gst_details,
            items=self.items,
            shipping_method=self.shipping_method,
            coupon=self.coupon,
            payment_method=self.payment_method,
            payment_status=self.payment_status,
            order_status=self.order_status,
            total=self.total,
            created_at=self.created_at,
            updated_at=self.updated_at,
            gateway_order_id=self.gateway_order_id,
            gateway_payment_id=self.gateway_payment_id,
            gateway_instrument=self.gateway_instrument,
            email_sent=self.email_sent,
            delivery_email_sent=self.delivery_email_sent,
            cancellation_email_sent=self.cancellation_email_sent,
        )

    def __repr__(self) -> str:
        """String representation of OrderRecord."""
        return (
            f"<OrderRecord(order_id={self.order_id}, payment={self.payment_status}, "
            f"status={self.order_status}, total={self.total})>"
        )
