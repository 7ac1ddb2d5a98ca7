"""
Pydantic schemas for API request/response models.

Request schemas only check JSON shape and types; domain rules live in
``order_engine.core.validation`` so they can be applied outside HTTP too.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.models import Address, Customer, GstDetails, LineItem
from ..core.validation import (
    ForceConfirmInput,
    InitiatePaymentInput,
    OrderIntake,
    StatusUpdateInput,
    VerifyPaymentInput,
)


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerSchema(CamelModel):
    first_name: str
    last_name: str
    email: str
    phone: str


class AddressSchema(CamelModel):
    address1: str
    address2: str = ""
    city: str
    state: str
    pincode: str
    country: str = "India"


class GstDetailsSchema(CamelModel):
    gst_number: str = ""
    state: str = ""
    city: str = ""


class LineItemSchema(CamelModel):
    product_id: str
    name: str
    quantity: int
    price: Decimal
    variant: str = ""


class ShippingMethodSchema(CamelModel):
    type: str = "Standard"
    cost: Decimal = Decimal("0")


class CouponSchema(CamelModel):
    code: str = ""
    discount: Decimal = Decimal("0")


class CreateOrderRequest(CamelModel):
    """Request schema for placing an order."""

    customer: CustomerSchema
    shipping_address: AddressSchema
    gst_details: Optional[GstDetailsSchema] = None
    items: List[LineItemSchema]
    shipping_method: ShippingMethodSchema = Field(default_factory=ShippingMethodSchema)
    coupon: Optional[CouponSchema] = None
    payment_method: str
    total: Decimal = Field(..., description="Client-computed total, re-derived server side")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "customer": {
                        "firstName": "Asha",
                        "lastName": "Rao",
                        "email": "asha@example.com",
                        "phone": "9876543210",
                    },
                    "shippingAddress": {
                        "address1": "12 MG Road",
                        "city": "Pune",
                        "state": "Maharashtra",
                        "pincode": "411001",
                    },
                    "items": [
                        {"productId": "p-1", "name": "Compost Kit", "quantity": 2, "price": "100"},
                        {"productId": "p-2", "name": "Seed Pack", "quantity": 1, "price": "250"},
                    ],
                    "shippingMethod": {"type": "Standard", "cost": "50"},
                    "paymentMethod": "Gateway",
                    "total": "500",
                }
            ]
        },
    )

    def to_intake(self) -> OrderIntake:
        gst = self.gst_details or GstDetailsSchema()
        coupon = self.coupon or CouponSchema()
        return OrderIntake(
            customer=Customer(
                first_name=self.customer.first_name.strip(),
                last_name=self.customer.last_name.strip(),
                email=self.customer.email.strip().lower(),
                phone=self.customer.phone.strip(),
            ),
            shipping_address=Address(
                address1=self.shipping_address.address1.strip(),
                address2=self.shipping_address.address2.strip(),
                city=self.shipping_address.city.strip(),
                state=self.shipping_address.state.strip(),
                pincode=self.shipping_address.pincode.strip(),
                country=self.shipping_address.country.strip() or "India",
            ),
            gst_details=GstDetails(
                gst_number=gst.gst_number.strip().upper(),
                state=gst.state.strip(),
                city=gst.city.strip(),
            ),
            items=tuple(
                LineItem(
                    product_id=item.product_id.strip(),
                    name=item.name.strip(),
                    quantity=item.quantity,
                    price=item.price,
                    variant=item.variant.strip(),
                )
                for item in self.items
            ),
            shipping_type=self.shipping_method.type,
            shipping_cost=self.shipping_method.cost,
            coupon_code=coupon.code,
            payment_method=self.payment_method,
            total=self.total,
        )


class InitiatePaymentRequest(CamelModel):
    order_id: str

    def to_input(self) -> InitiatePaymentInput:
        return InitiatePaymentInput(order_id=self.order_id.strip())


class CheckoutCustomer(CamelModel):
    name: str
    email: str
    contact: str


class CheckoutOrderData(CamelModel):
    order_id: str
    amount: int = Field(..., description="Amount in minor units")
    currency: str
    customer: CheckoutCustomer


class InitiatePaymentResponse(CamelModel):
    """Everything the storefront needs to open the gateway checkout."""

    gateway_order_id: str
    public_key: str
    order_data: CheckoutOrderData


class VerifyPaymentRequest(CamelModel):
    order_id: str
    payment_id: str
    gateway_order_id: str
    signature: str

    def to_input(self) -> VerifyPaymentInput:
        return VerifyPaymentInput(
            order_id=self.order_id.strip(),
            payment_id=self.payment_id.strip(),
            gateway_order_id=self.gateway_order_id.strip(),
            signature=self.signature.strip(),
        )


class ForceConfirmRequest(CamelModel):
    gateway_payment_id: Optional[str] = None

    def to_input(self, order_id: str) -> ForceConfirmInput:
        payment_id = (self.gateway_payment_id or "").strip() or None
        return ForceConfirmInput(order_id=order_id, gateway_payment_id=payment_id)


class StatusUpdateRequest(CamelModel):
    order_status: str

    def to_input(self, order_id: str) -> StatusUpdateInput:
        return StatusUpdateInput(order_id=order_id, order_status=self.order_status)


class OrderActionResponse(BaseModel):
    """Response schema for operations returning an order."""

    success: bool
    order: Dict[str, Any]


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
    message: Optional[str] = Field(default=None, description="Status message")
