"""
Order intake and administrative order operations.

Every mutation here is a single conditional write derived from the state machine.
When a write matches nothing the order is re-read and the caller gets the error that
describes its current state; nothing is ever retried blindly.
"""
import hashlib
import secrets
import string
import time
from datetime import date, datetime, time as dt_time, timedelta, timezone
from typing import Callable, List, Optional

import structlog

from ..monitoring.metrics import metrics
from .errors import ConflictError, DuplicateOrderError, NotFoundError, ValidationError, ValidationIssue
from .expiry import ExpiryPolicy
from .models import (
    Coupon,
    NotificationKind,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingMethod,
    ShippingType,
)
from .notifications import NotificationService
from .pricing import PricingCalculator
from .state_machine import ADMIN_STATUS_EVENTS, OrderEvent, OrderState, OrderStateMachine
from .store import OrderFilters, OrderStore
from .validation import (
    ForceConfirmInput,
    OrderIntake,
    StatusUpdateInput,
    ensure_valid,
    validate_force_confirm,
    validate_order_intake,
    validate_status_update,
)

logger = structlog.get_logger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 255
_ID_ALPHABET = string.ascii_uppercase + string.digits

_STATUS_NOTIFICATIONS = {
    OrderEvent.MARK_DELIVERED: NotificationKind.DELIVERY,
    OrderEvent.MARK_CANCELLED: NotificationKind.CANCELLATION,
}


def generate_order_id(idempotency_key: Optional[str] = None) -> str:
    """
    New order id of the form ``ORDER-<millis>-<random>``.

    With an idempotency key the id is derived from the key instead, so a retried
    request collides with the order it already created.
    """
    if idempotency_key:
        digest = hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()[:24].upper()
        return f"ORDER-K{digest}"
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"ORDER-{int(time.time() * 1000)}-{suffix}"


class OrderService:
    """Creates orders and applies administrative transitions."""

    def __init__(
        self,
        store: OrderStore,
        pricing: PricingCalculator,
        expiry: ExpiryPolicy,
        notifications: NotificationService,
        id_factory: Callable[[Optional[str]], str] = generate_order_id,
    ):
        self.store = store
        self.pricing = pricing
        self.expiry = expiry
        self.notifications = notifications
        self._id_factory = id_factory

    async def create_order(
        self, intake: OrderIntake, idempotency_key: Optional[str] = None
    ) -> Order:
        """
        Validate, price and persist a new order.

        COD orders are confirmed immediately and notified; gateway orders wait for
        payment in ``(Pending, Pending)``.

        Raises:
            ValidationError: Invalid input, unknown coupon or pricing mismatch
            ConflictError: An order with the same id (or idempotency key) exists
        """
        if idempotency_key is not None:
            idempotency_key = idempotency_key.strip()
            if not idempotency_key or len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
                raise ValidationError(
                    "Invalid idempotency key",
                    [ValidationIssue("Idempotency-Key", "Must be 1-255 characters")],
                )

        ensure_valid(validate_order_intake(intake), "Invalid order")
        breakdown = self.pricing.compute_pricing(intake.items, intake.coupon_code)
        self.pricing.check_declared(breakdown, intake.shipping_cost, intake.total)

        payment_method = PaymentMethod(intake.payment_method)
        state = OrderStateMachine.initial_state(payment_method)
        now = self.expiry.now()
        order = Order(
            order_id=self._id_factory(idempotency_key),
            customer=intake.customer,
            shipping_address=intake.shipping_address,
            gst_details=intake.gst_details,
            items=tuple(intake.items),
            shipping_method=ShippingMethod(
                type=ShippingType(intake.shipping_type), cost=breakdown.shipping_cost
            ),
            coupon=Coupon(code=breakdown.coupon_code, discount=breakdown.discount),
            payment_method=payment_method,
            payment_status=state.payment_status,
            order_status=state.order_status,
            total=breakdown.total,
            created_at=now,
            updated_at=now,
        )

        try:
            await self.store.insert(order)
        except DuplicateOrderError:
            logger.warning(
                "duplicate_order_rejected",
                order_id=order.order_id,
                idempotency_key=idempotency_key,
            )
            raise

        metrics.record_order_created(payment_method.value, float(order.total))
        logger.info(
            "order_created",
            order_id=order.order_id,
            payment_method=payment_method.value,
            total=str(order.total),
            email=order.customer.email,
        )

        if payment_method is PaymentMethod.COD:
            await self.notifications.notify_confirmed(order)
            order = await self.store.get(order.order_id) or order
        return order

    async def get_order(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    async def list_pending(self, limit: Optional[int] = None) -> List[Order]:
        """Pending gateway orders, newest first."""
        return await self.store.list_orders(
            OrderFilters(
                payment_method=PaymentMethod.GATEWAY,
                payment_status=PaymentStatus.PENDING,
                newest_first=True,
                limit=limit,
            )
        )

    async def get_pending(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if (
            order is None
            or order.payment_method is not PaymentMethod.GATEWAY
            or order.payment_status is not PaymentStatus.PENDING
        ):
            raise NotFoundError(f"Pending order {order_id} not found")
        return order

    async def cancel_pending(self, order_id: str) -> Order:
        """
        Move a pending gateway order to ``(Failed, Cancelled)``.

        Raises:
            NotFoundError: No pending gateway order with this id
            ConflictError: The order was paid or cancelled concurrently
        """
        transition = OrderStateMachine.transition_for(OrderEvent.PENDING_CANCELLED)
        cancelled = await self.store.update_where(
            order_id,
            transition.guard(payment_method=PaymentMethod.GATEWAY),
            transition.changes(),
        )
        if cancelled is None:
            current = await self.get_pending(order_id)
            raise ConflictError(
                OrderStateMachine.describe_rejection(
                    OrderState(current.payment_status, current.order_status),
                    OrderEvent.PENDING_CANCELLED,
                )
            )
        metrics.record_transition(OrderEvent.PENDING_CANCELLED.value)
        logger.info("pending_order_cancelled", order_id=order_id)
        return cancelled

    async def force_confirm(self, data: ForceConfirmInput) -> Order:
        """
        Manually mark a pending order paid, e.g. when the payment callback was lost.

        Already-successful orders are returned unchanged. The expiry window does not
        apply here: reconciling a payment the gateway did capture is the whole point.

        Raises:
            ValidationError: Gateway order without a gateway payment id
            NotFoundError: Unknown order
            ConflictError: Order was cancelled
        """
        ensure_valid(validate_force_confirm(data), "Invalid force-confirm request")
        order = await self.get_order(data.order_id)
        if order.payment_status is PaymentStatus.SUCCESS:
            logger.info("force_confirm_noop", order_id=order.order_id)
            return order

        state = OrderState(order.payment_status, order.order_status)
        OrderStateMachine.apply(state, OrderEvent.FORCE_CONFIRMED)

        transition = OrderStateMachine.transition_for(OrderEvent.FORCE_CONFIRMED)
        changes = transition.changes()
        if order.payment_method is PaymentMethod.GATEWAY:
            if not data.gateway_payment_id:
                raise ValidationError(
                    "Gateway payment id is required to confirm an online payment",
                    [ValidationIssue("gatewayPaymentId", "This field is required")],
                )
            changes["gateway_payment_id"] = data.gateway_payment_id

        confirmed = await self.store.update_where(
            order.order_id,
            transition.guard(payment_method=order.payment_method),
            changes,
        )
        if confirmed is None:
            current = await self.get_order(order.order_id)
            if current.payment_status is PaymentStatus.SUCCESS:
                logger.info("force_confirm_noop", order_id=order.order_id)
                return current
            raise ConflictError(
                OrderStateMachine.describe_rejection(
                    OrderState(current.payment_status, current.order_status),
                    OrderEvent.FORCE_CONFIRMED,
                )
            )

        metrics.record_transition(OrderEvent.FORCE_CONFIRMED.value)
        logger.warning(
            "order_force_confirmed",
            order_id=confirmed.order_id,
            gateway_payment_id=data.gateway_payment_id,
        )
        await self.notifications.notify_confirmed(confirmed)
        return await self.store.get(confirmed.order_id) or confirmed

    async def update_status(self, data: StatusUpdateInput) -> Order:
        """
        Administrative ``orderStatus`` change on a paid order.

        Raises:
            ValidationError: Status outside Confirmed/Delivered/Cancelled
            NotFoundError: Unknown order or payment not completed
            ConflictError: Order is Delivered or Cancelled
        """
        ensure_valid(validate_status_update(data), "Invalid status update")
        event = ADMIN_STATUS_EVENTS[OrderStatus(data.order_status)]

        order = await self.get_order(data.order_id)
        if order.payment_status is not PaymentStatus.SUCCESS:
            raise NotFoundError(f"Order {data.order_id} not found or payment not completed")

        state = OrderState(order.payment_status, order.order_status)
        target = OrderStateMachine.apply(state, event)
        if target == state:
            return order

        transition = OrderStateMachine.transition_for(event)
        updated = await self.store.update_where(
            order.order_id, transition.guard(), transition.changes()
        )
        if updated is None:
            current = await self.get_order(order.order_id)
            raise ConflictError(
                OrderStateMachine.describe_rejection(
                    OrderState(current.payment_status, current.order_status), event
                )
            )

        metrics.record_transition(event.value)
        logger.info(
            "order_status_updated",
            order_id=updated.order_id,
            order_status=updated.order_status.value,
        )

        kind = _STATUS_NOTIFICATIONS.get(event)
        if kind is not None:
            await self.notifications.notify(kind, updated)
            updated = await self.store.get(updated.order_id) or updated
        return updated

    async def list_successful(
        self, on_date: Optional[date] = None, order_id_contains: Optional[str] = None
    ) -> List[Order]:
        """Paid orders, newest first, optionally limited to one UTC day or an id fragment."""
        created_from: Optional[datetime] = None
        created_to: Optional[datetime] = None
        if on_date is not None:
            created_from = datetime.combine(on_date, dt_time.min, tzinfo=timezone.utc)
            created_to = created_from + timedelta(days=1)
        fragment = (order_id_contains or "").strip() or None
        return await self.store.list_orders(
            OrderFilters(
                payment_status=PaymentStatus.SUCCESS,
                created_from=created_from,
                created_to=created_to,
                order_id_contains=fragment,
            )
        )
