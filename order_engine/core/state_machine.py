"""
Order lifecycle state machine.

States are ``(payment_status, order_status)`` pairs:

    COD:      create -> (Success, Confirmed)
    Gateway:  create -> (Pending, Pending)

    (Pending, Pending)   --payment_verified / force_confirmed-->  (Success, Confirmed)
    (Pending, Pending)   --pending_cancelled-->                   (Failed, Cancelled)
    (Success, Confirmed) --mark_confirmed-->                      (Success, Confirmed)
    (Success, Confirmed) --mark_delivered-->                      (Success, Delivered)
    (Success, Confirmed) --mark_cancelled-->                      (Success, Cancelled)

Delivered and Cancelled are terminal. The machine only answers "from which state may
this event fire and where does it land"; the services turn the answer into the guard
of a single conditional write.
"""
from enum import Enum
from typing import Any, Dict, FrozenSet, NamedTuple

from .errors import ConflictError
from .models import OrderStatus, PaymentMethod, PaymentStatus
from .store import Guard


class OrderState(NamedTuple):
    payment_status: PaymentStatus
    order_status: OrderStatus


class OrderEvent(str, Enum):
    PAYMENT_VERIFIED = "payment_verified"
    FORCE_CONFIRMED = "force_confirmed"
    PENDING_CANCELLED = "pending_cancelled"
    MARK_CONFIRMED = "mark_confirmed"
    MARK_DELIVERED = "mark_delivered"
    MARK_CANCELLED = "mark_cancelled"


AWAITING_PAYMENT = OrderState(PaymentStatus.PENDING, OrderStatus.PENDING)
CONFIRMED = OrderState(PaymentStatus.SUCCESS, OrderStatus.CONFIRMED)
DELIVERED = OrderState(PaymentStatus.SUCCESS, OrderStatus.DELIVERED)
CANCELLED = OrderState(PaymentStatus.SUCCESS, OrderStatus.CANCELLED)
ABANDONED = OrderState(PaymentStatus.FAILED, OrderStatus.CANCELLED)

TERMINAL_ORDER_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
)

# Statuses an administrator may request through the status-update operation.
ADMIN_STATUS_EVENTS: Dict[OrderStatus, OrderEvent] = {
    OrderStatus.CONFIRMED: OrderEvent.MARK_CONFIRMED,
    OrderStatus.DELIVERED: OrderEvent.MARK_DELIVERED,
    OrderStatus.CANCELLED: OrderEvent.MARK_CANCELLED,
}


class Transition(NamedTuple):
    source: OrderState
    target: OrderState

    def guard(self, **conditions: Any) -> Guard:
        """Guard for a conditional write that applies this transition."""
        return Guard(
            payment_status=self.source.payment_status,
            order_status=self.source.order_status,
            **conditions,
        )

    def changes(self) -> Dict[str, Any]:
        return {
            "payment_status": self.target.payment_status,
            "order_status": self.target.order_status,
        }


TRANSITIONS: Dict[OrderEvent, Transition] = {
    OrderEvent.PAYMENT_VERIFIED: Transition(AWAITING_PAYMENT, CONFIRMED),
    OrderEvent.FORCE_CONFIRMED: Transition(AWAITING_PAYMENT, CONFIRMED),
    OrderEvent.PENDING_CANCELLED: Transition(AWAITING_PAYMENT, ABANDONED),
    OrderEvent.MARK_CONFIRMED: Transition(CONFIRMED, CONFIRMED),
    OrderEvent.MARK_DELIVERED: Transition(CONFIRMED, DELIVERED),
    OrderEvent.MARK_CANCELLED: Transition(CONFIRMED, CANCELLED),
}

_ORDER_STATUS_RANK: Dict[OrderStatus, int] = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.DELIVERED: 2,
    OrderStatus.CANCELLED: 2,
}


class OrderStateMachine:
    """Legal transitions between ``(payment_status, order_status)`` pairs."""

    @staticmethod
    def initial_state(payment_method: PaymentMethod) -> OrderState:
        if payment_method is PaymentMethod.COD:
            return CONFIRMED
        if payment_method is PaymentMethod.GATEWAY:
            return AWAITING_PAYMENT
        raise ValueError(f"Unknown payment method: {payment_method}")

    @staticmethod
    def transition_for(event: OrderEvent) -> Transition:
        return TRANSITIONS[event]

    @staticmethod
    def is_terminal(state: OrderState) -> bool:
        return state.order_status in TERMINAL_ORDER_STATUSES

    @classmethod
    def apply(cls, state: OrderState, event: OrderEvent) -> OrderState:
        """
        Return the state ``event`` leads to from ``state``.

        Raises:
            ConflictError: If the event is not legal from ``state``
        """
        transition = TRANSITIONS[event]
        if state != transition.source:
            raise ConflictError(cls.describe_rejection(state, event))
        return transition.target

    @staticmethod
    def describe_rejection(state: OrderState, event: OrderEvent) -> str:
        if state.order_status in TERMINAL_ORDER_STATUSES:
            return f"{state.order_status.value} orders cannot be updated"
        if state.payment_status is PaymentStatus.SUCCESS and event in (
            OrderEvent.PAYMENT_VERIFIED,
            OrderEvent.FORCE_CONFIRMED,
            OrderEvent.PENDING_CANCELLED,
        ):
            return "Order already processed"
        if state.payment_status is not PaymentStatus.SUCCESS and event in (
            OrderEvent.MARK_CONFIRMED,
            OrderEvent.MARK_DELIVERED,
            OrderEvent.MARK_CANCELLED,
        ):
            return "Payment not completed for this order"
        return (
            f"Cannot apply {event.value} to order in state "
            f"({state.payment_status.value}, {state.order_status.value})"
        )

    @staticmethod
    def is_forward(source: OrderState, target: OrderState) -> bool:
        """True when ``target`` never moves order status backward or payment away from Success."""
        if (
            source.payment_status is PaymentStatus.SUCCESS
            and target.payment_status is not PaymentStatus.SUCCESS
        ):
            return False
        return _ORDER_STATUS_RANK[target.order_status] >= _ORDER_STATUS_RANK[source.order_status]
