"""
Order persistence contract.

The engine needs exactly two things from storage: a unique key on ``order_id`` and an
atomic conditional update of a single record. ``Guard`` describes the compare half of
that compare-and-set; every state change in the engine is one ``update_where`` call.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol

import structlog

from .errors import DuplicateOrderError
from .models import (
    NOTIFICATION_FLAGS,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ensure_aware,
    utcnow,
)

logger = structlog.get_logger(__name__)

# Fields a conditional update may change. Customer data, items and pricing are
# immutable after creation.
MUTABLE_FIELDS = frozenset(
    {
        "payment_status",
        "order_status",
        "gateway_order_id",
        "gateway_payment_id",
        "gateway_instrument",
        *NOTIFICATION_FLAGS.values(),
    }
)


@dataclass(frozen=True)
class Guard:
    """Conditions an order must meet for a conditional write to apply."""

    payment_method: Optional[PaymentMethod] = None
    payment_status: Optional[PaymentStatus] = None
    order_status: Optional[OrderStatus] = None
    gateway_order_id: Optional[str] = None
    created_after: Optional[datetime] = None
    flag_clear: Optional[str] = None

    def matches(self, order: Order) -> bool:
        if self.payment_method is not None and order.payment_method is not self.payment_method:
            return False
        if self.payment_status is not None and order.payment_status is not self.payment_status:
            return False
        if self.order_status is not None and order.order_status is not self.order_status:
            return False
        if self.gateway_order_id is not None and order.gateway_order_id != self.gateway_order_id:
            return False
        if self.created_after is not None and not (
            ensure_aware(order.created_at) > ensure_aware(self.created_after)
        ):
            return False
        if self.flag_clear is not None and getattr(order, self.flag_clear):
            return False
        return True


@dataclass(frozen=True)
class OrderFilters:
    """Listing filters. ``None`` means "any"."""

    payment_method: Optional[PaymentMethod] = None
    payment_status: Optional[PaymentStatus] = None
    order_status: Optional[OrderStatus] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    order_id_contains: Optional[str] = None
    newest_first: bool = True
    limit: Optional[int] = None

    def matches(self, order: Order) -> bool:
        created_at = ensure_aware(order.created_at)
        if self.payment_method is not None and order.payment_method is not self.payment_method:
            return False
        if self.payment_status is not None and order.payment_status is not self.payment_status:
            return False
        if self.order_status is not None and order.order_status is not self.order_status:
            return False
        if self.created_from is not None and created_at < ensure_aware(self.created_from):
            return False
        if self.created_to is not None and created_at >= ensure_aware(self.created_to):
            return False
        if self.order_id_contains and self.order_id_contains.lower() not in order.order_id.lower():
            return False
        return True


def check_changes(changes: Mapping[str, Any]) -> None:
    unknown = set(changes) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be changed after creation: {sorted(unknown)}")


class OrderStore(Protocol):
    """Interface for order storage (PostgreSQL, in-memory, etc.)."""

    async def insert(self, order: Order) -> Order:
        """Persist a new order. Raises DuplicateOrderError if the id exists."""
        ...

    async def get(self, order_id: str) -> Optional[Order]:
        ...

    async def update_where(
        self, order_id: str, guard: Guard, changes: Mapping[str, Any]
    ) -> Optional[Order]:
        """
        Atomically apply ``changes`` if the order exists and ``guard`` matches.

        Returns the updated order, or None when nothing was written.
        """
        ...

    async def delete_where(self, order_id: str, guard: Guard) -> bool:
        ...

    async def list_orders(self, filters: OrderFilters) -> List[Order]:
        ...

    async def purge_expired(self, cutoff: datetime) -> int:
        """Delete pending gateway orders created at or before ``cutoff``."""
        ...

    async def ping(self) -> bool:
        ...


class InMemoryOrderStore:
    """
    Dictionary-backed store for tests and local development.

    Each method runs without awaiting between its check and its write, so on a
    single event loop every conditional update is atomic.
    """

    def __init__(self) -> None:
        self._orders: Dict[str, Order] = {}

    def __len__(self) -> int:
        return len(self._orders)

    async def insert(self, order: Order) -> Order:
        if order.order_id in self._orders:
            raise DuplicateOrderError(f"Order {order.order_id} already exists")
        self._orders[order.order_id] = order
        return order

    async def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    async def update_where(
        self, order_id: str, guard: Guard, changes: Mapping[str, Any]
    ) -> Optional[Order]:
        check_changes(changes)
        current = self._orders.get(order_id)
        if current is None or not guard.matches(current):
            return None
        updated = current.with_changes(**changes, updated_at=utcnow())
        self._orders[order_id] = updated
        return updated

    async def delete_where(self, order_id: str, guard: Guard) -> bool:
        current = self._orders.get(order_id)
        if current is None or not guard.matches(current):
            return False
        del self._orders[order_id]
        return True

    async def list_orders(self, filters: OrderFilters) -> List[Order]:
        orders = sorted(
            (order for order in self._orders.values() if filters.matches(order)),
            key=lambda order: ensure_aware(order.created_at),
            reverse=filters.newest_first,
        )
        if filters.limit is not None:
            orders = orders[: filters.limit]
        return orders

    async def purge_expired(self, cutoff: datetime) -> int:
        expired = [
            order_id
            for order_id, order in self._orders.items()
            if order.payment_method is PaymentMethod.GATEWAY
            and order.payment_status is PaymentStatus.PENDING
            and ensure_aware(order.created_at) <= ensure_aware(cutoff)
        ]
        for order_id in expired:
            del self._orders[order_id]
        if expired:
            logger.info("expired_orders_purged", count=len(expired), store="memory")
        return len(expired)

    async def ping(self) -> bool:
        return True
