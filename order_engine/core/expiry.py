"""Time-to-live of gateway orders awaiting payment."""
from datetime import datetime, timedelta
from typing import Callable, Optional

from .errors import ExpiryError
from .models import Order, PaymentMethod, PaymentStatus, ensure_aware, utcnow

Clock = Callable[[], datetime]


class ExpiryPolicy:
    """
    Pending gateway orders stay actionable for ``window`` after ``created_at``.

    The policy never cancels anything by itself. Initiation and verification call
    ``ensure_actionable`` and the reaper uses ``cutoff`` to find purgeable orders.
    """

    def __init__(self, window: timedelta = timedelta(minutes=30), clock: Optional[Clock] = None):
        if window <= timedelta(0):
            raise ValueError("Expiry window must be positive")
        self.window = window
        self._clock = clock or utcnow

    def now(self) -> datetime:
        return ensure_aware(self._clock())

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        """Orders created at or before this instant are expired."""
        return (now or self.now()) - self.window

    def applies_to(self, order: Order) -> bool:
        return (
            order.payment_method is PaymentMethod.GATEWAY
            and order.payment_status is PaymentStatus.PENDING
        )

    def is_expired(self, order: Order, now: Optional[datetime] = None) -> bool:
        if not self.applies_to(order):
            return False
        return ensure_aware(order.created_at) <= self.cutoff(now)

    def ensure_actionable(self, order: Order, now: Optional[datetime] = None) -> None:
        """
        Raises:
            ExpiryError: If the order is a pending gateway order past its window
        """
        if self.is_expired(order, now):
            minutes = int(self.window.total_seconds() // 60)
            raise ExpiryError(
                f"Order {order.order_id} expired after {minutes} minutes without payment. "
                "Please create a new order."
            )
