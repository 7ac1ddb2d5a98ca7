"""
Post-commit notifications.

The engine does not render or deliver anything itself. It hands ``(kind, order)`` to a
``NotificationDispatcher`` after a transition has committed and records a successful
dispatch by flipping the order's persisted flag, with a conditional write that only
applies while the flag is still clear. A failed dispatch leaves the flag clear and
never affects the transition that triggered it.
"""
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog

from ..monitoring.metrics import metrics
from .errors import StoreError
from .models import NOTIFICATION_FLAGS, NotificationKind, Order
from .store import Guard, OrderStore

logger = structlog.get_logger(__name__)


class NotificationDispatcher(Protocol):
    """Delivers order notifications (email, PDF invoices, ...)."""

    async def send(self, kind: NotificationKind, order: Order) -> bool:
        """Return True only when the notification was accepted for delivery."""
        ...


class LogNotifier:
    """Dispatcher that only logs. Used when no mail service is configured."""

    async def send(self, kind: NotificationKind, order: Order) -> bool:
        logger.info(
            "notification_logged",
            kind=kind.value,
            order_id=order.order_id,
            email=order.customer.email,
        )
        return True


class WebhookNotifier:
    """
    Posts notifications to an external mail service.

    The service owns templating, invoice generation and retries; a 2xx answer is the
    only thing counted as success.
    """

    def __init__(
        self,
        url: str,
        support_email: Optional[str] = None,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.support_email = support_email
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    def build_payload(self, kind: NotificationKind, order: Order) -> Dict[str, Any]:
        if kind is NotificationKind.ADMIN_NEW_ORDER:
            recipient = self.support_email
        else:
            recipient = order.customer.email
        return {
            "kind": kind.value,
            "recipient": recipient,
            "customerName": order.customer.full_name,
            "order": order.to_document(),
        }

    async def send(self, kind: NotificationKind, order: Order) -> bool:
        if kind is NotificationKind.ADMIN_NEW_ORDER and not self.support_email:
            logger.info("admin_notification_skipped", order_id=order.order_id)
            return False
        try:
            response = await self._client.post(self.url, json=self.build_payload(kind, order))
        except httpx.HTTPError as e:
            logger.warning(
                "notification_request_failed",
                kind=kind.value,
                order_id=order.order_id,
                error=str(e),
            )
            return False
        if response.is_success:
            return True
        logger.warning(
            "notification_rejected",
            kind=kind.value,
            order_id=order.order_id,
            status_code=response.status_code,
        )
        return False

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class NotificationService:
    """Dispatches notifications at most once per persisted flag."""

    def __init__(self, store: OrderStore, dispatcher: NotificationDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    async def notify(self, kind: NotificationKind, order: Order) -> bool:
        """
        Dispatch ``kind`` for ``order`` unless its flag is already set.

        Never raises; returns True when the dispatcher reported success.
        """
        flag = NOTIFICATION_FLAGS.get(kind)
        if order.notification_sent(kind):
            metrics.record_notification(kind.value, "skipped")
            logger.info("notification_already_sent", kind=kind.value, order_id=order.order_id)
            return False

        try:
            sent = await self.dispatcher.send(kind, order)
        except Exception as e:
            logger.exception(
                "notification_dispatch_error",
                kind=kind.value,
                order_id=order.order_id,
                error=str(e),
            )
            sent = False

        if not sent:
            metrics.record_notification(kind.value, "failed")
            logger.warning("notification_not_sent", kind=kind.value, order_id=order.order_id)
            return False

        metrics.record_notification(kind.value, "sent")
        if flag is None:
            return True

        try:
            updated = await self.store.update_where(
                order.order_id, Guard(flag_clear=flag), {flag: True}
            )
        except StoreError as e:
            logger.error(
                "notification_flag_update_failed",
                kind=kind.value,
                order_id=order.order_id,
                error=e.message,
            )
            return True

        if updated is None:
            logger.warning(
                "notification_flag_already_set", kind=kind.value, order_id=order.order_id
            )
        else:
            logger.info("notification_sent", kind=kind.value, order_id=order.order_id)
        return True

    async def notify_confirmed(self, order: Order) -> None:
        """Customer confirmation plus the unflagged new-order notice for support."""
        await self.notify(NotificationKind.ORDER_CONFIRMATION, order)
        await self.notify(NotificationKind.ADMIN_NEW_ORDER, order)
