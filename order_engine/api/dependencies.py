"""
Service wiring and FastAPI dependencies.

``build_container`` is the only place components are constructed; the app factory
stores the container on ``app.state`` and routes pull services out of it.
"""
import hmac
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, List, Optional

from fastapi import Depends, HTTPException, Request, status

from ..config import Settings
from ..core.expiry import Clock, ExpiryPolicy
from ..core.gateway import GatewayCoordinator, PaymentGateway
from ..core.notifications import (
    LogNotifier,
    NotificationDispatcher,
    NotificationService,
    WebhookNotifier,
)
from ..core.orders import OrderService
from ..core.pricing import PricingCalculator
from ..core.store import OrderStore
from ..database.connection import Database
from ..database.store import SqlOrderStore
from ..integrations.gateway_client import GatewayClient
from ..monitoring.health import HealthCheck


@dataclass
class ServiceContainer:
    settings: Settings
    store: OrderStore
    gateway: PaymentGateway
    dispatcher: NotificationDispatcher
    orders: OrderService
    coordinator: GatewayCoordinator
    health: HealthCheck
    database: Optional[Database] = None
    closeables: List[Any] = field(default_factory=list)

    async def startup(self) -> None:
        if self.database is not None:
            await self.database.connect()
            await self.database.create_all()

    async def shutdown(self) -> None:
        for resource in self.closeables:
            await resource.close()
        if self.database is not None:
            await self.database.close()


def build_container(
    settings: Settings,
    store: Optional[OrderStore] = None,
    gateway: Optional[PaymentGateway] = None,
    notifier: Optional[NotificationDispatcher] = None,
    clock: Optional[Clock] = None,
) -> ServiceContainer:
    """Construct every service from settings, using injected doubles where given."""
    closeables: List[Any] = []

    database: Optional[Database] = None
    if store is None:
        database = Database.from_settings(settings)
        store = SqlOrderStore(database)

    if gateway is None:
        gateway = GatewayClient(settings)
        closeables.append(gateway)

    if notifier is None:
        if settings.notification_webhook_url:
            notifier = WebhookNotifier(
                settings.notification_webhook_url,
                support_email=settings.support_email,
                timeout_seconds=settings.notification_timeout_seconds,
            )
            closeables.append(notifier)
        else:
            notifier = LogNotifier()

    pricing = PricingCalculator(
        free_shipping_threshold=settings.free_shipping_threshold,
        standard_shipping_cost=settings.standard_shipping_cost,
    )
    expiry = ExpiryPolicy(timedelta(minutes=settings.order_expiry_minutes), clock=clock)
    notifications = NotificationService(store, notifier)

    return ServiceContainer(
        settings=settings,
        store=store,
        gateway=gateway,
        dispatcher=notifier,
        orders=OrderService(store, pricing, expiry, notifications),
        coordinator=GatewayCoordinator(
            store,
            gateway,
            pricing,
            expiry,
            notifications,
            key_id=settings.gateway_key_id,
            key_secret=settings.gateway_key_secret,
            currency=settings.currency,
        ),
        health=HealthCheck(store, gateway, test_mode=settings.is_test_mode),
        database=database,
        closeables=closeables,
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_order_service(container: ServiceContainer = Depends(get_container)) -> OrderService:
    return container.orders


def get_coordinator(container: ServiceContainer = Depends(get_container)) -> GatewayCoordinator:
    return container.coordinator


def get_health_check(container: ServiceContainer = Depends(get_container)) -> HealthCheck:
    return container.health


async def require_admin(
    request: Request, container: ServiceContainer = Depends(get_container)
) -> None:
    """Reject requests without the configured admin API key."""
    settings = container.settings
    supplied = request.headers.get(settings.api_key_header, "")
    if not supplied or not hmac.compare_digest(
        supplied.encode("utf-8"), settings.admin_api_key.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
