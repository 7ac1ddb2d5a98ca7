"""
Race condition tests.

Tests that concurrent requests against the same order commit at most one transition.
The store used here yields to the event loop on every read, so two requests both see
the pre-transition order before either one writes.
"""
import asyncio
from typing import Any, Callable, List, Optional

import pytest

from order_engine.core.errors import ConflictError
from order_engine.core.expiry import ExpiryPolicy
from order_engine.core.gateway import GatewayCoordinator
from order_engine.core.models import NotificationKind, Order, OrderStatus, PaymentStatus
from order_engine.core.notifications import NotificationService
from order_engine.core.orders import OrderService
from order_engine.core.pricing import PricingCalculator
from order_engine.core.store import InMemoryOrderStore
from order_engine.core.validation import (
    ForceConfirmInput,
    InitiatePaymentInput,
    StatusUpdateInput,
    VerifyPaymentInput,
)

from conftest import FakeGateway, RecordingNotifier


class InterleavingStore(InMemoryOrderStore):
    """Gives other tasks a chance to run between a read and the following write."""

    async def get(self, order_id: str) -> Optional[Order]:
        order = await super().get(order_id)
        await asyncio.sleep(0)
        return order


def split(results: List[Any]) -> tuple:
    orders = [result for result in results if isinstance(result, Order)]
    errors = [result for result in results if isinstance(result, Exception)]
    return orders, errors


class TestConcurrentTransitions:
    """Test suite for concurrent access to one order."""

    @pytest.fixture
    def race_store(self) -> InterleavingStore:
        return InterleavingStore()

    @pytest.fixture
    def race_services(
        self,
        race_store: InterleavingStore,
        gateway: FakeGateway,
        notifier: RecordingNotifier,
        expiry: ExpiryPolicy,
    ) -> tuple:
        pricing = PricingCalculator()
        notifications = NotificationService(race_store, notifier)
        orders = OrderService(race_store, pricing, expiry, notifications)
        coordinator = GatewayCoordinator(
            race_store,
            gateway,
            pricing,
            expiry,
            notifications,
            key_id="rzp_test_key",
            key_secret="test_secret",
        )
        return orders, coordinator

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_verifications_confirm_once(
        self,
        race_services: tuple,
        make_intake: Any,
        sign: Callable[[str, str], str],
        notifier: RecordingNotifier,
        race_store: InterleavingStore,
    ) -> None:
        """
        Test that the same callback delivered twice at once confirms exactly once.

        Scenario:
        1. Storefront and a retried request both post the signed callback
        2. Both read the order while it is still pending
        3. Only one conditional write may apply
        """
        orders, coordinator = race_services
        order = await orders.create_order(make_intake())
        initiation = await coordinator.initiate(InitiatePaymentInput(order.order_id))
        callback = VerifyPaymentInput(
            order_id=order.order_id,
            payment_id="pay_1",
            gateway_order_id=initiation.gateway_order_id,
            signature=sign(initiation.gateway_order_id, "pay_1"),
        )

        results = await asyncio.gather(
            coordinator.verify(callback),
            coordinator.verify(callback),
            return_exceptions=True,
        )

        confirmed, errors = split(results)
        assert len(confirmed) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], ConflictError)
        assert notifier.count(NotificationKind.ORDER_CONFIRMATION) == 1
        assert notifier.count(NotificationKind.ADMIN_NEW_ORDER) == 1

        stored = await race_store.get(order.order_id)
        assert stored is not None
        assert stored.payment_status is PaymentStatus.SUCCESS
        assert stored.email_sent is True

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_many_concurrent_verifications(
        self,
        race_services: tuple,
        make_intake: Any,
        sign: Callable[[str, str], str],
        notifier: RecordingNotifier,
    ) -> None:
        orders, coordinator = race_services
        order = await orders.create_order(make_intake())
        initiation = await coordinator.initiate(InitiatePaymentInput(order.order_id))
        callback = VerifyPaymentInput(
            order_id=order.order_id,
            payment_id="pay_1",
            gateway_order_id=initiation.gateway_order_id,
            signature=sign(initiation.gateway_order_id, "pay_1"),
        )

        results = await asyncio.gather(
            *(coordinator.verify(callback) for _ in range(10)), return_exceptions=True
        )

        confirmed, errors = split(results)
        assert len(confirmed) == 1
        assert len(errors) == 9
        assert all(isinstance(error, ConflictError) for error in errors)
        assert notifier.count(NotificationKind.ORDER_CONFIRMATION) == 1

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_verify_racing_force_confirm(
        self,
        race_services: tuple,
        make_intake: Any,
        sign: Callable[[str, str], str],
        notifier: RecordingNotifier,
    ) -> None:
        orders, coordinator = race_services
        order = await orders.create_order(make_intake())
        initiation = await coordinator.initiate(InitiatePaymentInput(order.order_id))
        callback = VerifyPaymentInput(
            order_id=order.order_id,
            payment_id="pay_1",
            gateway_order_id=initiation.gateway_order_id,
            signature=sign(initiation.gateway_order_id, "pay_1"),
        )

        await asyncio.gather(
            orders.force_confirm(ForceConfirmInput(order.order_id, "pay_1")),
            coordinator.verify(callback),
            return_exceptions=True,
        )

        stored = await orders.get_order(order.order_id)
        assert stored.payment_status is PaymentStatus.SUCCESS
        assert stored.gateway_payment_id == "pay_1"
        assert notifier.count(NotificationKind.ORDER_CONFIRMATION) == 1

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_verify_racing_cancellation(
        self,
        race_services: tuple,
        make_intake: Any,
        sign: Callable[[str, str], str],
        notifier: RecordingNotifier,
    ) -> None:
        orders, coordinator = race_services
        order = await orders.create_order(make_intake())
        initiation = await coordinator.initiate(InitiatePaymentInput(order.order_id))
        callback = VerifyPaymentInput(
            order_id=order.order_id,
            payment_id="pay_1",
            gateway_order_id=initiation.gateway_order_id,
            signature=sign(initiation.gateway_order_id, "pay_1"),
        )

        results = await asyncio.gather(
            coordinator.verify(callback),
            orders.cancel_pending(order.order_id),
            return_exceptions=True,
        )

        successes = [result for result in results if isinstance(result, Order)]
        assert len(successes) == 1
        stored = await orders.get_order(order.order_id)
        if stored.payment_status is PaymentStatus.SUCCESS:
            assert notifier.count(NotificationKind.ORDER_CONFIRMATION) == 1
        else:
            assert (stored.payment_status, stored.order_status) == (
                PaymentStatus.FAILED,
                OrderStatus.CANCELLED,
            )
            assert notifier.sent == []

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_conflicting_status_updates(
        self, race_services: tuple, make_intake: Any, notifier: RecordingNotifier
    ) -> None:
        orders, _ = race_services
        order = await orders.create_order(make_intake(payment_method="COD"))

        results = await asyncio.gather(
            orders.update_status(StatusUpdateInput(order.order_id, "Delivered")),
            orders.update_status(StatusUpdateInput(order.order_id, "Cancelled")),
            return_exceptions=True,
        )

        updated, errors = split(results)
        assert len(updated) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], ConflictError)
        sent_kinds = {kind for kind, _ in notifier.sent}
        assert len(sent_kinds & {NotificationKind.DELIVERY, NotificationKind.CANCELLATION}) == 1

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_creates_with_same_idempotency_key(
        self, race_services: tuple, make_intake: Any, race_store: InterleavingStore
    ) -> None:
        orders, _ = race_services

        results = await asyncio.gather(
            *(orders.create_order(make_intake(), idempotency_key="checkout-7") for _ in range(5)),
            return_exceptions=True,
        )

        created, errors = split(results)
        assert len(created) == 1
        assert all(isinstance(error, ConflictError) for error in errors)
        assert len(race_store) == 1
