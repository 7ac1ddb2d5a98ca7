"""
Unit tests for the pending-order expiry policy.
"""
from datetime import timedelta
from typing import Any

import pytest

from order_engine.core.errors import ExpiryError
from order_engine.core.expiry import ExpiryPolicy
from order_engine.core.models import OrderStatus, PaymentMethod, PaymentStatus

from conftest import START_TIME, MutableClock


class TestExpiryPolicy:
    """Test suite for ExpiryPolicy."""

    @pytest.mark.unit
    def test_fresh_order_is_actionable(self, expiry: ExpiryPolicy, clock: MutableClock, make_order: Any) -> None:
        clock.advance(minutes=29)
        order = make_order()

        assert not expiry.is_expired(order)
        expiry.ensure_actionable(order)

    @pytest.mark.unit
    def test_window_boundary_is_expired(self, expiry: ExpiryPolicy, clock: MutableClock, make_order: Any) -> None:
        clock.advance(minutes=30)
        assert expiry.is_expired(make_order())

    @pytest.mark.unit
    def test_stale_order_rejected(self, expiry: ExpiryPolicy, clock: MutableClock, make_order: Any) -> None:
        clock.advance(minutes=31)

        with pytest.raises(ExpiryError, match="Please create a new order"):
            expiry.ensure_actionable(make_order())

    @pytest.mark.unit
    def test_cod_orders_never_expire(self, expiry: ExpiryPolicy, clock: MutableClock, make_order: Any) -> None:
        clock.advance(days=3)
        order = make_order(
            payment_method=PaymentMethod.COD,
            payment_status=PaymentStatus.SUCCESS,
            order_status=OrderStatus.CONFIRMED,
        )
        assert not expiry.is_expired(order)

    @pytest.mark.unit
    def test_paid_gateway_orders_never_expire(self, expiry: ExpiryPolicy, clock: MutableClock, make_order: Any) -> None:
        clock.advance(days=3)
        order = make_order(payment_status=PaymentStatus.SUCCESS, order_status=OrderStatus.CONFIRMED)
        assert not expiry.is_expired(order)

    @pytest.mark.unit
    def test_cutoff(self, expiry: ExpiryPolicy) -> None:
        assert expiry.cutoff() == START_TIME - timedelta(minutes=30)
        assert expiry.cutoff(START_TIME + timedelta(hours=1)) == START_TIME + timedelta(minutes=30)

    @pytest.mark.unit
    def test_naive_clock_treated_as_utc(self) -> None:
        policy = ExpiryPolicy(clock=lambda: START_TIME.replace(tzinfo=None))
        assert policy.now() == START_TIME

    @pytest.mark.unit
    def test_window_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            ExpiryPolicy(timedelta(0))
