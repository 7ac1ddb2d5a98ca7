"""
Tests for logging processors and health checks.
"""
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from order_engine.api.main import create_app
from order_engine.config import Settings
from order_engine.core.store import InMemoryOrderStore
from order_engine.integrations.gateway_client import CircuitBreaker
from order_engine.monitoring.health import HealthCheck, HealthCheckError
from order_engine.monitoring.logging import app_context_processor, mask_customer_emails, mask_email


class TestLogging:
    """Test suite for logging processors."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("asha@example.com", "as***@example.com"),
            ("a@example.com", "a***@example.com"),
            ("order for jo.doe@shop.in", "order for jo***@shop.in"),
            ("no address here", "no address here"),
        ],
    )
    def test_mask_email(self, value: str, expected: str) -> None:
        assert mask_email(value) == expected

    @pytest.mark.unit
    def test_mask_customer_emails_processor(self) -> None:
        event = {
            "event": "payment_verified",
            "email": "asha@example.com",
            "recipient": "support@shop.test",
            "order_id": "ORDER-1",
        }

        processed = mask_customer_emails(None, "info", event)

        assert processed["email"] == "as***@example.com"
        assert processed["recipient"] == "su***@shop.test"
        assert processed["order_id"] == "ORDER-1"

    @pytest.mark.unit
    def test_app_context_processor(self, test_settings: Settings) -> None:
        processor = app_context_processor(test_settings)
        event = processor(None, "info", {"event": "order_created"})
        assert event["app_name"] == "order-engine-test"
        assert event["app_env"] == "test"


class BrokenStore(InMemoryOrderStore):
    async def ping(self) -> bool:
        return False


class GatewayWithBreaker:
    def __init__(self) -> None:
        self.circuit_breaker = CircuitBreaker()


class TestHealthCheck:
    """Test suite for HealthCheck."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_all_healthy(self, store: InMemoryOrderStore) -> None:
        result = await HealthCheck(store, GatewayWithBreaker(), test_mode=True).check_all()

        assert result["status"] == "healthy"
        assert result["checks"]["gateway"]["circuit_state"] == "closed"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_database_down(self) -> None:
        health = HealthCheck(BrokenStore())

        with pytest.raises(HealthCheckError):
            await health.check_database()
        assert (await health.readiness())["status"] == "unhealthy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_open_circuit_is_unhealthy(self, store: InMemoryOrderStore) -> None:
        gateway = GatewayWithBreaker()
        gateway.circuit_breaker.state = "open"

        result = await HealthCheck(store, gateway).check_all()

        assert result["status"] == "unhealthy"
        assert result["checks"]["gateway"]["status"] == "unhealthy"
        assert result["checks"]["database"]["status"] == "healthy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_liveness_ignores_dependencies(self) -> None:
        assert (await HealthCheck(BrokenStore()).liveness())["status"] == "alive"


class TestReadinessRoute:
    """Readiness answers 503 when a dependency is down."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_not_ready(self, test_settings: Settings, gateway: Any, notifier: Any) -> None:
        app = create_app(
            test_settings,
            store=BrokenStore(),
            gateway=gateway,
            notifier=notifier,
            configure_logging=False,
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/health/ready")

        assert response.status_code == 503
