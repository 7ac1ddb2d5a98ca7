"""
Tests for the gateway REST client, its retry policy and circuit breaker.
"""
import json
from typing import Any, AsyncGenerator, Callable, List

import httpx
import pytest
import pytest_asyncio

from order_engine.config import Settings
from order_engine.integrations.gateway_client import (
    CircuitBreaker,
    GatewayClient,
    GatewayClientError,
    GatewayErrorType,
)


class ScriptedTransport:
    """Answers requests from a list of responses and records what it saw."""

    def __init__(self, *responses: Any):
        self.responses: List[Any] = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest_asyncio.fixture
async def make_client(test_settings: Settings) -> AsyncGenerator[Callable[..., GatewayClient], Any]:
    http_clients: List[httpx.AsyncClient] = []

    def factory(transport: ScriptedTransport, **kwargs: Any) -> GatewayClient:
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(transport), base_url="https://gateway.test"
        )
        http_clients.append(http_client)
        settings = kwargs.pop("settings", test_settings)
        return GatewayClient(settings, client=http_client, wait_multiplier=0, **kwargs)

    yield factory
    for http_client in http_clients:
        await http_client.aclose()


class TestGatewayClient:
    """Test suite for GatewayClient."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_order(self, make_client: Any) -> None:
        transport = ScriptedTransport(httpx.Response(200, json={"id": "order_1", "amount": 50000}))
        client = make_client(transport)

        result = await client.create_order(50000, "INR", "ORDER-1", {"orderId": "ORDER-1"})

        assert result["id"] == "order_1"
        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/orders"
        assert json.loads(request.content) == {
            "amount": 50000,
            "currency": "INR",
            "receipt": "ORDER-1",
            "notes": {"orderId": "ORDER-1"},
        }

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fetch_payment(self, make_client: Any) -> None:
        transport = ScriptedTransport(httpx.Response(200, json={"id": "pay_1", "method": "upi"}))
        client = make_client(transport)

        payment = await client.fetch_payment("pay_1")

        assert payment["method"] == "upi"
        assert transport.requests[0].method == "GET"
        assert transport.requests[0].url.path == "/payments/pay_1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, make_client: Any) -> None:
        transport = ScriptedTransport(
            httpx.Response(503),
            httpx.Response(502),
            httpx.Response(200, json={"id": "order_1"}),
        )
        client = make_client(transport)

        result = await client.create_order(50000, "INR", "ORDER-1")

        assert result["id"] == "order_1"
        assert len(transport.requests) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, make_client: Any) -> None:
        transport = ScriptedTransport(httpx.Response(429), httpx.Response(200, json={"id": "o"}))
        client = make_client(transport)

        await client.create_order(50000, "INR", "ORDER-1")
        assert len(transport.requests) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retries_exhausted(self, make_client: Any) -> None:
        transport = ScriptedTransport(httpx.Response(503))
        client = make_client(transport)

        with pytest.raises(GatewayClientError) as exc_info:
            await client.create_order(50000, "INR", "ORDER-1")

        assert exc_info.value.error_type is GatewayErrorType.TRANSIENT
        assert exc_info.value.status_code == 503
        assert len(transport.requests) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, make_client: Any) -> None:
        transport = ScriptedTransport(httpx.Response(400, json={"error": "bad amount"}))
        client = make_client(transport)

        with pytest.raises(GatewayClientError) as exc_info:
            await client.create_order(50000, "INR", "ORDER-1")

        assert exc_info.value.error_type is GatewayErrorType.PERMANENT
        assert not exc_info.value.retryable
        assert len(transport.requests) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, make_client: Any) -> None:
        transport = ScriptedTransport(
            httpx.ReadTimeout("timed out"), httpx.Response(200, json={"id": "order_1"})
        )
        client = make_client(transport)

        assert (await client.create_order(50000, "INR", "ORDER-1"))["id"] == "order_1"
        assert len(transport.requests) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_json_body(self, make_client: Any) -> None:
        transport = ScriptedTransport(httpx.Response(200, text="<html>maintenance</html>"))
        client = make_client(transport)

        with pytest.raises(GatewayClientError) as exc_info:
            await client.fetch_payment("pay_1")
        assert exc_info.value.error_type is GatewayErrorType.PERMANENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_undecodable_body_is_wrapped(self, make_client: Any) -> None:
        transport = ScriptedTransport(
            httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip")
        )
        client = make_client(transport)

        with pytest.raises(GatewayClientError) as exc_info:
            await client.fetch_payment("pay_1")
        assert exc_info.value.error_type is GatewayErrorType.PERMANENT
        assert isinstance(exc_info.value.original_error, httpx.DecodingError)
        assert len(transport.requests) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_open_circuit_fails_fast(self, make_client: Any, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"gateway_max_attempts": 1})
        transport = ScriptedTransport(httpx.Response(503))
        client = make_client(
            transport, settings=settings, circuit_breaker=CircuitBreaker(failure_threshold=2)
        )

        for _ in range(2):
            with pytest.raises(GatewayClientError):
                await client.create_order(50000, "INR", "ORDER-1")
        assert client.circuit_breaker.state == "open"

        with pytest.raises(GatewayClientError) as exc_info:
            await client.create_order(50000, "INR", "ORDER-1")

        assert exc_info.value.error_type is GatewayErrorType.UNAVAILABLE
        assert len(transport.requests) == 2


class TestCircuitBreaker:
    """Test suite for CircuitBreaker."""

    @staticmethod
    async def succeed() -> str:
        return "ok"

    @staticmethod
    async def fail(error_type: GatewayErrorType = GatewayErrorType.TRANSIENT) -> None:
        raise GatewayClientError("boom", error_type)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_opens_after_threshold(self) -> None:
        breaker = CircuitBreaker(failure_threshold=3)

        for _ in range(3):
            with pytest.raises(GatewayClientError):
                await breaker.call(self.fail)

        assert breaker.state == "open"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_permanent_errors_do_not_count(self) -> None:
        breaker = CircuitBreaker(failure_threshold=1)

        with pytest.raises(GatewayClientError):
            await breaker.call(self.fail, GatewayErrorType.PERMANENT)

        assert breaker.state == "closed"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_recovers_through_half_open(self) -> None:
        now = [0.0]
        breaker = CircuitBreaker(
            failure_threshold=1, timeout=30, success_threshold=2, clock=lambda: now[0]
        )
        with pytest.raises(GatewayClientError):
            await breaker.call(self.fail)
        assert breaker.state == "open"

        now[0] = 31.0
        assert await breaker.call(self.succeed) == "ok"
        assert breaker.state == "half_open"
        await breaker.call(self.succeed)
        assert breaker.state == "closed"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self) -> None:
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, timeout=30, clock=lambda: now[0])
        with pytest.raises(GatewayClientError):
            await breaker.call(self.fail)

        now[0] = 31.0
        with pytest.raises(GatewayClientError):
            await breaker.call(self.fail)

        assert breaker.state == "open"
