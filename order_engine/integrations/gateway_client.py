"""
Payment gateway REST client with retry logic and error classification.

Implements:
- Exponential backoff for transient errors
- Circuit breaker pattern
- Order creation and payment lookup
"""
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..config import Settings
from ..core.errors import GatewayError
from ..monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class GatewayErrorType(Enum):
    """Classification of gateway errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with backoff
    UNAVAILABLE = "unavailable"  # Circuit open, fail fast


class GatewayClientError(GatewayError):
    """Gateway call failure with its classification."""

    def __init__(
        self,
        message: str,
        error_type: GatewayErrorType,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.status_code = status_code
        self.original_error = original_error

    @property
    def retryable(self) -> bool:
        return self.error_type in (GatewayErrorType.TRANSIENT, GatewayErrorType.RATE_LIMIT)


class CircuitBreaker:
    """
    Circuit breaker for gateway API calls.

    Prevents cascading failures by temporarily stopping requests
    when error rate exceeds threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
            clock: Monotonic time source
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open
        self._clock = clock

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Execute coroutine function with circuit breaker protection.

        Raises:
            GatewayClientError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time is not None
                and self._clock() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise GatewayClientError(
                    "Payment gateway temporarily unavailable",
                    GatewayErrorType.UNAVAILABLE,
                )

        try:
            result = await func(*args, **kwargs)
        except GatewayClientError as e:
            if e.error_type is not GatewayErrorType.PERMANENT:
                self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning("circuit_breaker_opened", failure_count=self.failure_count)

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)


def _is_retryable(error: BaseException) -> bool:
    return isinstance(error, GatewayClientError) and error.retryable


class GatewayClient:
    """
    Async client for the payment gateway REST API.

    Authenticates with HTTP basic auth (key id / key secret). Every call goes through
    the circuit breaker and is retried on transient failures only.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        wait_multiplier: float = 0.5,
    ):
        self.settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.gateway_base_url,
            auth=(settings.gateway_key_id, settings.gateway_key_secret),
            timeout=settings.gateway_timeout_seconds,
        )
        self._owns_client = client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.max_attempts = settings.gateway_max_attempts
        self.wait_multiplier = wait_multiplier

        logger.info(
            "gateway_client_initialized",
            base_url=settings.gateway_base_url,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_status(status_code: int) -> GatewayErrorType:
        if status_code == 429:
            return GatewayErrorType.RATE_LIMIT
        if status_code >= 500:
            return GatewayErrorType.TRANSIENT
        return GatewayErrorType.PERMANENT

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            metrics.record_gateway_api_call(operation, "timeout", time.perf_counter() - started)
            raise GatewayClientError(
                f"Gateway {operation} timed out", GatewayErrorType.TRANSIENT, original_error=e
            )
        except httpx.TransportError as e:
            metrics.record_gateway_api_call(operation, "error", time.perf_counter() - started)
            raise GatewayClientError(
                f"Gateway {operation} failed: {e}", GatewayErrorType.TRANSIENT, original_error=e
            )
        except httpx.HTTPError as e:
            # Undecodable bodies, redirect loops and the like.
            metrics.record_gateway_api_call(operation, "error", time.perf_counter() - started)
            raise GatewayClientError(
                f"Gateway {operation} failed: {e}", GatewayErrorType.PERMANENT, original_error=e
            )

        metrics.record_gateway_api_call(
            operation, str(response.status_code), time.perf_counter() - started
        )
        if response.is_error:
            raise GatewayClientError(
                f"Gateway {operation} returned HTTP {response.status_code}",
                self._classify_status(response.status_code),
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise GatewayClientError(
                f"Gateway {operation} returned a non-JSON body",
                GatewayErrorType.PERMANENT,
                status_code=response.status_code,
                original_error=e,
            )
        if not isinstance(body, dict):
            raise GatewayClientError(
                f"Gateway {operation} returned an unexpected body", GatewayErrorType.PERMANENT
            )
        return body

    async def _call(self, operation: str, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.wait_multiplier, max=8),
                reraise=True,
            ):
                with attempt:
                    return await self.circuit_breaker.call(
                        self._send, operation, method, url, **kwargs
                    )
        except GatewayClientError as e:
            metrics.record_gateway_api_error(e.error_type.value)
            logger.error(
                "gateway_api_error",
                operation=operation,
                error_type=e.error_type.value,
                status_code=e.status_code,
                error_message=e.message,
            )
            raise
        raise GatewayClientError(f"Gateway {operation} was not attempted", GatewayErrorType.PERMANENT)

    async def create_order(
        self,
        amount: int,
        currency: str,
        receipt: str,
        notes: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a gateway order.

        Args:
            amount: Amount in minor units (paise)
            currency: Currency code
            receipt: Local order id
            notes: Free-form key/value notes stored with the gateway order

        Returns:
            Dict[str, Any]: Gateway order, including its ``id``

        Raises:
            GatewayClientError: If creation fails
        """
        logger.info("creating_gateway_order", amount=amount, currency=currency, receipt=receipt)
        gateway_order = await self._call(
            "create_order",
            "POST",
            "/orders",
            json={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
            },
        )
        logger.info(
            "gateway_order_created",
            gateway_order_id=gateway_order.get("id"),
            receipt=receipt,
        )
        return gateway_order

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        """
        Retrieve a payment by id.

        Raises:
            GatewayClientError: If retrieval fails
        """
        logger.info("fetching_gateway_payment", payment_id=payment_id)
        return await self._call("fetch_payment", "GET", f"/payments/{payment_id}")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
