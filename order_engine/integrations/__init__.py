"""External service integrations."""
from .gateway_client import CircuitBreaker, GatewayClient, GatewayClientError, GatewayErrorType

__all__ = ["CircuitBreaker", "GatewayClient", "GatewayClientError", "GatewayErrorType"]
