"""
Health checks for Kubernetes readiness/liveness probes.

Checks:
- Order store connectivity
- Payment gateway configuration and circuit breaker state
"""
from typing import Any, Dict, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class Pingable(Protocol):
    async def ping(self) -> bool:
        ...


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Order store connectivity check
    - Payment gateway check (credentials present, circuit not open)
    - Overall system health status
    """

    def __init__(
        self,
        store: Pingable,
        gateway: Optional[Any] = None,
        test_mode: bool = False,
    ):
        self.store = store
        self.gateway = gateway
        self.test_mode = test_mode

    async def check_database(self) -> Dict[str, Any]:
        """
        Check order store connectivity.

        Raises:
            HealthCheckError: If the store does not answer
        """
        try:
            healthy = await self.store.ping()
        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {e}")
        if not healthy:
            logger.error("database_health_check_failed", error="ping returned false")
            raise HealthCheckError("Database health check failed: ping returned false")
        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    async def check_gateway(self) -> Dict[str, Any]:
        """
        Check payment gateway client state.

        The gateway is not called; an open circuit breaker is what marks it unhealthy.

        Raises:
            HealthCheckError: If the circuit breaker is open
        """
        breaker = getattr(self.gateway, "circuit_breaker", None)
        state = getattr(breaker, "state", "closed")
        if state == "open":
            logger.warning("gateway_health_check_failed", circuit_state=state)
            raise HealthCheckError("Payment gateway circuit breaker is open")
        return {
            "status": "healthy",
            "service": "gateway",
            "circuit_state": state,
            "test_mode": self.test_mode,
        }

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        checks: Dict[str, Any] = {}
        all_healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {"status": "unhealthy", "service": "database", "error": str(e)}
            all_healthy = False

        try:
            checks["gateway"] = await self.check_gateway()
        except HealthCheckError as e:
            checks["gateway"] = {"status": "unhealthy", "service": "gateway", "error": str(e)}
            all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: all dependencies must be available."""
        return await self.check_all()
