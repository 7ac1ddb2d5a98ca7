"""
API routes for order intake, payment and administration.

Domain errors propagate to the exception handlers registered in ``main``; routes only
translate between HTTP shapes and service inputs.
"""
from datetime import date
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..core.errors import ValidationError, ValidationIssue
from ..core.gateway import GatewayCoordinator
from ..core.orders import OrderService
from ..monitoring.health import HealthCheck
from .dependencies import get_coordinator, get_health_check, get_order_service, require_admin
from .schemas import (
    CreateOrderRequest,
    ForceConfirmRequest,
    HealthCheckResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    OrderActionResponse,
    StatusUpdateRequest,
    VerifyPaymentRequest,
)

logger = structlog.get_logger(__name__)

order_router = APIRouter(prefix="/orders", tags=["orders"])
admin_router = APIRouter(prefix="/orders", tags=["admin"], dependencies=[Depends(require_admin)])
monitoring_router = APIRouter(tags=["monitoring"])


@order_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="Validate, price and persist an order. COD orders are confirmed immediately.",
)
async def create_order(
    request: CreateOrderRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    orders: OrderService = Depends(get_order_service),
) -> Dict[str, Any]:
    order = await orders.create_order(request.to_intake(), idempotency_key=idempotency_key)
    logger.info(
        "api_create_order_success",
        order_id=order.order_id,
        payment_method=order.payment_method.value,
    )
    return {"order": order.to_document()}


@order_router.post(
    "/initiate-payment",
    response_model=InitiatePaymentResponse,
    summary="Initiate online payment",
    description="Create a gateway order for a pending order",
)
async def initiate_payment(
    request: InitiatePaymentRequest,
    coordinator: GatewayCoordinator = Depends(get_coordinator),
) -> Dict[str, Any]:
    initiation = await coordinator.initiate(request.to_input())
    return initiation.to_response()


@order_router.post(
    "/verify-payment",
    response_model=OrderActionResponse,
    summary="Verify online payment",
    description="Verify a signed gateway callback and confirm the order",
)
async def verify_payment(
    request: VerifyPaymentRequest,
    coordinator: GatewayCoordinator = Depends(get_coordinator),
) -> Dict[str, Any]:
    order = await coordinator.verify(request.to_input())
    return {"success": True, "order": order.public_view()}


@admin_router.get("", summary="List successful orders")
async def list_orders(
    on_date: Optional[str] = Query(default=None, alias="date", description="YYYY-MM-DD"),
    order_id: Optional[str] = Query(default=None, alias="orderId", max_length=64),
    orders: OrderService = Depends(get_order_service),
) -> List[Dict[str, Any]]:
    parsed_date: Optional[date] = None
    if on_date:
        try:
            parsed_date = date.fromisoformat(on_date)
        except ValueError:
            raise ValidationError(
                "Invalid date format", [ValidationIssue("date", "Expected YYYY-MM-DD")]
            )
    found = await orders.list_successful(parsed_date, order_id)
    logger.info("api_list_orders", count=len(found), date=on_date, order_id=order_id)
    return [order.to_document() for order in found]


@admin_router.get("/pending", summary="List pending gateway orders")
async def list_pending_orders(
    orders: OrderService = Depends(get_order_service),
) -> List[Dict[str, Any]]:
    pending = await orders.list_pending()
    logger.info("api_list_pending_orders", count=len(pending))
    return [order.to_document() for order in pending]


@admin_router.get("/pending/{order_id}", summary="Get a pending gateway order")
async def get_pending_order(
    order_id: str, orders: OrderService = Depends(get_order_service)
) -> Dict[str, Any]:
    order = await orders.get_pending(order_id)
    return order.to_document()


@admin_router.delete(
    "/pending/{order_id}",
    response_model=OrderActionResponse,
    summary="Cancel a pending gateway order",
)
async def cancel_pending_order(
    order_id: str, orders: OrderService = Depends(get_order_service)
) -> Dict[str, Any]:
    order = await orders.cancel_pending(order_id)
    return {"success": True, "order": order.to_document()}


@admin_router.get("/{order_id}", summary="Get any order (debug view)")
async def get_order(
    order_id: str, orders: OrderService = Depends(get_order_service)
) -> Dict[str, Any]:
    order = await orders.get_order(order_id)
    logger.info(
        "api_order_debug_view",
        order_id=order_id,
        payment_status=order.payment_status.value,
        gateway_order_id=order.gateway_order_id,
    )
    return order.to_document()


@admin_router.post(
    "/{order_id}/force-confirm",
    response_model=OrderActionResponse,
    summary="Force-confirm an order",
    description="Manual reconciliation when the payment callback was lost",
)
async def force_confirm_order(
    order_id: str,
    request: Optional[ForceConfirmRequest] = None,
    orders: OrderService = Depends(get_order_service),
) -> Dict[str, Any]:
    order = await orders.force_confirm((request or ForceConfirmRequest()).to_input(order_id))
    return {"success": True, "order": order.to_document()}


@admin_router.put(
    "/{order_id}/status",
    response_model=OrderActionResponse,
    summary="Update order status",
)
async def update_order_status(
    order_id: str,
    request: StatusUpdateRequest,
    orders: OrderService = Depends(get_order_service),
) -> Dict[str, Any]:
    order = await orders.update_status(request.to_input(order_id))
    return {"success": True, "order": order.to_document()}


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get("/metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
