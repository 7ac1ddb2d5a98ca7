"""
FastAPI application factory.

Order engine API with:
- CORS configuration
- Domain error to HTTP status mapping
- Request ID tracking
- Structured logging
- Prometheus metrics

Run with ``uvicorn order_engine.api.main:create_app --factory``.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional, Type

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Settings, get_settings
from ..core.errors import (
    ConflictError,
    ExpiryError,
    GatewayError,
    NotFoundError,
    OrderEngineError,
    SignatureError,
    StoreError,
    ValidationError,
)
from ..core.expiry import Clock
from ..core.gateway import PaymentGateway
from ..core.notifications import NotificationDispatcher
from ..core.store import OrderStore
from ..monitoring.logging import setup_logging
from .dependencies import build_container
from .routes import admin_router, monitoring_router, order_router

logger = structlog.get_logger(__name__)

ERROR_STATUS: Dict[Type[OrderEngineError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    SignatureError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    ExpiryError: status.HTTP_410_GONE,
    GatewayError: status.HTTP_502_BAD_GATEWAY,
    StoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: OrderEngineError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Connects the database on startup and releases every client on shutdown.
    """
    container = app.state.container
    settings = container.settings
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        test_mode=settings.is_test_mode,
    )
    try:
        await container.startup()
    except Exception as e:
        logger.error("application_startup_failed", error=str(e))
        raise

    yield

    logger.info("application_shutdown")
    await container.shutdown()


async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    Also adds timing information and structured logging context.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response
    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise
    finally:
        structlog.contextvars.clear_contextvars()


async def order_engine_error_handler(request: Request, exc: OrderEngineError) -> JSONResponse:
    status_code = status_for(exc)
    body: Dict[str, Any] = {"error": exc.code, "message": exc.message}
    if isinstance(exc, ValidationError) and exc.issues:
        body["issues"] = [issue.as_dict() for issue in exc.issues]

    log = logger.error if status_code >= 500 else logger.warning
    log("api_request_rejected", error_code=exc.code, error=exc.message, status_code=status_code)
    return JSONResponse(status_code=status_code, content=body)


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    issues = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    logger.warning("api_request_malformed", issue_count=len(issues))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": ValidationError.code, "message": "Invalid request", "issues": issues},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[OrderStore] = None,
    gateway: Optional[PaymentGateway] = None,
    notifier: Optional[NotificationDispatcher] = None,
    clock: Optional[Clock] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the application and its service container.

    Every collaborator can be injected; anything omitted is built from ``settings``.
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(settings)

    app = FastAPI(
        title="Order Engine",
        description=(
            "Order intake, server-side pricing and payment reconciliation with an "
            "external payment gateway."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.container = build_container(
        settings, store=store, gateway=gateway, notifier=notifier, clock=clock
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(add_request_id_middleware)

    app.add_exception_handler(OrderEngineError, order_engine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(order_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> Dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "test_mode": settings.is_test_mode,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "order_engine.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )
