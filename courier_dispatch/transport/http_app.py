# courier_dispatch/transport/http_app.py
"""
Terminal-facing HTTP API for delivery dispatch.

Security layers:
1. Public: /health only
2. Protected: dispatch, courier bookings, policy, order events and /metrics (terminal token)
3. No information leakage in production (docs disabled, sanitized errors)

The dispatch orchestrator, order directory, policy store and gateway are
built in the lifespan and kept on ``app.state``; routes reach them through
the dependencies below.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Depends, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from courier_dispatch.config import settings
from courier_dispatch.core.delivery import DispatchOrchestrator
from courier_dispatch.infra.delivery_gateway import HttpDeliveryGateway
from courier_dispatch.infra.http_client import close_all_sessions
from courier_dispatch.infra.logging_config import setup_logging, get_logger, LogContext
from courier_dispatch.infra.metrics import get_metrics_collector
from courier_dispatch.infra.order_directory import InMemoryOrderDirectory
from courier_dispatch.infra.policy_store import InMemoryPolicyStore
from courier_dispatch.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from courier_dispatch.transport.order_polling import OrderPoller
from courier_dispatch.transport.schemas import (
    DeliveryCancelOut,
    DispatchAcceptedOut,
    DispatchOut,
    DriverOut,
    OrderStatusEventIn,
    PolicyIn,
    PolicyOut,
)
from courier_dispatch.transport.security import (
    check_configured_tokens,
    require_terminal_auth,
    SecurityHeaders,
    sanitize_error_message,
)

# Initialize logging first
setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_orchestrator(request: Request) -> DispatchOrchestrator:
    return request.app.state.orchestrator


def get_order_directory(request: Request) -> InMemoryOrderDirectory:
    return request.app.state.order_directory


def get_policy_store(request: Request) -> InMemoryPolicyStore:
    return request.app.state.policy_store


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses"""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        return SecurityHeaders.add_security_headers(response)


# ============================================================================
# LIFECYCLE
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""

    # STARTUP
    logger.info(
        f"Starting application: env={settings.app_env}, "
        f"provider={settings.delivery_provider}, auto_dispatch={settings.auto_dispatch}"
    )

    if settings.is_production:
        missing = settings.validate_required_for_production()
        if missing:
            logger.critical(f"Missing required production settings: {missing}")
            raise RuntimeError(f"Missing production config: {missing}")

    check_configured_tokens()

    directory = InMemoryOrderDirectory()
    policy_store = InMemoryPolicyStore.from_settings(settings)
    gateway = HttpDeliveryGateway(
        api_base=settings.restaurant_api_base,
        api_token=settings.api_token,
    )
    orchestrator = DispatchOrchestrator(orders=directory, gateway=gateway, policy=policy_store)
    orchestrator.attach()

    fastapi_app.state.order_directory = directory
    fastapi_app.state.policy_store = policy_store
    fastapi_app.state.gateway = gateway
    fastapi_app.state.orchestrator = orchestrator

    poller = None
    if settings.order_poll_enabled and settings.restaurant_api_base:
        poller = OrderPoller(directory)
        await poller.start()
    else:
        logger.info("Order poller skipped (disabled or restaurant_id not set)")
    fastapi_app.state.order_poller = poller

    logger.info("Application startup complete")

    yield

    # SHUTDOWN
    logger.info("Shutting down application")

    if poller is not None:
        await poller.stop()

    await orchestrator.aclose()
    await close_all_sessions()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

app = FastAPI(
    title="Courier Dispatch",
    description="Delivery dispatch control for the restaurant terminal",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

if settings.is_production or settings.is_staging:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins if settings.allowed_origins != ["*"] else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Content-Type", "Authorization"],
    )
else:
    # More permissive in dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with appropriate logging"""
    if exc.status_code >= 500:
        logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions"""
    logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={"error": sanitize_error_message(exc, settings.is_production)},
    )


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/health")
def health():
    """Basic health check - PUBLIC endpoint."""
    return {"status": "healthy"}


# ============================================================================
# DISPATCH
# ============================================================================

def _require_known_order(directory: InMemoryOrderDirectory, order_id: str) -> None:
    if directory.get_order(order_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")


@app.get(
    "/orders/{order_id}/dispatch",
    response_model=DispatchOut,
    dependencies=[Depends(require_terminal_auth)],
)
def get_dispatch(
    order_id: str,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
    directory: InMemoryOrderDirectory = Depends(get_order_directory),
):
    """Dispatch state, last error and held quote for one order."""
    _require_known_order(directory, order_id)
    return DispatchOut.from_view(orchestrator.dispatch_view(order_id))


@app.post(
    "/orders/{order_id}/dispatch",
    response_model=DispatchAcceptedOut,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_terminal_auth)],
)
async def post_dispatch(
    order_id: str,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
    directory: InMemoryOrderDirectory = Depends(get_order_directory),
):
    """
    Manual dispatch button.

    First press fetches a quote (the terminal polls GET to show the fee);
    the second press accepts the held quote. The outcome is only visible
    through GET.
    """
    _require_known_order(directory, order_id)
    LogContext(logger, order_id=order_id).info("Manual dispatch requested")
    orchestrator.on_dispatch_driver(order_id)
    return DispatchAcceptedOut(order_id=order_id)


# ============================================================================
# COURIER BOOKINGS
# ============================================================================

def _require_booking(
    directory: InMemoryOrderDirectory, orchestrator: DispatchOrchestrator, order_id: str,
) -> str:
    _require_known_order(directory, order_id)
    external_id = orchestrator.delivery_external_id(order_id)
    if external_id is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No courier booked for this order")
    return external_id


@app.get(
    "/orders/{order_id}/delivery",
    response_model=DriverOut,
    dependencies=[Depends(require_terminal_auth)],
)
async def get_delivery(
    order_id: str,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
    directory: InMemoryOrderDirectory = Depends(get_order_directory),
):
    """Live courier details for a booked delivery."""
    external_id = _require_booking(directory, orchestrator, order_id)
    info = await orchestrator.get_driver_info(order_id)
    if info is None:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Delivery status unavailable")
    return DriverOut.from_domain(order_id, external_id, info)


@app.post(
    "/orders/{order_id}/delivery/cancel",
    response_model=DeliveryCancelOut,
    dependencies=[Depends(require_terminal_auth)],
)
async def cancel_delivery(
    order_id: str,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
    directory: InMemoryOrderDirectory = Depends(get_order_directory),
):
    """Cancel the booked courier; ``cancelled`` is false when the provider refuses."""
    _require_booking(directory, orchestrator, order_id)
    LogContext(logger, order_id=order_id).info("Delivery cancel requested")
    cancelled = await orchestrator.cancel_delivery(order_id)
    return DeliveryCancelOut(order_id=order_id, cancelled=cancelled)


# ============================================================================
# POLICY
# ============================================================================

def _policy_out(store: InMemoryPolicyStore, orchestrator: DispatchOrchestrator) -> PolicyOut:
    policy = store.current()
    return PolicyOut.from_domain(
        policy,
        provider_ready=orchestrator.gateway.is_provider_configured_for(policy.provider),
    )


@app.get("/delivery/policy", response_model=PolicyOut, dependencies=[Depends(require_terminal_auth)])
def get_policy(
    store: InMemoryPolicyStore = Depends(get_policy_store),
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
):
    return _policy_out(store, orchestrator)


@app.put("/delivery/policy", response_model=PolicyOut, dependencies=[Depends(require_terminal_auth)])
async def put_policy(
    body: PolicyIn,
    store: InMemoryPolicyStore = Depends(get_policy_store),
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
):
    store.update(provider=body.provider, auto_dispatch=body.auto_dispatch)
    return _policy_out(store, orchestrator)


# ============================================================================
# ORDER EVENTS
# ============================================================================

@app.post("/events/order-status", dependencies=[Depends(require_terminal_auth)])
async def order_status_event(
    event: OrderStatusEventIn,
    orchestrator: DispatchOrchestrator = Depends(get_orchestrator),
    directory: InMemoryOrderDirectory = Depends(get_order_directory),
):
    """Kitchen status change already accepted by the backend."""
    if directory.apply_status(event.order_id, event.status) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    orchestrator.on_status_change(event.order_id, event.status)
    return {"status": "ok"}


# ============================================================================
# METRICS
# ============================================================================

@app.get("/metrics", dependencies=[Depends(require_terminal_auth)])
def metrics():
    if not settings.enable_metrics:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return get_metrics_collector().get_metrics()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "courier_dispatch.transport.http_app:app",
        host="0.0.0.0",
        port=8099,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
        access_log=not settings.is_production,
        server_header=False,
        date_header=False,
    )
