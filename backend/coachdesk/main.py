# backend/coachdesk/main.py
"""
Booking core API.

Mounts the v1 routers under /api/v1 and exposes /health and /metrics.
Run with ``uvicorn coachdesk.main:app`` from the backend directory.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging
import time
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from .core.config import is_running_tests, settings
from .core.exceptions import DomainException
from .database import SessionLocal, init_db
from .monitoring.prometheus_metrics import prometheus_metrics
from .ratelimit import build_rate_limiter
from .routes.v1 import admin_availability, admin_bookings, booking, stripe_webhooks
from .tasks.event_worker import start_worker_thread

API_TITLE = "Coaching Booking API"
API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info(f"{API_TITLE} starting up...")
    logger.info(f"Environment: {settings.environment}")
    if is_running_tests():
        logger.info("Running under pytest (test mode active)")

    init_db()

    limiter, backend = build_rate_limiter(settings)
    app.state.rate_limiter = limiter
    logger.info(f"Rate limiter ready (backend={backend}, enabled={limiter.enabled})")

    worker_shutdown = None
    if settings.event_worker_enabled and not settings.is_testing:
        worker_shutdown = start_worker_thread(SessionLocal)

    yield

    logger.info(f"{API_TITLE} shutting down...")
    if worker_shutdown is not None:
        worker_shutdown.set()


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Errors raised from dependencies (admin token, rate limits) bypass route handlers."""
    http_exc = exc.to_http_exception()
    return JSONResponse(
        status_code=http_exc.status_code,
        content={"detail": http_exc.detail},
        headers=http_exc.headers,
    )


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", None) or "unmatched"
    prometheus_metrics.record_http_request(
        request.method, endpoint, time.perf_counter() - started, response.status_code
    )
    return response


# Create API v1 router
api_v1 = APIRouter(prefix="/api/v1")

api_v1.include_router(booking.router, prefix="/booking")
api_v1.include_router(admin_availability.router, prefix="/admin/availability")
api_v1.include_router(admin_bookings.router, prefix="/admin/bookings")
api_v1.include_router(stripe_webhooks.router, prefix="/webhooks/stripe")

app.include_router(api_v1)


@app.get("/health")
def health_check() -> dict:
    """Liveness probe; does not touch the database."""
    return {
        "status": "healthy",
        "version": API_VERSION,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


@app.get("/metrics")
def metrics() -> Response:
    """Prometheus exposition of the coachdesk registry."""
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
