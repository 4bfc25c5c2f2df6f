"""
FastAPI application factory.

* Registers routes for rides, bookings, payment webhooks and admin.
* Starts / stops the webhook reconciliation worker via lifespan events.
* Maps ``BookingError`` subclasses onto their HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.dependencies import build_orchestrator
from src.api.middleware import limiter
from src.api.routes import admin, bookings, payments, rides
from src.config import settings
from src.domain.exceptions import BookingError
from src.infrastructure.redis_client import close_pool
from src.services.orchestrator import BookingOrchestrator
from src.workers import reconciler as _reconciler

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the reconciliation worker on startup; stop on shutdown."""
    await _reconciler.start_reconciliation_loop(app.state.orchestrator)
    yield
    await _reconciler.stop_reconciliation_loop()
    await close_pool()


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def create_app(orchestrator: Optional[BookingOrchestrator] = None) -> FastAPI:
    app = FastAPI(
        title="Carpool Booking & Payment API",
        description=(
            "Seat booking for shared rides with payment holds, capture on "
            "acceptance or completion, penalty-aware refunds and webhook "
            "reconciliation."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator or build_orchestrator()

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(BookingError, booking_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
