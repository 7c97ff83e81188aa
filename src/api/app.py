"""
FastAPI application factory.

* Registers routes for trips, payments, payouts, connected accounts,
  gateway webhooks and admin.
* Starts / stops the background invoice retry worker via lifespan events
  (a no-op unless ``INVOICE_RETRY_INTERVAL_SECONDS`` is set).
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import accounts, admin, payments, payouts, trips, webhooks
from src.workers import invoice_retry as _invoice_retry

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the invoice retry worker on startup; stop on shutdown."""
    await _invoice_retry.start_invoice_retry_loop()
    yield
    await _invoice_retry.stop_invoice_retry_loop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Trip Settlement API",
        description=(
            "Drives transport bookings from payment through driver "
            "assignment and completion, then settles them: driver / fleet "
            "payouts over Stripe Connect, supplier invoices, and webhook "
            "reconciliation."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    for module in (trips, payments, payouts, accounts, webhooks, admin):
        app.include_router(module.router, prefix="/api/v1")

    return app
