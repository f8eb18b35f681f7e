"""
FastAPI application factory.

* Registers routes for bookings, notification preferences and admin.
* Builds the runtime (store, projector, dispatcher) and starts / stops the
  request-expiry worker via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, bookings, preferences
from src.config import settings
from src.infrastructure.redis_client import close_redis
from src.runtime import Runtime, build_runtime
from src.workers import expiry as _expiry

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the runtime and expiry worker on startup; tear down on shutdown."""
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = await build_runtime()
    runtime: Runtime = app.state.runtime
    await _expiry.start_expiry_loop(runtime.store, runtime.persistence)
    yield
    await _expiry.stop_expiry_loop()
    await runtime.close()
    await close_redis()


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    app = FastAPI(
        title="Ride Booking Lifecycle API",
        description=(
            "Tracks private-ride bookings from request to completion.  "
            "Normalizes legacy status fields into one canonical phase, "
            "enforces the transition table and notifies both parties."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(preferences.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
