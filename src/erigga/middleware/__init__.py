"""Middleware and exception-handler wiring."""

from fastapi import FastAPI

from erigga.config import Settings
from erigga.middleware.cors import setup_cors
from erigga.middleware.error_handler import setup_error_handlers
from erigga.middleware.logging import setup_logging
from erigga.middleware.rate_limit import RateLimitMiddleware
from erigga.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register middleware. Starlette runs them in reverse-add order.

    CORS is added last so it is outermost and decorates 429 responses too.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        login_requests_per_window=settings.login_rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
