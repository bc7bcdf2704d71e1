"""Request pipeline for the API process.

Outermost to innermost: CORS, request id, rate limit. Starlette wraps in
reverse-add order, so the stack is added innermost first; CORS headers then
land on 429s and error responses as well.
"""

from fastapi import FastAPI

from habitloop.config import Settings
from habitloop.middleware.cors import setup_cors
from habitloop.middleware.error_handler import setup_error_handlers
from habitloop.middleware.logging import setup_logging
from habitloop.middleware.rate_limit import RateLimitMiddleware
from habitloop.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    setup_logging(settings)
    setup_error_handlers(app)

    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
