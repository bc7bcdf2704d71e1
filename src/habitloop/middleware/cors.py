"""CORS for the app's web and mobile clients."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from habitloop.config import Settings

# Reads plus the POST endpoints (vote, check-in, purchases, checks).
_METHODS = ["GET", "POST", "OPTIONS"]
_REQUEST_HEADERS = ["Content-Type", "X-User-Id", "X-Request-Id"]
_RESPONSE_HEADERS = ["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"]


def setup_cors(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=_METHODS,
        allow_headers=_REQUEST_HEADERS,
        expose_headers=_RESPONSE_HEADERS,
    )
