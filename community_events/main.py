"""FastAPI application setup and configuration."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from community_events.api import api_router
from community_events.config import get_settings
from community_events.database import init_database, close_database
from community_events.middleware import (
    ErrorHandlerMiddleware,
    LoggingMiddleware,
    RateLimiterMiddleware,
    register_exception_handlers,
)
from community_events.utils.logging_config import setup_logging

settings = get_settings()

setup_logging(
    log_level="DEBUG" if settings.debug else settings.log_level,
    log_file=settings.log_file,
    enable_json_logging=settings.enable_json_logging or settings.is_production,
    separate_error_log=settings.is_production
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Community Events API")
    await init_database()
    yield
    logger.info("Shutting down Community Events API")
    await close_database()


app = FastAPI(
    title="Community Events API",
    description="""
    ## Community Events API

    Backend for a community events platform: accounts, events, and attendee
    registration with capacity limits that hold under concurrent requests.

    ### Authentication

    Register or log in to obtain a JWT, then send it as
    `Authorization: Bearer <token>`.

    ### Errors

    Errors share one shape:

    ```json
    {
      "error": {
        "code": "EVENT_AT_CAPACITY",
        "message": "event at capacity",
        "details": {"event_id": "..."}
      },
      "error_id": "...",
      "timestamp": "..."
    }
    ```

    Registration requests that cannot complete in time return 503 with a
    `Retry-After` header.
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "authentication", "description": "Account registration, login and profile"},
        {"name": "users", "description": "User administration"},
        {"name": "events", "description": "Events and registration"},
        {"name": "attendees", "description": "Attendance status and check-in"},
        {"name": "health", "description": "Liveness endpoints"},
    ],
    lifespan=lifespan,
)

register_exception_handlers(app)

# Middleware added last runs first: CORS, logging, rate limiting, then error handling
app.add_middleware(ErrorHandlerMiddleware, debug=settings.debug)

if settings.rate_limit_enabled:
    app.add_middleware(
        RateLimiterMiddleware,
        default_limit=settings.rate_limit_default,
        default_window=settings.rate_limit_window
    )

app.add_middleware(LoggingMiddleware, log_requests=settings.enable_request_logging)

if settings.debug:
    # Credentials cannot be combined with wildcard origins
    cors_origins = ["*"]
    cors_allow_credentials = False
else:
    cors_origins = settings.cors_origins
    cors_allow_credentials = settings.cors_allow_credentials

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=settings.cors_expose_headers
)

app.include_router(api_router)


@app.get("/", tags=["health"])
async def root():
    return {
        "message": "Community Events API",
        "version": "1.0.0",
        "docs_url": "/docs",
        "status": "operational"
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness probe."""
    return {"status": "healthy", "service": "community-events-api"}
