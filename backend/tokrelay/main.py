"""
TokRelay API - FastAPI Application Entry Point.

This module initializes the FastAPI application that resolves TikTok video
URLs to metadata and relays the media bytes. It provides:

- Lifespan management building the fetch client, result cache (with its
  background sweeper), extraction backend, resolution service and relay
- Security headers, CORS and request logging middleware
- slowapi rate limiting with a JSON 429 body
- Exception handlers mapping service and upstream errors to JSON statuses
- Root, health and API documentation endpoints

API Structure:
    /api/v1/fetch     - Video metadata (alias /api/fetch)
    /api/v1/download  - Media download (alias /api/download)

Usage:
    # Run with uvicorn directly
    uvicorn tokrelay.main:app --host 0.0.0.0 --port 3000

    # Run the launcher script from backend/
    python main.py
"""

import logging
import time
import uuid

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from tokrelay import __app_name__, __version__
from tokrelay.api.dependencies import get_result_cache
from tokrelay.api.v1 import api_router
from tokrelay.config import get_settings
from tokrelay.core.http_client import (
    FetchError,
    FetchTimeoutError,
    HTTPFetchClient,
    UpstreamHTTPError,
)
from tokrelay.core.middleware import SecurityHeadersMiddleware
from tokrelay.core.rate_limit import limiter, rate_limit_exceeded_handler
from tokrelay.core.result_cache import ResultCache
from tokrelay.services.metadata_extractor import build_backend
from tokrelay.services.resolution_service import (
    ExtractionFailedError,
    InvalidURLError,
    InvalidVariantError,
    MetadataResolutionService,
    ResolutionServiceError,
    UpstreamFetchFailedError,
    URLBlockedError,
    VariantUnavailableError,
)
from tokrelay.services.streaming_relay import StreamingRelay
from tokrelay.utils.logger import add_log_context, setup_logging


# Configure module logger
logger = logging.getLogger(__name__)

# HTTP status code constants
HTTP_ERROR_THRESHOLD = 400  # Status codes >= 400 indicate errors

# Process start, reported as uptime by /health
STARTED_AT = time.monotonic()


# =============================================================================
# Error Messages
# =============================================================================

EXTRACTION_FAILED_MESSAGE = (
    "Unable to process TikTok URL. Please check if the video exists and is public."
)
TIMEOUT_MESSAGE = "Request timeout. TikTok server took too long to respond."
NETWORK_MESSAGE = "Service temporarily unavailable. Please try again later."
FORBIDDEN_MESSAGE = "Access denied by TikTok. This video may be private or region-locked."
NOT_FOUND_MESSAGE = "TikTok video not found. Please check the URL and try again."
INTERNAL_MESSAGE = "Internal server error"
PRODUCTION_INTERNAL_MESSAGE = "Something went wrong. Please try again later."


# =============================================================================
# Application Lifespan Management
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the shared services on startup and release them on shutdown.

    Startup:
        - Configure logging
        - Create the fetch client and the result cache (starting its sweeper)
        - Select the extraction backend from configuration
        - Store the resolution service and streaming relay on ``app.state``

    Shutdown:
        - Stop the cache sweeper
    """
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)

    logger.info("=" * 60)
    logger.info("%s API Starting...", settings.app_name)
    logger.info("=" * 60)
    logger.info("Environment: %s", settings.app_env)
    logger.info("Extraction backend: %s", settings.extraction_backend)
    logger.info("Cache TTL: %ss", settings.cache_ttl)
    logger.info("API key auth: %s", "enabled" if settings.is_auth_enabled else "disabled")
    logger.info("Rate limiting: %s", "enabled" if settings.rate_limit_enabled else "disabled")

    fetch_client = HTTPFetchClient(
        timeout=settings.fetch_timeout_seconds,
        stream_timeout=settings.stream_timeout_seconds,
        max_redirects=settings.fetch_max_redirects,
    )
    result_cache = ResultCache(ttl_seconds=settings.cache_ttl)
    result_cache.start()

    app.state.fetch_client = fetch_client
    app.state.result_cache = result_cache
    app.state.resolution_service = MetadataResolutionService(
        fetch_client=fetch_client,
        cache=result_cache,
        backend=build_backend(settings.extraction_backend, settings.api_base_url),
        fetch_timeout=settings.fetch_timeout_seconds,
        fetch_max_redirects=settings.fetch_max_redirects,
        redirect_max_redirects=settings.redirect_max_redirects,
    )
    app.state.streaming_relay = StreamingRelay(
        fetch_client,
        chunk_size=settings.stream_chunk_size,
        timeout=settings.stream_timeout_seconds,
    )

    logger.info("%s API Ready to Accept Requests", settings.app_name)

    yield

    logger.info("%s API Shutting Down...", settings.app_name)
    await result_cache.stop()
    logger.info("%s API Shutdown Complete", settings.app_name)


# =============================================================================
# FastAPI Application Instance
# =============================================================================

_settings = get_settings()

app = FastAPI(
    title=f"{__app_name__} API",
    description=(
        "Resolves TikTok video URLs to author, caption, thumbnail and media URLs, "
        "and relays the video (with or without watermark) or audio to the client."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=_settings.debug,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# =============================================================================
# Middleware Configuration
# =============================================================================

app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origin_list,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    expose_headers=["X-Request-ID", "X-Process-Time", "X-Download-Type", "Content-Disposition"],
    max_age=86400,
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next) -> Response:
    """
    Middleware for request logging and timing.

    Assigns a request id (reusing an incoming X-Request-ID), measures the
    handling time and logs method, path, status, duration and client IP.
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    client_ip = request.client.host if request.client else "unknown"
    log = add_log_context(logger, request_id=request_id, client_ip=client_ip)

    start_time = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception:
        log.exception("Request failed: %s %s", request.method, request.url.path)
        raise

    process_time_ms = round((time.perf_counter() - start_time) * 1000, 2)
    response.headers["X-Process-Time"] = f"{process_time_ms}ms"
    response.headers["X-Request-ID"] = request_id

    log_level = logging.INFO if response.status_code < HTTP_ERROR_THRESHOLD else logging.WARNING
    log.log(
        log_level,
        "%s %s %s %sms",
        request.method,
        request.url.path,
        response.status_code,
        process_time_ms,
        extra={"status_code": response.status_code, "duration_ms": process_time_ms},
    )

    return response


# =============================================================================
# API Router Registration
# =============================================================================

app.include_router(api_router, prefix="/api/v1")

# Unversioned aliases for older clients
app.include_router(api_router, prefix="/api", include_in_schema=False)


# =============================================================================
# Core Endpoints
# =============================================================================


@app.get("/", tags=["root"], summary="API Root")
async def root() -> dict[str, Any]:
    """Service status and the main endpoint templates."""
    return {
        "status": "ok",
        "service": f"{__app_name__} API",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "endpoints": {
            "fetch": "/api/v1/fetch?url=<tiktok_url>",
            "download": "/api/v1/download?type=<nowm|wm|audio>&url=<tiktok_url>",
        },
    }


@app.get("/health", tags=["health"], summary="Health Check")
async def health_check(cache: ResultCache = Depends(get_result_cache)) -> dict[str, Any]:
    """
    Health check endpoint for monitoring and load balancer integration.

    Returns:
        dict: status, timestamp, process uptime in seconds, version and the
            result cache counters (hits, misses, keys)
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "version": __version__,
        "cache": cache.stats().model_dump(),
    }


@app.get("/api", tags=["root"], summary="API documentation")
async def api_documentation() -> dict[str, Any]:
    """Machine-readable description of the public endpoints."""
    return {
        "name": f"{__app_name__} API",
        "version": __version__,
        "description": "API for downloading TikTok videos and audio",
        "endpoints": {
            "fetch": {
                "method": "GET",
                "path": "/api/v1/fetch",
                "description": "Extract metadata from TikTok video",
                "parameters": {
                    "url": {
                        "type": "string",
                        "required": True,
                        "description": "TikTok video URL",
                    }
                },
                "example": "/api/v1/fetch?url=https://www.tiktok.com/@username/video/1234567890",
            },
            "download": {
                "method": "GET",
                "path": "/api/v1/download",
                "description": "Download TikTok video or audio",
                "parameters": {
                    "url": {
                        "type": "string",
                        "required": True,
                        "description": "TikTok video URL",
                    },
                    "type": {
                        "type": "string",
                        "required": True,
                        "enum": ["nowm", "wm", "audio"],
                        "description": (
                            "Download type: nowm (no watermark), wm (with watermark), audio"
                        ),
                    },
                },
                "example": (
                    "/api/v1/download?type=nowm"
                    "&url=https://www.tiktok.com/@username/video/1234567890"
                ),
            },
        },
    }


# =============================================================================
# Exception Handlers
# =============================================================================


def error_response(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": True, "message": message},
        headers=headers,
    )


def fetch_error_response(exc: FetchError) -> JSONResponse:
    """Map an upstream failure to the status a client should see."""
    if isinstance(exc, FetchTimeoutError):
        return error_response(504, TIMEOUT_MESSAGE)
    if isinstance(exc, UpstreamHTTPError):
        if exc.status_code == 403:
            return error_response(403, FORBIDDEN_MESSAGE)
        if exc.status_code == 404:
            return error_response(404, NOT_FOUND_MESSAGE)
        return error_response(502, f"Upstream responded with HTTP {exc.status_code}")
    return error_response(503, NETWORK_MESSAGE)


@app.exception_handler(ResolutionServiceError)
async def resolution_error_handler(request: Request, exc: ResolutionServiceError) -> JSONResponse:
    """Translate resolution service errors into JSON error responses."""
    if isinstance(exc, (InvalidURLError, URLBlockedError, InvalidVariantError)):
        return error_response(400, str(exc))
    if isinstance(exc, VariantUnavailableError):
        return error_response(404, str(exc))
    if isinstance(exc, UpstreamFetchFailedError):
        logger.error("Upstream fetch failed on %s: %s", request.url.path, exc.cause)
        return fetch_error_response(exc.cause)
    if isinstance(exc, ExtractionFailedError):
        return error_response(422, EXTRACTION_FAILED_MESSAGE)

    logger.error("Unhandled resolution error on %s: %s", request.url.path, exc)
    return error_response(500, INTERNAL_MESSAGE)


@app.exception_handler(FetchError)
async def fetch_error_handler(request: Request, exc: FetchError) -> JSONResponse:
    """Failures opening the media stream, before any byte was sent."""
    logger.error("Media fetch failed on %s: %s", request.url.path, exc)
    return fetch_error_response(exc)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Render HTTP errors in the API's JSON error shape.

    Unknown routes produce ``Route <path> not found``.
    """
    if exc.status_code == 404 and exc.detail == "Not Found":
        message = f"Route {request.url.path} not found"
    else:
        message = str(exc.detail)
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return error_response(400, message)


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all 500 handler.

    Logs the error and hides internal details in production.
    """
    logger.error(
        "Internal server error on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    message = PRODUCTION_INTERNAL_MESSAGE if get_settings().is_production else INTERNAL_MESSAGE
    return error_response(500, message)
