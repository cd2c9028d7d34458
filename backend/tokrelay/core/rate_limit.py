"""
TokRelay Rate Limiting Module

Per-client request ceilings built on slowapi, keyed by the remote address:

- a shared ``api`` limit across every fetch and download route
  (``API_RATE_LIMIT`` per minute)
- a stricter fetch limit (``FETCH_RATE_LIMIT`` per minute)
- a stricter download limit (``DOWNLOAD_RATE_LIMIT`` per minute)

``/``, ``/health`` and ``/api`` carry no limit. Limit strings are callables
so they follow the current settings. Exceeding a limit yields a 429 JSON body
``{"error": true, "message": ..., "retryAfter": <seconds>}``.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from tokrelay.config import get_settings


logger = logging.getLogger(__name__)


DEFAULT_RETRY_AFTER_SECONDS: int = 60


def api_limit() -> str:
    return f"{get_settings().api_rate_limit}/minute"


def fetch_limit() -> str:
    return f"{get_settings().fetch_rate_limit}/minute"


def download_limit() -> str:
    return f"{get_settings().download_rate_limit}/minute"


limiter = Limiter(
    key_func=get_remote_address,
    enabled=get_settings().rate_limit_enabled,
)


def _retry_after(exc: RateLimitExceeded) -> int:
    limit = getattr(exc, "limit", None)
    item = getattr(limit, "limit", None)
    if item is not None:
        return int(item.get_expiry())
    return DEFAULT_RETRY_AFTER_SECONDS


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Answer 429 with the JSON error shape used across the API."""
    retry_after = _retry_after(exc)
    client_ip = request.client.host if request.client else "unknown"
    logger.warning(
        "Rate limit exceeded for %s on %s: %s", client_ip, request.url.path, exc.detail
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": True,
            "message": f"Rate limit exceeded. Maximum {exc.detail} allowed.",
            "retryAfter": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


__all__ = [
    "limiter",
    "api_limit",
    "fetch_limit",
    "download_limit",
    "rate_limit_exceeded_handler",
]
