"""
TokRelay API Key Authentication Module

Optional API-key protection for the fetch and download routers. When the
``API_KEYS`` setting is empty every request is allowed; otherwise the caller
must present one of the configured keys either in the ``X-API-Key`` header or
in the ``apikey`` query parameter.

Usage:
    ```python
    from fastapi import APIRouter, Depends
    from tokrelay.core.auth import require_api_key

    router = APIRouter(dependencies=[Depends(require_api_key)])
    ```
"""

import hmac
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, APIKeyQuery

from tokrelay.config import Settings, get_settings


logger = logging.getLogger(__name__)


API_KEY_HEADER_NAME: str = "X-API-Key"
API_KEY_QUERY_NAME: str = "apikey"

UNAUTHORIZED_MESSAGE: str = "Invalid or missing API key"

# auto_error=False so a missing key reaches require_api_key, which decides
# based on whether authentication is enabled at all
api_key_header = APIKeyHeader(name=API_KEY_HEADER_NAME, auto_error=False)
api_key_query = APIKeyQuery(name=API_KEY_QUERY_NAME, auto_error=False)


def is_valid_api_key(candidate: str | None, valid_keys: list[str]) -> bool:
    """Constant-time membership test of candidate against the configured keys."""
    if not candidate:
        return False
    return any(hmac.compare_digest(candidate, key) for key in valid_keys)


async def require_api_key(
    request: Request,
    header_key: str | None = Depends(api_key_header),
    query_key: str | None = Depends(api_key_query),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Reject the request with 401 unless it carries a configured API key.

    Args:
        request: Incoming request (used for logging only)
        header_key: Value of the X-API-Key header
        query_key: Value of the apikey query parameter
        settings: Application settings (injected via FastAPI dependency)

    Raises:
        HTTPException: With 401 status when auth is enabled and the key is
            missing or unknown
    """
    if not settings.is_auth_enabled:
        return

    if not is_valid_api_key(header_key or query_key, settings.api_key_list):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Unauthorized request from %s to %s", client_ip, request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=UNAUTHORIZED_MESSAGE,
        )
