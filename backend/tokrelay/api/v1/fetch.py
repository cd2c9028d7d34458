"""
Video Metadata API Endpoints for TokRelay.

Endpoints:
- GET /        - Resolve a TikTok video URL to its metadata
- GET /health  - Router liveness check

The metadata endpoint is rate limited twice: by the shared ``api`` limit and
by the stricter per-client fetch limit.
"""

import logging

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from tokrelay.api.dependencies import get_resolution_service
from tokrelay.core.rate_limit import api_limit, fetch_limit, limiter
from tokrelay.models.video import MetadataResponse
from tokrelay.services.resolution_service import MetadataResolutionService
from tokrelay.utils.logger import add_log_context


# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# API Endpoints
# =============================================================================


@router.get(
    "",
    response_model=MetadataResponse,
    summary="Fetch video metadata",
    description="Extract author, caption, thumbnail and media URLs from a TikTok video URL.",
    responses={
        200: {"description": "Metadata extracted"},
        400: {"description": "Missing, invalid or blocked URL"},
        401: {"description": "Invalid or missing API key"},
        422: {"description": "Metadata could not be extracted"},
        429: {"description": "Rate limit exceeded"},
        503: {"description": "Upstream unreachable"},
        504: {"description": "Upstream timeout"},
    },
)
@limiter.shared_limit(api_limit, scope="api")
@limiter.limit(fetch_limit)
async def fetch_video_metadata(
    request: Request,
    url: str | None = Query(default=None, description="TikTok video URL"),
    service: MetadataResolutionService = Depends(get_resolution_service),
) -> MetadataResponse:
    """
    Resolve a TikTok video URL to its metadata.

    Args:
        request: Incoming request (required by the rate limiter)
        url: TikTok video page URL
        service: Resolution service from the application lifespan

    Returns:
        MetadataResponse: username, caption, thumbnail and media URLs

    Raises:
        HTTPException: 400 if the url parameter is missing
    """
    if not url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="URL parameter is required",
        )

    log = add_log_context(logger, request_id=getattr(request.state, "request_id", None))
    log.info("fetch request", extra={"url": url})

    metadata = await service.fetch_metadata(url)

    log.info("fetch success", extra={"username": metadata.username})
    return MetadataResponse.from_metadata(metadata)


@router.get("/health", summary="Fetch router health")
async def fetch_health() -> dict[str, Any]:
    return {
        "status": "ok",
        "service": "fetch",
        "timestamp": datetime.now(UTC).isoformat(),
    }
