"""
Media Download API Endpoints for TokRelay.

Endpoints:
- GET /        - Stream the requested variant (nowm, wm, audio) of a video
- GET /health  - Router liveness check

Everything that can fail before the first byte (validation, metadata
resolution, opening the CDN stream) is reported with a JSON error status.
Failures after streaming started only terminate the body.
"""

import logging

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse

from tokrelay.api.dependencies import get_resolution_service, get_streaming_relay
from tokrelay.core.rate_limit import api_limit, download_limit, limiter
from tokrelay.models.video import DownloadVariant
from tokrelay.services.resolution_service import (
    InvalidVariantError,
    MetadataResolutionService,
)
from tokrelay.services.streaming_relay import StreamingRelay
from tokrelay.utils.logger import add_log_context
from tokrelay.utils.url_validator import is_valid_download_type


# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter()


NO_CACHE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# =============================================================================
# API Endpoints
# =============================================================================


@router.get(
    "",
    response_class=StreamingResponse,
    summary="Download video or audio",
    description="Stream the unwatermarked video, watermarked video or audio of a TikTok video.",
    responses={
        200: {
            "description": "Media bytes",
            "content": {"video/mp4": {}, "audio/mpeg": {}},
        },
        400: {"description": "Missing or invalid url / type"},
        401: {"description": "Invalid or missing API key"},
        404: {"description": "Variant not available for this video"},
        422: {"description": "Metadata could not be extracted"},
        429: {"description": "Rate limit exceeded"},
    },
)
@limiter.shared_limit(api_limit, scope="api")
@limiter.limit(download_limit)
async def download_media(
    request: Request,
    url: str | None = Query(default=None, description="TikTok video URL"),
    download_type: str | None = Query(
        default=None,
        alias="type",
        description="Download type: nowm (no watermark), wm (with watermark), audio",
    ),
    service: MetadataResolutionService = Depends(get_resolution_service),
    relay: StreamingRelay = Depends(get_streaming_relay),
) -> StreamingResponse:
    """
    Stream one variant of a TikTok video to the client.

    Args:
        request: Incoming request (rate limiter, disconnect detection)
        url: TikTok video page URL
        download_type: Transport tag nowm, wm or audio
        service: Resolution service from the application lifespan
        relay: Streaming relay from the application lifespan

    Returns:
        StreamingResponse: Media bytes with attachment headers

    Raises:
        HTTPException: 400 if url or type is missing
        InvalidVariantError: If type is not a supported transport tag
    """
    if not url:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="URL parameter is required",
        )
    if not download_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Type parameter is required",
        )
    if not is_valid_download_type(download_type):
        raise InvalidVariantError(download_type)

    log = add_log_context(logger, request_id=getattr(request.state, "request_id", None))
    log.info("download request", extra={"url": url, "type": download_type})

    variant = DownloadVariant.from_transport_tag(download_type)
    plan = await service.prepare_download(url, variant)
    stream = await relay.open(plan.target_url)

    headers = {
        "Content-Disposition": f'attachment; filename="{plan.filename}"',
        "X-Download-Type": plan.transport_tag,
        **NO_CACHE_HEADERS,
    }
    upstream_length = stream.headers.get("content-length")
    if upstream_length and not stream.headers.get("content-encoding"):
        headers["Content-Length"] = upstream_length

    log.info(
        "streaming started",
        extra={"type": plan.transport_tag, "username": plan.metadata.username},
    )
    return StreamingResponse(
        relay.relay(stream, request.is_disconnected),
        media_type=plan.content_type,
        headers=headers,
    )


@router.get("/health", summary="Download router health")
async def download_health() -> dict[str, Any]:
    return {
        "status": "ok",
        "service": "download",
        "timestamp": datetime.now(UTC).isoformat(),
    }
