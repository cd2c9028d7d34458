"""
TokRelay API v1 Router Aggregator.

This module combines the v1 endpoint routers into a single APIRouter for
registration with the main FastAPI application.

Router Structure:
    - /fetch: Video metadata extraction
    - /download: Media download via the streaming relay

Both routers require an API key when ``API_KEYS`` is configured.
"""

import logging

from fastapi import APIRouter, Depends

from tokrelay.api.v1.download import router as download_router
from tokrelay.api.v1.fetch import router as fetch_router
from tokrelay.core.auth import require_api_key


# Configure logger
logger = logging.getLogger(__name__)

# Create the main API v1 router
api_router = APIRouter(dependencies=[Depends(require_api_key)])

api_router.include_router(
    fetch_router,
    prefix="/fetch",
    tags=["fetch"],
)

api_router.include_router(
    download_router,
    prefix="/download",
    tags=["download"],
)

loaded_routers: list[str] = ["fetch", "download"]


# ==============================================================================
# Exports
# ==============================================================================

__all__ = ["api_router", "loaded_routers"]

logger.debug("API v1 routers loaded: %s", ", ".join(loaded_routers))
