"""
FastAPI dependencies exposing the services built in the application lifespan.

The lifespan stores one instance of each service on ``app.state``; routers
receive them through these functions so tests can swap them with
``app.dependency_overrides``.
"""

from fastapi import Request

from tokrelay.core.result_cache import ResultCache
from tokrelay.services.resolution_service import MetadataResolutionService
from tokrelay.services.streaming_relay import StreamingRelay


def get_resolution_service(request: Request) -> MetadataResolutionService:
    return request.app.state.resolution_service


def get_streaming_relay(request: Request) -> StreamingRelay:
    return request.app.state.streaming_relay


def get_result_cache(request: Request) -> ResultCache:
    return request.app.state.result_cache
