"""
Pytest Configuration and Test Fixtures for the TokRelay Backend

This module provides the shared fixtures:
- Test Settings instance with rate limiting disabled
- Sample TikTok item payloads and page HTML builders (SIGI_STATE,
  universal rehydration data, meta tags)
- A controllable clock for cache expiry tests
- An httpx.MockTransport-backed fetch client that records every request
- A FastAPI TestClient wired to real services over the mock transport
"""

import json

from collections.abc import Callable, Generator
from typing import Any

import httpx
import pytest

from fastapi.testclient import TestClient

from tokrelay.api.dependencies import (
    get_resolution_service,
    get_result_cache,
    get_streaming_relay,
)
from tokrelay.config import Settings, get_settings
from tokrelay.core.http_client import HTTPFetchClient
from tokrelay.core.rate_limit import limiter
from tokrelay.core.result_cache import ResultCache
from tokrelay.main import app
from tokrelay.services.metadata_extractor import PageMetadataBackend
from tokrelay.services.resolution_service import MetadataResolutionService
from tokrelay.services.streaming_relay import StreamingRelay


# ==============================================================================
# Constants
# ==============================================================================

VALID_URL = "https://www.tiktok.com/@testcreator/video/9999999999"
NOWM_URL = "https://v16.tiktokcdn.com/video_nowm.mp4"
COVER_URL = "https://p16.tiktokcdn.com/cover.jpg"
MUSIC_URL = "https://sf16.tiktokcdn.com/music.mp3"


# ==============================================================================
# Pytest Configuration
# ==============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings with test-specific values.

    Rate limiting is disabled and no API keys are configured.
    """
    return Settings(
        app_env="testing",
        app_name="TokRelay-Test",
        rate_limit_enabled=False,
        api_keys="",
        cache_ttl=300,
    )


# ==============================================================================
# Payload Builders
# ==============================================================================


def build_item(
    video_id: str = "9999999999",
    username: str | None = "testcreator",
    caption: str = "Test video caption",
    download_addr: str | None = NOWM_URL,
    cover: str | None = COVER_URL,
    music: str | None = MUSIC_URL,
) -> dict[str, Any]:
    """A TikTok item object as embedded in the page state blobs."""
    video: dict[str, Any] = {}
    if download_addr:
        video["downloadAddr"] = download_addr
    if cover:
        video["cover"] = cover
    item: dict[str, Any] = {
        "id": video_id,
        "desc": caption,
        "author": {"uniqueId": username, "id": "uid99"} if username else {},
        "video": video,
    }
    if music:
        item["music"] = {"playUrl": music}
    return item


def sigi_html(item: dict[str, Any]) -> str:
    state = {"ItemModule": {item.get("id", "0"): item}}
    return f'<html><head><script>window["SIGI_STATE"]={json.dumps(state)};</script></head></html>'


def universal_html(item: dict[str, Any], status_code: int = 0) -> str:
    data = {
        "__DEFAULT_SCOPE__": {
            "webapp.video-detail": {
                "statusCode": status_code,
                "itemInfo": {"itemStruct": item},
            }
        }
    }
    return (
        '<html><body><script id="__UNIVERSAL_DATA_FOR_REHYDRATION__" '
        f'type="application/json">{json.dumps(data)}</script></body></html>'
    )


def meta_only_html(username: str = "catdancer") -> str:
    return (
        "<html><head>"
        f'<meta name="twitter:title" content="{username} on TikTok">'
        '<meta property="og:description" content="  dancing cat  ">'
        f'<meta property="og:image" content="{COVER_URL}">'
        "</head><body></body></html>"
    )


@pytest.fixture
def sample_item() -> dict[str, Any]:
    """Default item: testcreator / 9999999999 with all media URLs."""
    return build_item()


# ==============================================================================
# Clock
# ==============================================================================


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ==============================================================================
# Upstream HTTP
# ==============================================================================


class RecordingHandler:
    """
    httpx.MockTransport handler that records requests and answers through a
    replaceable responder function.
    """

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self.responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def page_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host.endswith("tiktok.com")]


def default_responder(page_html: str) -> Callable[[httpx.Request], httpx.Response]:
    """Serve page_html for tiktok.com and fixed bytes for every CDN URL."""

    def respond(request: httpx.Request) -> httpx.Response:
        if request.url.host.endswith("tiktok.com"):
            return httpx.Response(200, text=page_html, headers={"content-type": "text/html"})
        if request.url.path.endswith(".mp3"):
            return httpx.Response(200, content=b"ID3-audio-bytes")
        return httpx.Response(200, content=b"video-bytes-" * 10)

    return respond


@pytest.fixture
def upstream(sample_item: dict[str, Any]) -> RecordingHandler:
    """Mock upstream serving a SIGI_STATE page for the sample item."""
    return RecordingHandler(default_responder(sigi_html(sample_item)))


@pytest.fixture
def fetch_client(upstream: RecordingHandler) -> HTTPFetchClient:
    return HTTPFetchClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def result_cache(fake_clock: FakeClock) -> ResultCache:
    return ResultCache(ttl_seconds=300, clock=fake_clock)


@pytest.fixture
def resolution_service(
    fetch_client: HTTPFetchClient, result_cache: ResultCache
) -> MetadataResolutionService:
    return MetadataResolutionService(
        fetch_client=fetch_client,
        cache=result_cache,
        backend=PageMetadataBackend(),
    )


@pytest.fixture
def streaming_relay(fetch_client: HTTPFetchClient) -> StreamingRelay:
    return StreamingRelay(fetch_client, chunk_size=16)


# ==============================================================================
# FastAPI Test Client
# ==============================================================================


@pytest.fixture
def test_client(
    test_settings: Settings,
    resolution_service: MetadataResolutionService,
    streaming_relay: StreamingRelay,
    result_cache: ResultCache,
) -> Generator[TestClient, None, None]:
    """
    TestClient with the lifespan services replaced by test instances.

    The lifespan is not run; dependency overrides provide the services and
    settings. Rate limiting is switched off for the duration of the test.
    """
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_resolution_service] = lambda: resolution_service
    app.dependency_overrides[get_streaming_relay] = lambda: streaming_relay
    app.dependency_overrides[get_result_cache] = lambda: result_cache

    previous_enabled = limiter.enabled
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        limiter.enabled = previous_enabled
        app.dependency_overrides.clear()
