"""
TokRelay Metadata Resolution Service Test Suite

Runs the service against an httpx.MockTransport upstream and a result
cache driven by a fake clock.
"""

import json

from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import (
    MUSIC_URL,
    NOWM_URL,
    VALID_URL,
    FakeClock,
    RecordingHandler,
    build_item,
    default_responder,
    meta_only_html,
    sigi_html,
)
from tokrelay.core.http_client import (
    FetchResponse,
    FetchTimeoutError,
    HTTPFetchClient,
    NetworkError,
    UpstreamHTTPError,
)
from tokrelay.core.result_cache import ResultCache
from tokrelay.models.video import DownloadVariant, VideoMetadata
from tokrelay.services.metadata_extractor import ApiMetadataBackend
from tokrelay.services.resolution_service import (
    ExtractionFailedError,
    InvalidURLError,
    InvalidVariantError,
    MetadataResolutionService,
    UpstreamFetchFailedError,
    URLBlockedError,
    VariantUnavailableError,
)


class TestFetchMetadata:
    """URL validation, fetch, extraction and caching."""

    @pytest.mark.asyncio
    async def test_resolves_page_metadata(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        metadata = await resolution_service.fetch_metadata(VALID_URL)

        assert metadata.username == "testcreator"
        assert metadata.video_id == "9999999999"
        assert metadata.no_watermark_url == NOWM_URL
        assert len(upstream.page_requests) == 1

    @pytest.mark.asyncio
    async def test_tracking_parameters_are_stripped_before_fetch(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        await resolution_service.fetch_metadata(f"{VALID_URL}?_r=1&checksum=abc&lang=en")

        assert str(upstream.requests[0].url) == f"{VALID_URL}?lang=en"

    @pytest.mark.asyncio
    async def test_second_lookup_is_served_from_cache(
        self,
        resolution_service: MetadataResolutionService,
        upstream: RecordingHandler,
        result_cache: ResultCache,
    ) -> None:
        first = await resolution_service.fetch_metadata(VALID_URL)
        second = await resolution_service.fetch_metadata(f"{VALID_URL}?is_copy_url=1")

        assert first == second
        assert len(upstream.page_requests) == 1
        assert result_cache.stats().hits == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(
        self,
        resolution_service: MetadataResolutionService,
        upstream: RecordingHandler,
        fake_clock: FakeClock,
    ) -> None:
        await resolution_service.fetch_metadata(VALID_URL)
        fake_clock.advance(301)
        await resolution_service.fetch_metadata(VALID_URL)

        assert len(upstream.page_requests) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "url",
        ["not-a-url", "https://www.youtube.com/watch?v=1", "https://www.tiktok.com/@user", ""],
    )
    async def test_invalid_url_never_reaches_upstream(
        self,
        resolution_service: MetadataResolutionService,
        upstream: RecordingHandler,
        url: str,
    ) -> None:
        with pytest.raises(InvalidURLError, match="Invalid or unsupported TikTok URL"):
            await resolution_service.fetch_metadata(url)

        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_blocked_url_never_reaches_upstream(
        self,
        resolution_service: MetadataResolutionService,
        upstream: RecordingHandler,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(
            "tokrelay.services.resolution_service.is_egress_safe", lambda url: False
        )

        with pytest.raises(URLBlockedError, match="URL not allowed for security reasons"):
            await resolution_service.fetch_metadata(VALID_URL)

        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_upstream_status_is_wrapped(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        upstream.responder = lambda request: httpx.Response(403)

        with pytest.raises(UpstreamFetchFailedError) as exc_info:
            await resolution_service.fetch_metadata(VALID_URL)

        assert isinstance(exc_info.value.cause, UpstreamHTTPError)
        assert exc_info.value.cause.status_code == 403
        assert str(exc_info.value) == "Failed to fetch TikTok metadata: HTTP 403"

    @pytest.mark.asyncio
    async def test_timeout_is_wrapped(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        upstream.responder = timeout

        with pytest.raises(UpstreamFetchFailedError) as exc_info:
            await resolution_service.fetch_metadata(VALID_URL)

        assert isinstance(exc_info.value.cause, FetchTimeoutError)

    @pytest.mark.asyncio
    async def test_network_failure_is_wrapped(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        def refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        upstream.responder = refused

        with pytest.raises(UpstreamFetchFailedError) as exc_info:
            await resolution_service.fetch_metadata(VALID_URL)

        assert isinstance(exc_info.value.cause, NetworkError)

    @pytest.mark.asyncio
    async def test_unusable_record_raises_and_is_not_cached(
        self,
        resolution_service: MetadataResolutionService,
        upstream: RecordingHandler,
        result_cache: ResultCache,
    ) -> None:
        upstream.responder = default_responder(meta_only_html())

        with pytest.raises(ExtractionFailedError, match="Failed to extract video metadata") as exc_info:
            await resolution_service.fetch_metadata(VALID_URL)

        assert [o.name for o in exc_info.value.outcomes][-1] == "meta_tags"
        assert len(result_cache) == 0


class TestVariants:
    """Variant parsing and URL selection."""

    @pytest.fixture
    def metadata(self) -> VideoMetadata:
        return VideoMetadata(
            username="u",
            video_id="1",
            no_watermark_url=NOWM_URL,
            audio_url=MUSIC_URL,
        )

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("nowm", DownloadVariant.NO_WM),
            ("no_wm", DownloadVariant.NO_WM),
            ("wm", DownloadVariant.WM),
            ("audio", DownloadVariant.AUDIO),
            (DownloadVariant.AUDIO, DownloadVariant.AUDIO),
        ],
    )
    def test_parse_variant(self, value: str, expected: DownloadVariant) -> None:
        assert MetadataResolutionService.parse_variant(value) is expected

    @pytest.mark.parametrize("value", ["gif", "", "NOWM"])
    def test_parse_unknown_variant(self, value: str) -> None:
        with pytest.raises(InvalidVariantError, match="Supported types: nowm, wm, audio"):
            MetadataResolutionService.parse_variant(value)

    def test_no_watermark_url(
        self, resolution_service: MetadataResolutionService, metadata: VideoMetadata
    ) -> None:
        assert resolution_service.resolve_variant_url("nowm", metadata) == NOWM_URL

    def test_watermark_falls_back_to_no_watermark(
        self, resolution_service: MetadataResolutionService, metadata: VideoMetadata
    ) -> None:
        assert resolution_service.resolve_variant_url(DownloadVariant.WM, metadata) == NOWM_URL

    def test_watermark_url_preferred_when_present(
        self, resolution_service: MetadataResolutionService
    ) -> None:
        metadata = VideoMetadata(
            username="u",
            video_id="1",
            no_watermark_url=NOWM_URL,
            watermark_url="https://v16.tiktokcdn.com/wm.mp4",
        )

        assert (
            resolution_service.resolve_variant_url("wm", metadata)
            == "https://v16.tiktokcdn.com/wm.mp4"
        )

    def test_missing_audio_is_none(self, resolution_service: MetadataResolutionService) -> None:
        metadata = VideoMetadata(username="u", video_id="1", no_watermark_url=NOWM_URL)

        assert resolution_service.resolve_variant_url("audio", metadata) is None

    def test_unknown_variant_raises(
        self, resolution_service: MetadataResolutionService, metadata: VideoMetadata
    ) -> None:
        with pytest.raises(InvalidVariantError):
            resolution_service.resolve_variant_url("gif", metadata)


class TestRedirectResolution:
    """Following CDN redirects."""

    @pytest.mark.asyncio
    async def test_returns_final_location(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if request.url.host == "short.example.com":
                return httpx.Response(302, headers={"Location": "https://cdn.example.com/final.mp4"})
            return httpx.Response(200, content=b"bytes")

        upstream.responder = respond

        target = await resolution_service.resolve_redirect_target("https://short.example.com/v")

        assert target == "https://cdn.example.com/final.mp4"

    @pytest.mark.asyncio
    async def test_failure_returns_input(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        upstream.responder = lambda request: httpx.Response(500)

        target = await resolution_service.resolve_redirect_target(NOWM_URL)

        assert target == NOWM_URL

    @pytest.mark.asyncio
    async def test_network_failure_returns_input(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        def refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        upstream.responder = refused

        assert await resolution_service.resolve_redirect_target(NOWM_URL) == NOWM_URL


class TestDownloadNaming:
    """Filenames and content types."""

    def test_filename_layout(self, resolution_service: MetadataResolutionService) -> None:
        metadata = VideoMetadata(username="catdancer", video_id="777")

        filename = resolution_service.derive_filename(
            metadata, DownloadVariant.NO_WM, timestamp_ms=1700000000000
        )

        assert filename == "catdancer_777_nowm_1700000000000.mp4"

    def test_audio_filename_uses_mp3(self, resolution_service: MetadataResolutionService) -> None:
        metadata = VideoMetadata(username="catdancer", video_id="777")

        filename = resolution_service.derive_filename(metadata, "audio", timestamp_ms=1)

        assert filename == "catdancer_777_audio_1.mp3"

    def test_username_is_sanitized(self, resolution_service: MetadataResolutionService) -> None:
        metadata = VideoMetadata(username='we.ird/na"me ü', video_id="1")

        filename = resolution_service.derive_filename(metadata, DownloadVariant.WM, timestamp_ms=5)

        assert filename == "we_ird_na_me___1_wm_5.mp4"

    def test_missing_fields_use_defaults(
        self, resolution_service: MetadataResolutionService
    ) -> None:
        filename = resolution_service.derive_filename(
            VideoMetadata(), DownloadVariant.NO_WM, timestamp_ms=9
        )

        assert filename == "unknown_video_nowm_9.mp4"

    def test_timestamp_defaults_to_now(
        self, resolution_service: MetadataResolutionService
    ) -> None:
        filename = resolution_service.derive_filename(
            VideoMetadata(username="u", video_id="1"), DownloadVariant.NO_WM
        )

        stamp = filename.removesuffix(".mp4").rsplit("_", 1)[1]
        assert stamp.isdigit()
        assert len(stamp) >= 13

    @pytest.mark.parametrize(
        ("variant", "expected"),
        [
            (DownloadVariant.NO_WM, "video/mp4"),
            (DownloadVariant.WM, "video/mp4"),
            (DownloadVariant.AUDIO, "audio/mpeg"),
        ],
    )
    def test_content_type(
        self,
        resolution_service: MetadataResolutionService,
        variant: DownloadVariant,
        expected: str,
    ) -> None:
        assert resolution_service.content_type_for(variant) == expected


class TestPrepareDownload:
    """End-to-end download preparation."""

    @pytest.mark.asyncio
    async def test_plan_for_no_watermark_video(
        self, resolution_service: MetadataResolutionService
    ) -> None:
        plan = await resolution_service.prepare_download(VALID_URL, "nowm")

        assert plan.variant is DownloadVariant.NO_WM
        assert plan.source_url == NOWM_URL
        assert plan.target_url == NOWM_URL
        assert plan.content_type == "video/mp4"
        assert plan.filename.startswith("testcreator_9999999999_nowm_")
        assert plan.transport_tag == "nowm"

    @pytest.mark.asyncio
    async def test_unavailable_audio(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        upstream.responder = default_responder(sigi_html(build_item(music=None)))

        with pytest.raises(VariantUnavailableError, match="audio download not available"):
            await resolution_service.prepare_download(VALID_URL, DownloadVariant.AUDIO)

    @pytest.mark.asyncio
    async def test_invalid_variant_checked_before_fetch(
        self, resolution_service: MetadataResolutionService, upstream: RecordingHandler
    ) -> None:
        with pytest.raises(InvalidVariantError):
            await resolution_service.prepare_download(VALID_URL, "gif")

        assert upstream.requests == []


class TestBackendRequests:
    """Requests built by the configured backend reach the fetch client."""

    @pytest.mark.asyncio
    async def test_api_backend_request_is_forwarded(self, result_cache: ResultCache) -> None:
        fetch_client = AsyncMock(spec=HTTPFetchClient)
        fetch_client.get.return_value = FetchResponse(
            status_code=200,
            url="https://api.example.com/",
            request_url="https://api.example.com/",
            text=json.dumps(
                {
                    "code": 0,
                    "data": {"id": "42", "play": NOWM_URL, "author": {"unique_id": "apiuser"}},
                }
            ),
        )
        service = MetadataResolutionService(
            fetch_client=fetch_client,
            cache=result_cache,
            backend=ApiMetadataBackend("https://api.example.com/"),
            fetch_timeout=12,
            fetch_max_redirects=3,
        )

        metadata = await service.fetch_metadata(VALID_URL)

        assert metadata.username == "apiuser"
        fetch_client.get.assert_awaited_once_with(
            "https://api.example.com/",
            params={"url": VALID_URL},
            headers={"Accept": "application/json"},
            timeout=12,
            max_redirects=3,
        )
