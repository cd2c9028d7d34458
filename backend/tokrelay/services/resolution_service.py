"""
Metadata Resolution Service Module for TokRelay

Orchestrates the core pipeline behind both API endpoints:

    URL validation -> egress check -> normalization -> cache lookup
        -> upstream fetch -> extraction -> usability check -> cache write

and, for downloads, the follow-up steps:

    variant parsing -> variant URL lookup -> redirect resolution
        -> filename / content type derivation

Validation always runs before any network access, so a rejected URL never
reaches the fetch client. Upstream fetch failures are wrapped in
UpstreamFetchFailedError carrying the typed FetchError cause so the HTTP layer
can map timeouts, upstream statuses and network failures separately.

Concurrent misses for the same key may both go upstream; the last writer
replaces the cache entry.
"""

import logging
import time

from tokrelay.core.http_client import FetchError, HTTPFetchClient
from tokrelay.core.result_cache import ResultCache, cache_key_for
from tokrelay.models.video import (
    AUDIO_CONTENT_TYPE,
    VIDEO_CONTENT_TYPE,
    DownloadPlan,
    DownloadVariant,
    VideoMetadata,
)
from tokrelay.services.metadata_extractor import MetadataBackend, StrategyOutcome
from tokrelay.utils.url_validator import (
    is_acceptable_source_url,
    is_egress_safe,
    normalize_url,
)


logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_FETCH_TIMEOUT_SECONDS: float = 30.0
DEFAULT_FETCH_MAX_REDIRECTS: int = 5
DEFAULT_REDIRECT_MAX_REDIRECTS: int = 10

UNKNOWN_USERNAME: str = "unknown"
UNKNOWN_VIDEO_ID: str = "video"

VIDEO_EXTENSION: str = ".mp4"
AUDIO_EXTENSION: str = ".mp3"

SUPPORTED_TYPES_MESSAGE: str = "Supported types: nowm, wm, audio"


# =============================================================================
# EXCEPTIONS
# =============================================================================


class ResolutionServiceError(Exception):
    """Base exception for resolution service errors."""


class InvalidURLError(ResolutionServiceError):
    """Raised when the URL is not a supported TikTok video page."""

    def __init__(self, message: str = "Invalid or unsupported TikTok URL") -> None:
        super().__init__(message)


class URLBlockedError(ResolutionServiceError):
    """Raised when the URL targets an internal or non-HTTP address."""

    def __init__(self, message: str = "URL not allowed for security reasons") -> None:
        super().__init__(message)


class UpstreamFetchFailedError(ResolutionServiceError):
    """Raised when fetching the page or companion API failed."""

    def __init__(self, cause: FetchError) -> None:
        super().__init__(f"Failed to fetch TikTok metadata: {cause}")
        self.cause = cause


class ExtractionFailedError(ResolutionServiceError):
    """Raised when no strategy produced a username and video id."""

    def __init__(self, outcomes: list[StrategyOutcome] | None = None) -> None:
        super().__init__("Failed to extract video metadata")
        self.outcomes = outcomes or []


class InvalidVariantError(ResolutionServiceError):
    """Raised for a download type that names no variant."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid download type. {SUPPORTED_TYPES_MESSAGE}")
        self.value = value


class VariantUnavailableError(ResolutionServiceError):
    """Raised when the requested variant has no URL for this video."""

    def __init__(self, variant: DownloadVariant) -> None:
        super().__init__(f"{variant.transport_tag} download not available for this video")
        self.variant = variant


# =============================================================================
# SERVICE
# =============================================================================


class MetadataResolutionService:
    """
    Resolves video page URLs to metadata and prepares media downloads.

    Attributes:
        fetch_client: Outbound HTTP client
        cache: Result cache keyed by normalized host + path
        backend: Metadata extraction back-end
    """

    def __init__(
        self,
        fetch_client: HTTPFetchClient,
        cache: ResultCache,
        backend: MetadataBackend,
        fetch_timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        fetch_max_redirects: int = DEFAULT_FETCH_MAX_REDIRECTS,
        redirect_max_redirects: int = DEFAULT_REDIRECT_MAX_REDIRECTS,
    ) -> None:
        self.fetch_client = fetch_client
        self.cache = cache
        self.backend = backend
        self.fetch_timeout = fetch_timeout
        self.fetch_max_redirects = fetch_max_redirects
        self.redirect_max_redirects = redirect_max_redirects

    # =========================================================================
    # Metadata
    # =========================================================================

    async def fetch_metadata(self, url: str) -> VideoMetadata:
        """
        Resolve a video page URL to a usable metadata record.

        Args:
            url: Page URL supplied by the client

        Returns:
            VideoMetadata with username and video_id set

        Raises:
            InvalidURLError: URL is not a supported video page
            URLBlockedError: URL targets an internal address or non-HTTP scheme
            UpstreamFetchFailedError: The upstream fetch failed
            ExtractionFailedError: No usable record could be extracted
        """
        if not is_acceptable_source_url(url):
            raise InvalidURLError()

        if not is_egress_safe(url):
            logger.warning("Blocked outbound URL: %s", url)
            raise URLBlockedError()

        normalized = normalize_url(url)
        cache_key = cache_key_for(normalized)

        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit", extra={"cache_key": cache_key})
            return cached

        request = self.backend.build_request(normalized)
        try:
            response = await self.fetch_client.get(
                request.url,
                params=request.params,
                headers=request.headers or None,
                timeout=self.fetch_timeout,
                max_redirects=self.fetch_max_redirects,
            )
        except FetchError as e:
            raise UpstreamFetchFailedError(e) from e

        result = self.backend.extract(response.text)
        if not result.metadata.is_usable:
            logger.warning(
                "Metadata extraction failed for %s: %s",
                normalized,
                result.describe_outcomes(),
            )
            raise ExtractionFailedError(result.outcomes)

        self.cache.set(cache_key, result.metadata)
        logger.info(
            "Resolved metadata via %s/%s",
            self.backend.name,
            result.strategy,
            extra={"cache_key": cache_key, "video_id": result.metadata.video_id},
        )
        return result.metadata

    # =========================================================================
    # Variants
    # =========================================================================

    @staticmethod
    def parse_variant(variant: DownloadVariant | str) -> DownloadVariant:
        try:
            return DownloadVariant.parse(variant)
        except ValueError as e:
            raise InvalidVariantError(variant) from e

    def resolve_variant_url(
        self, variant: DownloadVariant | str, metadata: VideoMetadata
    ) -> str | None:
        """
        Pick the media URL for a variant.

        ``wm`` falls back to the unwatermarked URL when no watermarked one is
        known. None means the variant is unavailable for this video.

        Raises:
            InvalidVariantError: variant names no known variant
        """
        parsed = self.parse_variant(variant)
        if parsed is DownloadVariant.NO_WM:
            chosen = metadata.no_watermark_url
        elif parsed is DownloadVariant.WM:
            chosen = metadata.watermark_url or metadata.no_watermark_url
        else:
            chosen = metadata.audio_url
        return chosen or None

    async def resolve_redirect_target(self, url: str) -> str:
        """
        Follow redirects to the final CDN address without reading the body.

        Any failure returns the input unchanged.
        """
        try:
            response = await self.fetch_client.get(
                url,
                max_redirects=self.redirect_max_redirects,
                accept_status=lambda status: 200 <= status < 400,
                read_body=False,
            )
        except FetchError as e:
            logger.debug("Redirect resolution failed for %s: %s", url, e)
            return url
        return response.url or response.request_url or url

    # =========================================================================
    # Download naming
    # =========================================================================

    @staticmethod
    def _tag_for(variant: DownloadVariant | str) -> str:
        if isinstance(variant, DownloadVariant):
            return variant.transport_tag
        return str(variant)

    @staticmethod
    def _is_audio(variant: DownloadVariant | str) -> bool:
        if isinstance(variant, DownloadVariant):
            return variant.is_audio
        return variant == DownloadVariant.AUDIO.value

    def derive_filename(
        self,
        metadata: VideoMetadata,
        variant: DownloadVariant | str,
        timestamp_ms: int | None = None,
    ) -> str:
        """
        Build ``<username>_<videoId>_<tag>_<unixMillis><ext>``.

        Characters outside ``[A-Za-z0-9_-]`` in the username become ``_``.
        Missing username and video id default to ``unknown`` and ``video``.
        """
        username = metadata.username or UNKNOWN_USERNAME
        safe_username = "".join(
            char if (char.isascii() and char.isalnum()) or char in "_-" else "_"
            for char in username
        )
        video_id = metadata.video_id or UNKNOWN_VIDEO_ID
        extension = AUDIO_EXTENSION if self._is_audio(variant) else VIDEO_EXTENSION
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        return f"{safe_username}_{video_id}_{self._tag_for(variant)}_{timestamp_ms}{extension}"

    def content_type_for(self, variant: DownloadVariant | str) -> str:
        return AUDIO_CONTENT_TYPE if self._is_audio(variant) else VIDEO_CONTENT_TYPE

    # =========================================================================
    # Download preparation
    # =========================================================================

    async def prepare_download(self, url: str, variant: DownloadVariant | str) -> DownloadPlan:
        """
        Resolve everything needed to stream one variant of a video.

        Raises:
            InvalidVariantError: variant names no known variant
            VariantUnavailableError: the video has no URL for the variant
            plus everything fetch_metadata raises
        """
        parsed = self.parse_variant(variant)
        metadata = await self.fetch_metadata(url)

        source_url = self.resolve_variant_url(parsed, metadata)
        if not source_url:
            raise VariantUnavailableError(parsed)

        target_url = await self.resolve_redirect_target(source_url)
        return DownloadPlan(
            metadata=metadata,
            variant=parsed,
            source_url=source_url,
            target_url=target_url,
            filename=self.derive_filename(metadata, parsed),
            content_type=self.content_type_for(parsed),
        )
