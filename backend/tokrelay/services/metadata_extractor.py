"""
Metadata Extraction Service Module for TokRelay

Pure transforms from an upstream response body to a VideoMetadata record.
Two interchangeable back-ends implement the MetadataBackend protocol and are
selected by the ``EXTRACTION_BACKEND`` setting:

- PageMetadataBackend ("page", default): scrapes the public video page with
  BeautifulSoup and runs an ordered chain of strategies:
    1. sigi_state      - embedded ``SIGI_STATE`` JSON blob
    2. universal_data  - embedded ``__UNIVERSAL_DATA_FOR_REHYDRATION__`` blob
    3. meta_tags       - Open Graph / Twitter meta tags (no media URLs)
  A strategy runs only while the username is still unknown, and values found
  by an earlier strategy win field by field.
- ApiMetadataBackend ("api"): calls a companion JSON API that returns a flat
  ``{code, data}`` document.

Extractors never raise on malformed input. They degrade and report what
happened through ExtractionResult, whose ``outcomes`` list records every
strategy attempted. Deciding whether the record is usable is left to the
resolution service.
"""

import json
import logging
import re

from typing import Any, Protocol, runtime_checkable

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from tokrelay.models.video import VideoMetadata


# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

PAGE_BACKEND: str = "page"
API_BACKEND: str = "api"

SIGI_STATE_KEY: str = "SIGI_STATE"
UNIVERSAL_DATA_KEY: str = "__UNIVERSAL_DATA_FOR_REHYDRATION__"
UNIVERSAL_SCOPE_KEYS: tuple[str, ...] = ("__DEFAULT_SCOPE__", "default")
VIDEO_DETAIL_KEY: str = "webapp.video-detail"

DEFAULT_API_BASE_URL: str = "https://www.tikwm.com/api/"

METADATA_FIELDS: tuple[str, ...] = (
    "username",
    "caption",
    "thumbnail_url",
    "no_watermark_url",
    "watermark_url",
    "audio_url",
    "video_id",
)

_JSON_DECODER = json.JSONDecoder()


# =============================================================================
# RESULT TYPES
# =============================================================================


class UpstreamRequest(BaseModel):
    """The request a backend needs sent to obtain its input body."""

    url: str
    params: dict[str, str] | None = None
    headers: dict[str, str] = Field(default_factory=dict)


class StrategyOutcome(BaseModel):
    """What one extraction strategy achieved."""

    name: str
    succeeded: bool
    detail: str = ""


class ExtractionResult(BaseModel):
    """
    Output of a backend's extract().

    Attributes:
        metadata: The merged record (possibly empty)
        strategy: Name of the strategy that supplied the username, or None
        outcomes: Every strategy attempted, in order
    """

    metadata: VideoMetadata = Field(default_factory=VideoMetadata)
    strategy: str | None = None
    outcomes: list[StrategyOutcome] = Field(default_factory=list)

    def describe_outcomes(self) -> str:
        return "; ".join(
            f"{o.name}={'ok' if o.succeeded else 'failed'}" + (f" ({o.detail})" if o.detail else "")
            for o in self.outcomes
        )


@runtime_checkable
class MetadataBackend(Protocol):
    """Interface shared by every metadata extraction back-end."""

    name: str

    def build_request(self, url: str) -> UpstreamRequest: ...

    def extract(self, body: str) -> ExtractionResult: ...


# =============================================================================
# SHARED MAPPING HELPERS
# =============================================================================


def _first_str(*values: Any) -> str | None:
    """Return the first value that is a non-empty string (numbers are coerced)."""
    for value in values:
        if isinstance(value, bool) or value is None:
            continue
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def map_item_struct(item: dict[str, Any]) -> dict[str, str | None]:
    """
    Map an embedded item object (SIGI_STATE / universal data) to metadata fields.

    ``author`` may be an object or, in older page payloads, the bare handle.
    """
    author = item.get("author")
    if isinstance(author, dict):
        username = _first_str(author.get("uniqueId"), author.get("id"))
    else:
        username = _first_str(author)

    video = _as_dict(item.get("video"))
    music = _as_dict(item.get("music"))
    video_url = _first_str(video.get("downloadAddr"), video.get("playAddr"))

    return {
        "username": username,
        "caption": _first_str(item.get("desc")),
        "thumbnail_url": _first_str(video.get("cover"), video.get("dynamicCover")),
        "no_watermark_url": video_url,
        "watermark_url": video_url,
        "audio_url": _first_str(music.get("playUrl")),
        "video_id": _first_str(item.get("id")),
    }


def _merge(target: dict[str, str | None], found: dict[str, str | None]) -> None:
    """Fill fields of target that are still empty; earlier values win."""
    for field_name in METADATA_FIELDS:
        if not target.get(field_name) and found.get(field_name):
            target[field_name] = found[field_name]


# =============================================================================
# PAGE BACKEND
# =============================================================================


class PageMetadataBackend:
    """
    Extracts metadata by scraping the public video page.

    Example:
        ```python
        backend = PageMetadataBackend()
        result = backend.extract(html)
        if result.metadata.is_usable:
            print(result.strategy, result.metadata.username)
        ```
    """

    name = PAGE_BACKEND

    def build_request(self, url: str) -> UpstreamRequest:
        return UpstreamRequest(url=url)

    def extract(self, body: str) -> ExtractionResult:
        soup = BeautifulSoup(body or "", "html.parser")
        fields: dict[str, str | None] = {}
        outcomes: list[StrategyOutcome] = []
        winner: str | None = None

        strategies = (
            ("sigi_state", self._from_sigi_state),
            ("universal_data", self._from_universal_data),
            ("meta_tags", self._from_meta_tags),
        )

        for strategy_name, strategy in strategies:
            if fields.get("username"):
                break

            found, detail = strategy(soup)
            succeeded = bool(found and found.get("username"))
            outcomes.append(StrategyOutcome(name=strategy_name, succeeded=succeeded, detail=detail))

            if found:
                _merge(fields, found)
            if succeeded and winner is None:
                winner = strategy_name

        return ExtractionResult(
            metadata=VideoMetadata(**fields),
            strategy=winner,
            outcomes=outcomes,
        )

    # -------------------------------------------------------------------------
    # Embedded JSON location
    # -------------------------------------------------------------------------

    @staticmethod
    def _find_embedded_json(soup: BeautifulSoup, key: str) -> tuple[Any, str]:
        """
        Locate the JSON blob published under ``key``.

        Looks first for a script element whose id is ``key`` holding raw JSON,
        then for an inline script assigning ``window["key"] = {...}``.

        Returns:
            (decoded object or None, detail message)
        """
        tagged = soup.find("script", id=key)
        if tagged is not None and tagged.string:
            try:
                return json.loads(tagged.string), ""
            except (json.JSONDecodeError, TypeError) as e:
                logger.warning("Malformed %s script element: %s", key, e)
                return None, f"malformed JSON: {e}"

        assignment = re.compile(r"window\[\s*['\"]" + re.escape(key) + r"['\"]\s*\]\s*=\s*")
        for script in soup.find_all("script"):
            text = script.string
            if not text:
                continue
            match = assignment.search(text)
            if match is None:
                continue
            try:
                data, _ = _JSON_DECODER.raw_decode(text, match.end())
                return data, ""
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                logger.warning("Malformed %s assignment: %s", key, e)
                return None, f"malformed JSON: {e}"

        return None, "not present"

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    def _from_sigi_state(self, soup: BeautifulSoup) -> tuple[dict[str, str | None] | None, str]:
        data, detail = self._find_embedded_json(soup, SIGI_STATE_KEY)
        if data is None:
            return None, detail

        item_module = _as_dict(_as_dict(data).get("ItemModule"))
        if not item_module:
            return None, "ItemModule missing"

        item = next(iter(item_module.values()))
        if not isinstance(item, dict):
            return None, "ItemModule entry is not an object"
        return map_item_struct(item), ""

    def _from_universal_data(
        self, soup: BeautifulSoup
    ) -> tuple[dict[str, str | None] | None, str]:
        data, detail = self._find_embedded_json(soup, UNIVERSAL_DATA_KEY)
        if data is None:
            return None, detail

        data = _as_dict(data)
        scope: dict[str, Any] = {}
        for scope_key in UNIVERSAL_SCOPE_KEYS:
            if isinstance(data.get(scope_key), dict):
                scope = data[scope_key]
                break

        video_detail = _as_dict(scope.get(VIDEO_DETAIL_KEY))
        if not video_detail:
            return None, "video detail missing"
        if video_detail.get("statusCode") != 0:
            return None, f"statusCode={video_detail.get('statusCode')}"

        item = _as_dict(_as_dict(video_detail.get("itemInfo")).get("itemStruct"))
        if not item:
            return None, "itemStruct missing"
        return map_item_struct(item), ""

    @staticmethod
    def _meta_content(soup: BeautifulSoup, key: str) -> str | None:
        """Content of a meta tag matched by ``property`` or ``name``."""
        tag = soup.find("meta", property=key) or soup.find("meta", attrs={"name": key})
        if tag and tag.get("content"):
            content = str(tag["content"]).strip()
            return content or None
        return None

    def _from_meta_tags(self, soup: BeautifulSoup) -> tuple[dict[str, str | None] | None, str]:
        username = self._meta_content(soup, "profile:username")
        if not username:
            twitter_title = self._meta_content(soup, "twitter:title")
            if twitter_title:
                username = twitter_title.split()[0]

        caption = self._meta_content(soup, "og:description") or self._meta_content(
            soup, "description"
        )
        thumbnail = self._meta_content(soup, "og:image")

        if not (username or caption or thumbnail):
            return None, "no meta tags"

        return {"username": username, "caption": caption, "thumbnail_url": thumbnail}, ""


# =============================================================================
# API BACKEND
# =============================================================================


class ApiMetadataBackend:
    """Extracts metadata from the companion JSON API's flat document."""

    name = API_BACKEND

    def __init__(self, api_base_url: str = DEFAULT_API_BASE_URL) -> None:
        self.api_base_url = api_base_url

    def build_request(self, url: str) -> UpstreamRequest:
        return UpstreamRequest(
            url=self.api_base_url,
            params={"url": url},
            headers={"Accept": "application/json"},
        )

    def extract(self, body: str) -> ExtractionResult:
        try:
            document = json.loads(body)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Companion API returned non-JSON body: %s", e)
            return self._failed(f"non-JSON body: {e}")

        document = _as_dict(document)
        if document.get("code") != 0:
            return self._failed(f"code={document.get('code')}")

        data = document.get("data")
        if not isinstance(data, dict) or not data:
            return self._failed("data missing")

        author = _as_dict(data.get("author"))
        video_id = data.get("id")
        metadata = VideoMetadata(
            username=_first_str(author.get("unique_id"), author.get("nickname")),
            caption=_first_str(data.get("title")) or "",
            thumbnail_url=_first_str(data.get("cover"), data.get("origin_cover")),
            no_watermark_url=_first_str(data.get("play")),
            watermark_url=_first_str(data.get("wmplay"), data.get("play")),
            audio_url=_first_str(data.get("music")),
            video_id=str(video_id) if video_id not in (None, "") else None,
        )
        succeeded = metadata.is_usable
        return ExtractionResult(
            metadata=metadata,
            strategy=self.name if succeeded else None,
            outcomes=[
                StrategyOutcome(
                    name=self.name,
                    succeeded=succeeded,
                    detail="" if succeeded else "username or id missing",
                )
            ],
        )

    def _failed(self, detail: str) -> ExtractionResult:
        return ExtractionResult(
            outcomes=[StrategyOutcome(name=self.name, succeeded=False, detail=detail)]
        )


# =============================================================================
# FACTORY
# =============================================================================


def build_backend(name: str, api_base_url: str = DEFAULT_API_BASE_URL) -> MetadataBackend:
    """
    Build the backend named by configuration.

    Raises:
        ValueError: If name is neither "page" nor "api"
    """
    normalized = (name or "").lower()
    if normalized == PAGE_BACKEND:
        return PageMetadataBackend()
    if normalized == API_BACKEND:
        return ApiMetadataBackend(api_base_url)
    raise ValueError(f"Unknown extraction backend: {name!r}")
