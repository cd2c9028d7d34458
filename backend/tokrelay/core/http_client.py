"""
TokRelay Outbound HTTP Client Module

This module wraps httpx.AsyncClient for every request the service makes to
TikTok, the companion metadata API and the media CDNs. It provides:

- Randomized browser-like request headers per call (user agent and
  Accept-Language rotated; caller-supplied headers override)
- Per-call timeouts and redirect caps (30s / 5 redirects for pages,
  60s for media streams)
- A strict 2xx success predicate by default, overridable per call
- Typed errors: FetchTimeoutError, UpstreamHTTPError, NetworkError
- Streaming bodies via ByteStream for the download relay

No retries are performed. Each call builds its own AsyncClient, so no
connection state is shared between requests.

Usage:
    ```python
    from tokrelay.core.http_client import HTTPFetchClient

    client = HTTPFetchClient()
    response = await client.get("https://www.tiktok.com/@user/video/123")

    async with await client.stream(media_url) as stream:
        async for chunk in stream.aiter_bytes(65536):
            ...
    ```
"""

import logging
import random

from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx

from pydantic import BaseModel, Field


# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_TIMEOUT_SECONDS: float = 30.0
DEFAULT_STREAM_TIMEOUT_SECONDS: float = 60.0
DEFAULT_MAX_REDIRECTS: int = 5

USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
)

ACCEPT_LANGUAGES: tuple[str, ...] = (
    "en-US,en;q=0.9",
    "en-GB,en;q=0.9",
    "en-US,en;q=0.8,es;q=0.6",
    "en,en-US;q=0.9",
)

BASE_HEADERS: dict[str, str] = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,"
        "image/webp,image/apng,*/*;q=0.8"
    ),
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-User": "?1",
    "Sec-Fetch-Dest": "document",
    "Cache-Control": "max-age=0",
}


# =============================================================================
# EXCEPTIONS
# =============================================================================


class FetchError(Exception):
    """Base exception for outbound fetch failures."""

    kind: str = "error"

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class FetchTimeoutError(FetchError):
    """Raised when the upstream did not answer within the timeout."""

    kind = "timeout"


class UpstreamHTTPError(FetchError):
    """Raised when the upstream answered with a status outside the accepted range."""

    kind = "http"

    def __init__(self, status_code: int, url: str | None = None) -> None:
        super().__init__(f"HTTP {status_code}", url)
        self.status_code = status_code


class NetworkError(FetchError):
    """Raised on connection, DNS, TLS or redirect-limit failures."""

    kind = "network"

    def __init__(self, cause: Exception, url: str | None = None) -> None:
        super().__init__(f"Network error: {cause}", url)
        self.cause = cause


# =============================================================================
# RESPONSE TYPES
# =============================================================================


class FetchResponse(BaseModel):
    """Fully-read (or header-only) upstream response."""

    status_code: int = Field(..., description="Final HTTP status code")
    url: str = Field(..., description="Terminal URL after redirects")
    request_url: str = Field(..., description="URL of the first request sent")
    headers: dict[str, str] = Field(default_factory=dict)
    text: str = Field(default="", description="Decoded body; empty when not read")


class ByteStream:
    """
    An open upstream response whose body has not been read yet.

    Owns the AsyncClient that produced it; aclose() releases both. Usable
    as an async context manager.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response) -> None:
        self._client = client
        self._response = response
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def url(self) -> str:
        return str(self._response.url)

    @property
    def closed(self) -> bool:
        return self._closed

    async def aiter_bytes(self, chunk_size: int | None = None) -> AsyncIterator[bytes]:
        """Yield body chunks, translating transport failures into FetchError."""
        try:
            async for chunk in self._response.aiter_bytes(chunk_size):
                yield chunk
        except httpx.TimeoutException as e:
            raise FetchTimeoutError("Stream timeout", self.url) from e
        except httpx.RequestError as e:
            raise NetworkError(e, self.url) from e

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()

    async def __aenter__(self) -> "ByteStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


# =============================================================================
# HEADER RANDOMIZATION
# =============================================================================


def random_headers() -> dict[str, str]:
    """Browser-like headers with a randomly chosen user agent and language."""
    headers = dict(BASE_HEADERS)
    headers["User-Agent"] = random.choice(USER_AGENTS)
    headers["Accept-Language"] = random.choice(ACCEPT_LANGUAGES)
    return headers


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 300


# =============================================================================
# CLIENT
# =============================================================================


class HTTPFetchClient:
    """
    Outbound GET and streaming client with browser-like headers.

    Attributes:
        timeout: Default timeout in seconds for get()
        stream_timeout: Default timeout in seconds for stream()
        max_redirects: Default redirect cap
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        stream_timeout: float = DEFAULT_STREAM_TIMEOUT_SECONDS,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Args:
            timeout: Default timeout for get() calls
            stream_timeout: Default timeout for stream() calls
            max_redirects: Default number of redirects followed
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.timeout = timeout
        self.stream_timeout = stream_timeout
        self.max_redirects = max_redirects
        self._transport = transport

    def _build_client(self, timeout: float, max_redirects: int) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=max_redirects,
            transport=self._transport,
        )

    @staticmethod
    def _merge_headers(headers: dict[str, str] | None) -> dict[str, str]:
        merged = random_headers()
        if headers:
            merged.update(headers)
        return merged

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        max_redirects: int | None = None,
        accept_status: Callable[[int], bool] | None = None,
        read_body: bool = True,
    ) -> FetchResponse:
        """
        Perform a GET request and return the final response.

        Args:
            url: Target URL
            params: Optional query parameters
            headers: Headers overriding the randomized defaults
            timeout: Timeout in seconds (defaults to self.timeout)
            max_redirects: Redirect cap (defaults to self.max_redirects)
            accept_status: Predicate on the final status code (default: 2xx)
            read_body: When False the body is never downloaded and text is empty

        Returns:
            FetchResponse describing the terminal response

        Raises:
            FetchTimeoutError: On connect/read timeout
            UpstreamHTTPError: When accept_status rejects the final status
            NetworkError: On any other transport failure
        """
        effective_timeout = timeout if timeout is not None else self.timeout
        redirects = self.max_redirects if max_redirects is None else max_redirects
        accept = accept_status or is_success_status

        try:
            async with self._build_client(effective_timeout, redirects) as client:
                async with client.stream(
                    "GET", url, params=params, headers=self._merge_headers(headers)
                ) as response:
                    if not accept(response.status_code):
                        raise UpstreamHTTPError(response.status_code, url)

                    text = ""
                    if read_body:
                        await response.aread()
                        text = response.text

                    first_request = (
                        response.history[0].request if response.history else response.request
                    )
                    return FetchResponse(
                        status_code=response.status_code,
                        url=str(response.url),
                        request_url=str(first_request.url),
                        headers=dict(response.headers),
                        text=text,
                    )
        except UpstreamHTTPError as e:
            logger.error("HTTP GET failed: url=%s kind=http status=%s", url, e.status_code)
            raise
        except httpx.TimeoutException as e:
            logger.error("HTTP GET failed: url=%s kind=timeout", url)
            raise FetchTimeoutError("Request timeout", url) from e
        except (httpx.RequestError, httpx.InvalidURL) as e:
            logger.error("HTTP GET failed: url=%s kind=network error=%s", url, e)
            raise NetworkError(e, url) from e

    async def stream(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        max_redirects: int | None = None,
    ) -> ByteStream:
        """
        Open a streaming GET. The caller must aclose() the returned stream.

        Raises:
            FetchTimeoutError: On connect timeout
            UpstreamHTTPError: When the final status is not 2xx
            NetworkError: On any other transport failure
        """
        effective_timeout = timeout if timeout is not None else self.stream_timeout
        redirects = self.max_redirects if max_redirects is None else max_redirects
        client = self._build_client(effective_timeout, redirects)

        try:
            request = client.build_request("GET", url, headers=self._merge_headers(headers))
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            await client.aclose()
            logger.error("HTTP stream failed: url=%s kind=timeout", url)
            raise FetchTimeoutError("Stream timeout", url) from e
        except (httpx.RequestError, httpx.InvalidURL) as e:
            await client.aclose()
            logger.error("HTTP stream failed: url=%s kind=network error=%s", url, e)
            raise NetworkError(e, url) from e

        if not is_success_status(response.status_code):
            await response.aclose()
            await client.aclose()
            logger.error(
                "HTTP stream failed: url=%s kind=http status=%s", url, response.status_code
            )
            raise UpstreamHTTPError(response.status_code, url)

        return ByteStream(client, response)
