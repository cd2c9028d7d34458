"""
Streaming Relay Service Module for TokRelay

Relays media bytes from the CDN to the client without buffering the whole
file. The upstream stream is always closed: on normal completion, on client
disconnect (checked between chunks), on upstream failure, and when the
consuming task is cancelled.

Failures after the response headers were sent cannot change the status code;
they are logged and terminate the body.
"""

import logging

from collections.abc import AsyncIterator, Awaitable, Callable

from tokrelay.core.http_client import ByteStream, FetchError, HTTPFetchClient


logger = logging.getLogger(__name__)


DEFAULT_CHUNK_SIZE: int = 64 * 1024


class StreamingRelay:
    """Opens upstream media streams and relays them chunk by chunk."""

    def __init__(
        self,
        fetch_client: HTTPFetchClient,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float | None = None,
    ) -> None:
        self.fetch_client = fetch_client
        self.chunk_size = chunk_size
        self.timeout = timeout

    async def open(self, url: str) -> ByteStream:
        """
        Open the upstream stream before any response bytes are sent.

        Raises:
            FetchError: Opening failed; the caller can still answer with an error status
        """
        return await self.fetch_client.stream(url, timeout=self.timeout)

    async def relay(
        self,
        stream: ByteStream,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[bytes]:
        """
        Yield the upstream body chunk by chunk.

        Args:
            stream: An open stream returned by open()
            is_disconnected: Async predicate polled before each chunk; a True
                result stops the relay and closes the upstream stream
        """
        relayed = 0
        completed = False
        try:
            async for chunk in stream.aiter_bytes(self.chunk_size):
                if is_disconnected is not None and await is_disconnected():
                    logger.info("Client disconnected during download after %d bytes", relayed)
                    break
                relayed += len(chunk)
                yield chunk
            else:
                completed = True
        except FetchError as e:
            logger.error("Stream error from %s after %d bytes: %s", stream.url, relayed, e)
            raise
        finally:
            await stream.aclose()

        if completed:
            logger.info("Relayed %d bytes from %s", relayed, stream.url)
