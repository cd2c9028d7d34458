"""
Models Package for TokRelay.

Pydantic models describing extracted video metadata and downloads.

Models Overview:
    - VideoMetadata: immutable record produced by an extractor
    - DownloadVariant: no_wm / wm / audio, with transport tags nowm / wm / audio
    - MetadataResponse: JSON body of the fetch endpoint
    - DownloadPlan: resolved source, filename and content type of a download

Example Usage:
    ```python
    from tokrelay.models import DownloadVariant, MetadataResponse

    variant = DownloadVariant.from_transport_tag("nowm")
    body = MetadataResponse.from_metadata(metadata)
    ```
"""

from tokrelay.models.video import (
    AUDIO_CONTENT_TYPE,
    VIDEO_CONTENT_TYPE,
    DownloadPlan,
    DownloadVariant,
    MetadataResponse,
    VideoMetadata,
)


__all__ = [
    "AUDIO_CONTENT_TYPE",
    "VIDEO_CONTENT_TYPE",
    "DownloadPlan",
    "DownloadVariant",
    "MetadataResponse",
    "VideoMetadata",
]
