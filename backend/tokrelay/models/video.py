"""
Video Pydantic models for TokRelay.

This module defines the metadata record produced by the extractors, the
download variants a client may request, the outbound JSON shape of the
fetch endpoint, and the plan describing a prepared download.

A VideoMetadata record is immutable once built. It is usable only when both
``username`` and ``video_id`` are present; the resolution service never hands
an unusable record to a caller.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# CONSTANTS
# =============================================================================

VIDEO_CONTENT_TYPE: str = "video/mp4"
AUDIO_CONTENT_TYPE: str = "audio/mpeg"


# =============================================================================
# ENUMS
# =============================================================================


class DownloadVariant(str, Enum):
    """
    Media variants that can be downloaded for a video.

    Internal tags differ from the transport tags used on the wire:
    - NO_WM ("no_wm") <-> "nowm": video without watermark
    - WM ("wm") <-> "wm": video with watermark
    - AUDIO ("audio") <-> "audio": soundtrack only
    """

    NO_WM = "no_wm"
    WM = "wm"
    AUDIO = "audio"

    @property
    def transport_tag(self) -> str:
        return _TRANSPORT_TAGS[self]

    @property
    def is_audio(self) -> bool:
        return self is DownloadVariant.AUDIO

    @classmethod
    def from_transport_tag(cls, tag: str) -> "DownloadVariant":
        """Strict lookup by transport tag. Raises ValueError for anything else."""
        for variant, transport in _TRANSPORT_TAGS.items():
            if transport == tag:
                return variant
        raise ValueError(f"Unknown download type: {tag!r}")

    @classmethod
    def parse(cls, value: "DownloadVariant | str") -> "DownloadVariant":
        """
        Accept a variant, an internal tag or a transport tag.

        Raises:
            ValueError: If value names no variant
        """
        if isinstance(value, DownloadVariant):
            return value
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                return cls.from_transport_tag(value)
        raise ValueError(f"Unknown download type: {value!r}")


_TRANSPORT_TAGS: dict[DownloadVariant, str] = {
    DownloadVariant.NO_WM: "nowm",
    DownloadVariant.WM: "wm",
    DownloadVariant.AUDIO: "audio",
}


# =============================================================================
# MODELS
# =============================================================================


class VideoMetadata(BaseModel):
    """
    Metadata extracted from one upstream response.

    Attributes:
        username: Author handle
        caption: Trimmed caption text, empty string when absent
        thumbnail_url: Cover image URL
        no_watermark_url: Video without watermark
        watermark_url: Video with watermark
        audio_url: Soundtrack URL
        video_id: Upstream video identifier

    Example:
        ```python
        metadata = VideoMetadata(
            username="catdancer",
            caption="dance  ",
            video_id="7777777777",
            no_watermark_url="https://v16.tiktokcdn.com/video.mp4",
        )
        assert metadata.caption == "dance"
        assert metadata.is_usable
        ```
    """

    username: str | None = Field(default=None, description="Author handle")
    caption: str = Field(default="", description="Trimmed caption text")
    thumbnail_url: str | None = Field(default=None, description="Cover image URL")
    no_watermark_url: str | None = Field(default=None, description="Unwatermarked video URL")
    watermark_url: str | None = Field(default=None, description="Watermarked video URL")
    audio_url: str | None = Field(default=None, description="Soundtrack URL")
    video_id: str | None = Field(default=None, description="Upstream video identifier")

    model_config = ConfigDict(frozen=True)

    @field_validator("caption", mode="before")
    @classmethod
    def normalize_caption(cls, v: object) -> str:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator(
        "username",
        "thumbnail_url",
        "no_watermark_url",
        "watermark_url",
        "audio_url",
        "video_id",
        mode="before",
    )
    @classmethod
    def empty_to_none(cls, v: object) -> str | None:
        """Blank strings are treated as absent; numeric ids are coerced to str."""
        if v is None:
            return None
        text = str(v).strip()
        return text or None

    @property
    def is_usable(self) -> bool:
        return bool(self.username) and bool(self.video_id)


class MetadataResponse(BaseModel):
    """JSON body returned by the fetch endpoint."""

    username: str = ""
    caption: str = ""
    thumbnail: str = ""
    no_wm: str = ""
    wm: str = ""
    audio: str = ""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "username": "catdancer",
                "caption": "dance",
                "thumbnail": "https://p16.tiktokcdn.com/cover.jpg",
                "no_wm": "https://v16.tiktokcdn.com/video_nowm.mp4",
                "wm": "https://v16.tiktokcdn.com/video_wm.mp4",
                "audio": "https://sf16.tiktokcdn.com/music.mp3",
            }
        }
    )

    @classmethod
    def from_metadata(cls, metadata: VideoMetadata) -> "MetadataResponse":
        """Map a record to the wire shape; ``wm`` falls back to ``no_wm``."""
        return cls(
            username=metadata.username or "",
            caption=metadata.caption or "",
            thumbnail=metadata.thumbnail_url or "",
            no_wm=metadata.no_watermark_url or "",
            wm=metadata.watermark_url or metadata.no_watermark_url or "",
            audio=metadata.audio_url or "",
        )


class DownloadPlan(BaseModel):
    """Everything needed to stream one variant of a video to a client."""

    metadata: VideoMetadata
    variant: DownloadVariant
    source_url: str = Field(..., description="Variant URL taken from the metadata")
    target_url: str = Field(..., description="Source URL after redirect resolution")
    filename: str
    content_type: str

    model_config = ConfigDict(frozen=True)

    @property
    def transport_tag(self) -> str:
        return self.variant.transport_tag
