"""
URL Validation Utilities Module for TokRelay

Pure functions guarding every inbound video page URL before the service
touches the network:
- Format acceptance: allow-listed TikTok hostnames and recognised video paths
- Egress safety: lexical rejection of loopback, private, link-local and
  unspecified hosts plus any non-HTTP(S) scheme
- Normalization: removal of share-tracking query parameters
- Video ID extraction from the four supported path shapes
- Download type tag validation

Format acceptance and egress safety are separate predicates on purpose: the
resolution service maps them to different errors.

The egress check is purely lexical. A public hostname that resolves to a
private address is not detected here.
"""

import ipaddress
import re

from urllib.parse import SplitResult, parse_qsl, urlencode, urlsplit, urlunsplit


# =============================================================================
# CONSTANTS - Accepted Sources
# =============================================================================

# Hostnames accepted as video page sources (compared lower-cased)
ALLOWED_HOSTS: frozenset[str] = frozenset(
    {
        "tiktok.com",
        "www.tiktok.com",
        "m.tiktok.com",
        "vm.tiktok.com",
    }
)

# Path shapes, in precedence order: standard, short, alternate, share.
# extract_video_id lets a later match override an earlier one.
VIDEO_PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"/@[\w.-]+/video/(\d+)"),
    re.compile(r"/t/([\w-]+)"),
    re.compile(r"/v/(\d+)"),
    re.compile(r"/share/video/(\d+)"),
)

# Query parameters added by the share sheet that never affect the video
TRACKING_PARAMS: frozenset[str] = frozenset(
    {"_r", "checksum", "u_code", "preview_pb", "language", "timestamp"}
)

# Transport tags accepted by the download endpoint
DOWNLOAD_TYPES: tuple[str, ...] = ("nowm", "wm", "audio")


# =============================================================================
# CONSTANTS - Egress Blocking
# =============================================================================

ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})

BLOCKED_HOST_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^localhost$"),
    re.compile(r"^127\."),
    re.compile(r"^10\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^169\.254\."),
    re.compile(r"^0\."),
    re.compile(r"^::1$"),
    re.compile(r"^fe80:"),
    re.compile(r"^fc00:"),
    re.compile(r"^fd00:"),
)


class InvalidURLFormatError(ValueError):
    """Raised by normalize_url when the input has no scheme or host."""


# =============================================================================
# Internal Helpers
# =============================================================================


def _split(url: str) -> SplitResult | None:
    """Split an absolute URL, returning None when it lacks a scheme or host."""
    if not url or not isinstance(url, str):
        return None
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts


def _hostname(parts: SplitResult) -> str | None:
    """
    Lower-cased hostname of a split URL.

    Handles bare IPv6 literals (``http://::1/path``) which urllib cannot
    separate from a port: a host part with more than one colon and no
    brackets is taken as a whole.
    """
    hostinfo = parts.netloc.rpartition("@")[2]
    if "[" not in hostinfo and hostinfo.count(":") > 1:
        return hostinfo.lower()
    try:
        hostname = parts.hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def _is_internal_ip(hostname: str) -> bool:
    """
    True when hostname is an IP literal in a loopback, private, link-local or
    unspecified range. IPv4-mapped IPv6 addresses are checked as IPv4.
    Non-IP hostnames return False.
    """
    try:
        address = ipaddress.ip_address(hostname.split("%", 1)[0])
    except ValueError:
        return False

    candidates = [address]
    mapped = getattr(address, "ipv4_mapped", None)
    if mapped is not None:
        candidates.append(mapped)

    return any(
        ip.is_loopback or ip.is_private or ip.is_link_local or ip.is_unspecified
        for ip in candidates
    )


# =============================================================================
# Public API
# =============================================================================


def is_acceptable_source_url(url: str) -> bool:
    """
    Check whether a URL is a supported TikTok video page.

    Args:
        url: Candidate page URL as supplied by the client

    Returns:
        True when the host is allow-listed and the lower-cased path contains
        one of the video path shapes; False otherwise, including for empty
        or unparsable input.

    Example:
        >>> is_acceptable_source_url("https://www.tiktok.com/@user/video/123?lang=en")
        True
        >>> is_acceptable_source_url("https://www.tiktok.com/@user")
        False
    """
    parts = _split(url)
    if parts is None:
        return False

    hostname = _hostname(parts)
    if hostname not in ALLOWED_HOSTS:
        return False

    path = parts.path.lower()
    return any(pattern.search(path) for pattern in VIDEO_PATH_PATTERNS)


def is_egress_safe(url: str) -> bool:
    """
    Check that an outbound URL does not target an internal address.

    Only ``http`` and ``https`` are allowed. Hosts matching loopback,
    RFC 1918, link-local, unspecified and IPv6 local prefixes are rejected.
    No DNS resolution is performed.
    """
    parts = _split(url)
    if parts is None:
        return False

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        return False

    hostname = _hostname(parts)
    if not hostname:
        return False

    if _is_internal_ip(hostname):
        return False

    return not any(pattern.search(hostname) for pattern in BLOCKED_HOST_PATTERNS)


def normalize_url(url: str) -> str:
    """
    Remove tracking query parameters, keeping every other parameter in order.

    Idempotent: normalizing an already-normalized URL returns it unchanged.

    Raises:
        InvalidURLFormatError: If the URL has no scheme or host
    """
    parts = _split(url)
    if parts is None:
        raise InvalidURLFormatError("Invalid URL format")

    if not parts.query:
        return urlunsplit(parts)

    kept = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in TRACKING_PARAMS
    ]
    return urlunsplit(parts._replace(query=urlencode(kept)))


def extract_video_id(url: str) -> str | None:
    """
    Extract the video identifier (or short-link token) from a page URL.

    All four path shapes are tried; when more than one matches, the last
    one in the order standard, short, alternate, share wins.

    Returns:
        The captured token, or None for profile pages, other paths and
        unparsable input.
    """
    parts = _split(url)
    if parts is None:
        return None

    video_id = None
    for pattern in VIDEO_PATH_PATTERNS:
        match = pattern.search(parts.path)
        if match:
            video_id = match.group(1)
    return video_id


def is_valid_download_type(tag: str | None) -> bool:
    """True only for the transport tags ``nowm``, ``wm`` and ``audio``."""
    return isinstance(tag, str) and tag in DOWNLOAD_TYPES


__all__ = [
    "ALLOWED_HOSTS",
    "TRACKING_PARAMS",
    "DOWNLOAD_TYPES",
    "InvalidURLFormatError",
    "is_acceptable_source_url",
    "is_egress_safe",
    "normalize_url",
    "extract_video_id",
    "is_valid_download_type",
]
