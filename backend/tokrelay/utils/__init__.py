"""
Utilities Package for the TokRelay backend.

Modules:
--------
url_validator:
    Pure URL checks run before any network access:
    - Allow-listed TikTok hosts and recognised video path shapes
    - Lexical egress-safety check (loopback, private, link-local hosts)
    - Tracking-parameter stripping
    - Video ID extraction and download type validation

logger:
    Structured logging configuration:
    - JSONFormatter for structured log output
    - StandardFormatter for human-readable development logs
    - setup_logging for application-wide configuration
    - add_log_context for per-request context fields

Usage:
------
    from tokrelay.utils import is_acceptable_source_url, normalize_url, setup_logging
"""

# =============================================================================
# LOGGER IMPORTS
# =============================================================================
from tokrelay.utils.logger import add_log_context, setup_logging

# =============================================================================
# URL VALIDATOR IMPORTS
# =============================================================================
from tokrelay.utils.url_validator import (
    InvalidURLFormatError,
    extract_video_id,
    is_acceptable_source_url,
    is_egress_safe,
    is_valid_download_type,
    normalize_url,
)


# =============================================================================
# PUBLIC API DEFINITION
# =============================================================================

__all__ = [
    "InvalidURLFormatError",
    "add_log_context",
    "extract_video_id",
    "is_acceptable_source_url",
    "is_egress_safe",
    "is_valid_download_type",
    "normalize_url",
    "setup_logging",
]
