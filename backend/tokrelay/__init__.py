"""
TokRelay Backend Application Package

This package contains the TokRelay FastAPI application, a metadata-resolution
and media-relay service for short-video page URLs. The service provides:

- URL validation with tracking-parameter stripping and egress (anti-SSRF) checks
- Multi-strategy metadata extraction tolerant of upstream format drift
- In-memory, time-bounded memoization of extraction results
- Redirect resolution and streaming relay of the resolved media bytes

Package Structure:
- api/: REST API endpoints organized by version (v1)
- core/: Core infrastructure (HTTP fetch client, result cache, auth, rate limiting)
- models/: Pydantic data models for video metadata and responses
- services/: Extraction, resolution and relay logic
- utils/: URL validation and logging helpers
"""

__version__ = "1.0.0"
__app_name__ = "TokRelay"
