"""
TokRelay Configuration Management Module

This module provides configuration management for the TokRelay service using
Pydantic Settings. It loads and validates all environment variables required for:
- Application settings (name, environment, debug mode, logging)
- Result cache time-to-live
- Per-route rate limiting ceilings
- Optional API-key allow-list and allowed CORS origins
- Upstream extraction backend selection, timeouts and redirect caps

All settings support environment variable overrides and .env file loading with
validation and type safety. Only the cache TTL, the extraction backend and the
upstream timeouts/redirect caps reach the core pipeline; everything else
configures the HTTP surface around it.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuration settings for the TokRelay service.

    Environment variable names are the upper-cased field names
    (``CACHE_TTL``, ``API_KEYS``, ``ALLOWED_ORIGINS``, ...).

    Configuration Categories:
    - Application: Core app settings like name, environment, debug mode
    - Cache: Result cache TTL
    - Rate limiting: Global, fetch and download ceilings per client per minute
    - Security: API keys and CORS origins
    - Upstream: Extraction backend, companion API base URL, timeouts, redirects

    Example usage:
        ```python
        from tokrelay.config import Settings

        settings = Settings()
        print(f"Cache TTL: {settings.cache_ttl}s")
        print(f"Auth enabled: {settings.is_auth_enabled}")
        ```
    """

    # =========================================================================
    # Application Settings
    # =========================================================================

    app_name: str = Field(
        default="TokRelay",
        description="Application name displayed in API documentation and logs",
    )

    app_env: str = Field(
        default="development",
        description="Application environment (development, staging, production, testing)",
    )

    debug: bool = Field(default=False, description="Enable debug mode with hot-reload")

    log_level: str = Field(
        default="info", description="Logging level (debug, info, warning, error, critical)"
    )

    json_logs: bool = Field(
        default=False, description="Emit structured JSON log lines instead of plain text"
    )

    host: str = Field(default="0.0.0.0", description="Host address for the API server to bind to")

    port: int = Field(default=3000, description="Port number for the API server", ge=1, le=65535)

    # =========================================================================
    # Cache Configuration
    # =========================================================================

    cache_ttl: int = Field(
        default=300, description="TTL for cached video metadata in seconds (5 minutes)", ge=1
    )

    # =========================================================================
    # Rate Limiting Configuration
    # =========================================================================

    rate_limit_enabled: bool = Field(
        default=True, description="Enable per-client rate limiting on /api routes"
    )

    api_rate_limit: int = Field(
        default=30, description="Maximum /api requests per client per minute", ge=1
    )

    fetch_rate_limit: int = Field(
        default=20, description="Maximum metadata fetches per client per minute", ge=1
    )

    download_rate_limit: int = Field(
        default=10, description="Maximum downloads per client per minute", ge=1
    )

    # =========================================================================
    # Security Configuration
    # =========================================================================

    api_keys: str = Field(
        default="",
        description="Comma-separated API keys. Authentication is disabled when empty.",
    )

    allowed_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins ('*' for any)",
    )

    # =========================================================================
    # Upstream Configuration
    # =========================================================================

    extraction_backend: str = Field(
        default="page",
        description="Metadata extraction backend: 'page' (scrape) or 'api' (companion API)",
    )

    api_base_url: str = Field(
        default="https://www.tikwm.com/api/",
        description="Companion JSON API endpoint used by the 'api' extraction backend",
    )

    fetch_timeout_seconds: float = Field(
        default=30.0, description="Timeout for page/API metadata fetches", gt=0
    )

    stream_timeout_seconds: float = Field(
        default=60.0, description="Timeout for streaming media fetches", gt=0
    )

    fetch_max_redirects: int = Field(
        default=5, description="Redirect cap for metadata fetches", ge=0
    )

    redirect_max_redirects: int = Field(
        default=10, description="Redirect cap when resolving the final CDN address", ge=0
    )

    stream_chunk_size: int = Field(
        default=64 * 1024, description="Chunk size in bytes for the streaming relay", ge=1024
    )

    # =========================================================================
    # Model Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"debug", "info", "warning", "error", "critical"}
        normalized = v.lower()
        if normalized not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {', '.join(valid_levels)}")
        return normalized

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate that app_env is a valid environment name."""
        valid_envs = {"development", "staging", "production", "testing"}
        normalized = v.lower()
        if normalized not in valid_envs:
            raise ValueError(f"Invalid app_env '{v}'. Must be one of: {', '.join(valid_envs)}")
        return normalized

    @field_validator("extraction_backend")
    @classmethod
    def validate_extraction_backend(cls, v: str) -> str:
        """Validate that extraction_backend names a known backend."""
        valid_backends = {"page", "api"}
        normalized = v.lower()
        if normalized not in valid_backends:
            raise ValueError(
                f"Invalid extraction_backend '{v}'. Must be one of: {', '.join(valid_backends)}"
            )
        return normalized

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def api_key_list(self) -> list[str]:
        """API keys parsed from the comma-separated ``api_keys`` setting."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def is_auth_enabled(self) -> bool:
        """True when at least one API key is configured."""
        return len(self.api_key_list) > 0

    @property
    def cors_origin_list(self) -> list[str]:
        """CORS origins parsed from the comma-separated ``allowed_origins`` setting."""
        origins = [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]
        return origins or ["*"]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get the global Settings instance.

    The @lru_cache decorator ensures that the Settings object is created only
    once on first call, and subsequent calls return the cached instance without
    re-reading environment variables or .env files.

    Returns:
        Settings: The global configuration instance.
    """
    return Settings()
