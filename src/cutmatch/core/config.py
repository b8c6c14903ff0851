"""Configuration management for the CutMatch backend.

This module provides centralized configuration management using Pydantic
Settings.  Configuration is loaded from environment variables and an optional
``.env`` file.  Unlike most Pydantic Settings projects, no prefix is used: the
variable names (``PORT``, ``ALLOWED_ORIGINS``, ``REPLICATE_API_TOKEN`` ...) are
shared with the mobile client and the deployment scripts, so they are kept
exactly as they appear there.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Keyword arguments passed to ``CutMatchConfig(...)``
2. Environment variables
3. .env file in the working directory
4. Default values defined in CutMatchConfig

Example .env file:
    PORT=3001
    ALLOWED_ORIGINS=http://localhost:3000,https://cutmatch.app
    RATE_LIMIT_PER_MINUTE=10
    ENABLE_REQUEST_LOGGING=true
    NODE_ENV=development
    REPLICATE_API_TOKEN=r8_xxxxxxxxxxxxxxxx

Several settings accept two names.  The Expo client reads
``EXPO_PUBLIC_SUPABASE_URL`` while server-side tooling uses ``SUPABASE_URL``;
both resolve to :attr:`CutMatchConfig.supabase_url`.

Global Configuration Instance
------------------------------
A global ``config`` instance is created at import time and acts as the
default for :func:`cutmatch.api.main.create_app`.  Tests build their own
instances instead of mutating the global one.

Usage Example
-------------
    from cutmatch.core.config import config

    print(config.port)
    print(config.cors_origins)
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_REPLICATE_MODEL = (
    "stability-ai/sdxl:39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"
)


class CutMatchConfig(BaseSettings):
    """Main configuration for the CutMatch backend and client helpers.

    Attributes
    ----------
    Server Settings:
        host : str
            Bind address for uvicorn.
        port : int
            Listen port (``PORT``).
        environment : Literal["development", "production", "test"]
            Runtime environment (``NODE_ENV`` or ``ENVIRONMENT``).  Error
            detail is only exposed to clients in ``development``.
        log_level : str
            Root logging level applied by ``main()``.

    Gateway Policy:
        allowed_origins : str
            Comma-separated CORS allow-list.
        rate_limit_per_minute : int
            Maximum ``/api`` requests per client per window.
        rate_limit_window_seconds : int
            Length of the rate-limit window.
        enable_request_logging : bool
            Emit one access-log line per request.

    Generation Provider:
        replicate_api_token : str | None
            Replicate credential.  When unset the server still starts but
            every generation request fails with a configuration error.
        replicate_model : str
            Model reference passed to Replicate.
        generation_timeout_seconds : float
            Upper bound for one generation job.
        style_catalog_path : Path | None
            Override for the packaged ``styles.json`` catalog.

    Client Settings:
        supabase_url, supabase_anon_key : str | None
            Managed backend project URL and anon key.
        google_analytics_id, google_analytics_api_secret : str | None
            GA4 Measurement Protocol credentials.
        analytics_enabled : bool
            Master switch for the analytics sink.
        share_base_url : str
            Prefix for public shared-style links.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Server settings
    host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for all interfaces)",
    )
    port: int = Field(
        default=3001,
        description="Server port",
        ge=1,
        le=65535,
    )
    environment: Literal["development", "production", "test"] = Field(
        default="production",
        validation_alias=AliasChoices("environment", "NODE_ENV"),
        description="Runtime environment; 'development' exposes error detail",
    )
    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )

    # Gateway policy
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:8081",
        description="Comma-separated list of allowed CORS origins",
    )
    rate_limit_per_minute: int = Field(
        default=10,
        description="Maximum /api requests per client per window",
        ge=1,
    )
    rate_limit_window_seconds: int = Field(
        default=60,
        description="Rate-limit window length in seconds",
        ge=1,
    )
    enable_request_logging: bool = Field(
        default=False,
        description="Log one access line per request",
    )

    # Generation provider
    replicate_api_token: str | None = Field(
        default=None,
        description="Replicate API token (required for real generation)",
    )
    replicate_model: str = Field(
        default=DEFAULT_REPLICATE_MODEL,
        description="Replicate model reference used for hairstyle previews",
    )
    generation_timeout_seconds: float = Field(
        default=120.0,
        description="Timeout for a single generation job",
        gt=0,
    )
    style_catalog_path: Path | None = Field(
        default=None,
        description="Optional JSON file replacing the packaged style catalog",
    )

    # Client-side settings
    supabase_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "supabase_url", "EXPO_PUBLIC_SUPABASE_URL", "SUPABASE_URL"
        ),
    )
    supabase_anon_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "supabase_anon_key", "EXPO_PUBLIC_SUPABASE_ANON_KEY", "SUPABASE_ANON_KEY"
        ),
    )
    google_analytics_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "google_analytics_id",
            "EXPO_PUBLIC_GOOGLE_ANALYTICS_ID",
            "EXPO_PUBLIC_GA4_MEASUREMENT_ID",
        ),
    )
    google_analytics_api_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "google_analytics_api_secret",
            "GOOGLE_ANALYTICS_API_SECRET",
            "EXPO_PUBLIC_GA4_API_SECRET",
        ),
    )
    analytics_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("analytics_enabled", "EXPO_PUBLIC_ENABLE_ANALYTICS"),
    )
    share_base_url: str = Field(
        default="https://cutmatch.app/shared",
        description="Prefix for public shared-style links",
    )

    @property
    def cors_origins(self) -> list[str]:
        """Allowed origins parsed from the comma-separated setting."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def replicate_configured(self) -> bool:
        return bool(self.replicate_api_token and self.replicate_api_token.strip())


# Global configuration instance, loaded from the environment and .env file.
config = CutMatchConfig()
