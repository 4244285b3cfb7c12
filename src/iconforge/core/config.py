"""Configuration management for Iconforge.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the ICONFORGE_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (ICONFORGE_* prefix)
2. .env file in the project root
3. Default values defined in IconforgeConfig

Example .env file:
    ICONFORGE_REPLICATE_API_TOKEN=r8_xxxxxxxxxxxxxxxx
    ICONFORGE_REDIS_URL=redis://localhost:6379/0
    ICONFORGE_DATABASE_URL=sqlite:///data/iconforge.sqlite
    ICONFORGE_ICON_DELAY_SECONDS=2.0

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from iconforge.core.config import config

    print(config.replicate_model_version)
    print(config.resolved_database_url)

Replicate Constraints
---------------------
- The free tier allows only a handful of predictions per minute, which is
  why icon sets are generated sequentially with a pause between calls.
- FLUX Schnell does not rewrite prompts; the submitted prompt is stored as
  the revised prompt.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class IconforgeConfig(BaseSettings):
    """Main configuration for Iconforge.

    Values are loaded from environment variables with the ICONFORGE_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Replicate Settings:
        replicate_api_token : str
            API token sent as a bearer token.  Required to generate images.
        replicate_base_url : str
            Base URL of the Replicate HTTP API.
        replicate_model_version : str
            Pinned version hash of the FLUX Schnell model.
        replicate_poll_interval : float
            Seconds between prediction status polls.
        replicate_timeout_seconds : float
            Maximum time to wait for a prediction to finish.

    Persistence:
        data_dir : Path
            Directory for the default SQLite database.
        database_url : str | None
            SQLAlchemy URL.  ``None`` means SQLite inside ``data_dir``.
        redis_url : str | None
            Redis URL for the result cache.  ``None`` disables caching.
        cache_ttl_seconds : int
            Lifetime of cached generation results.

    Generation:
        max_prompt_length : int
            Longest prompt accepted by the generation endpoint.
        icon_count : int
            Number of icons produced per icon set.
        icon_delay_seconds : float
            Pause between sequential icon generations.

    Server:
        cors_origin : str
            Allowed CORS origin (``*`` for any).
        server_host : str
            Bind address for uvicorn.
        server_port : int
            Port for uvicorn (1024-65535).
        rate_limit_window_seconds : float
            Length of the per-client rate-limit window on ``/api`` routes.
        rate_limit_max_requests : int
            Requests a client may make to ``/api`` routes per window.
        log_level : str
            Root logger level configured by ``main()``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ICONFORGE_",
        case_sensitive=False,
    )

    # Replicate settings
    replicate_api_token: str = Field(
        default="",
        description="Replicate API token (required for generation)",
    )
    replicate_base_url: str = Field(
        default="https://api.replicate.com",
        description="Base URL of the Replicate HTTP API",
    )
    replicate_model_version: str = Field(
        default="5599ed30703defd1d160a25a63321b4dec97101d98b4674bcc56e41f62f35637",
        description="Pinned black-forest-labs/flux-schnell version",
    )
    replicate_poll_interval: float = Field(
        default=1.0,
        description="Seconds between prediction status polls",
        ge=0.0,
    )
    replicate_timeout_seconds: float = Field(
        default=120.0,
        description="Maximum seconds to wait for a prediction",
        gt=0.0,
    )

    # Persistence
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for the default SQLite database",
    )
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy database URL (defaults to SQLite in data_dir)",
    )
    redis_url: str | None = Field(
        default=None,
        description="Redis URL for the result cache (None disables caching)",
    )
    cache_ttl_seconds: int = Field(
        default=3600,
        description="Lifetime of cached generation results",
        ge=1,
    )

    # Generation settings
    max_prompt_length: int = Field(default=4000, ge=1)
    icon_count: int = Field(default=4, ge=1, le=16)
    icon_delay_seconds: float = Field(
        default=2.0,
        description="Pause between sequential icon generations",
        ge=0.0,
    )

    # Server settings
    cors_origin: str = Field(default="*")
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    rate_limit_window_seconds: float = Field(
        default=60.0,
        description="Length of the /api rate-limit window",
        gt=0.0,
    )
    rate_limit_max_requests: int = Field(
        default=10,
        description="Requests allowed per client in one window",
        ge=1,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create the data directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def resolved_database_url(self) -> str:
        """Return the configured database URL or the SQLite default."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'iconforge.sqlite'}"


# Global configuration instance
# Loads values from environment variables (ICONFORGE_* prefix) and .env file.
config = IconforgeConfig()
