"""Configuration management for HeroStudio.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the HEROSTUDIO_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (HEROSTUDIO_* prefix)
2. .env file in the project root
3. Default values defined in HeroStudioConfig

The deployment-level model key is the one exception to the prefix rule: it is
also picked up from ``GEMINI_API_KEY`` or ``API_KEY`` so the service works with
the variable names most hosting platforms already expose.

Example .env file:
    HEROSTUDIO_MODEL_NAME=gemini-3-pro-image-preview
    HEROSTUDIO_STORAGE_BACKEND=sqlite
    HEROSTUDIO_DATA_DIR=data
    GEMINI_API_KEY=...

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from herostudio.core.config import config

    print(config.model_name)
    print(config.generation_timeout_seconds)

Pricing
-------
Usage cost is two-tier, not linear in resolution: the 4K tier is billed at
``cost_high`` and every other tier at ``cost_standard``.
"""

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HeroStudioConfig(BaseSettings):
    """Main configuration for HeroStudio.

    Values are loaded from environment variables with the HEROSTUDIO_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Model Settings:
        model_name : str
            Gemini image model used for every generation call
        api_key : str | None
            Deployment-level key (second tier of key resolution)
        generation_timeout_seconds : float
            Hard bound on a single model call

    Reference Images:
        reference_max_edge : int
            Longest edge allowed before a reference image is downscaled
        reference_jpeg_quality : int
            JPEG quality used when re-encoding a downscaled reference
        reference_timeout_seconds : float
            Bound on decoding/re-encoding a single reference image

    Accounting:
        cost_standard : float
            Flat cost of a 1K or 2K generation
        cost_high : float
            Flat cost of a 4K generation
        default_image_limit : int
            Quota assigned to newly created profiles

    Storage:
        storage_backend : Literal["sqlite", "supabase"]
            Which relational store backs profiles, usage and settings
        data_dir : Path
            Directory holding local state (SQLite database, credentials)
        database_path : Path | None
            SQLite file (defaults to ``data_dir / "herostudio.db"``)
        credentials_path : Path | None
            JSON file for the local credential store
        supabase_url : str | None
        supabase_key : str | None

    Server:
        server_host : str
        server_port : int

    Examples
    --------
        >>> custom = HeroStudioConfig(generation_timeout_seconds=30, data_dir="/tmp/hs")
        >>> custom.resolved_database_path.name
        'herostudio.db'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HEROSTUDIO_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
        protected_namespaces=(),
    )

    # Model settings
    model_name: str = Field(
        default="gemini-3-pro-image-preview",
        description="Gemini image model used for generation",
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("HEROSTUDIO_API_KEY", "GEMINI_API_KEY", "API_KEY"),
        description="Deployment-level model API key",
    )
    generation_timeout_seconds: float = Field(
        default=95.0,
        gt=0,
        description="Hard timeout for a single model call",
    )

    # Reference image optimisation
    reference_max_edge: int = Field(default=1536, ge=64, le=8192)
    reference_jpeg_quality: int = Field(default=85, ge=1, le=100)
    reference_timeout_seconds: float = Field(default=5.0, gt=0)

    # Accounting
    cost_standard: float = Field(default=0.67, ge=0, description="Cost of a 1K/2K image")
    cost_high: float = Field(default=1.20, ge=0, description="Cost of a 4K image")
    default_image_limit: int = Field(default=10, ge=0)

    # Storage
    storage_backend: Literal["sqlite", "supabase"] = Field(
        default="sqlite",
        description="Relational store backing profiles, usage logs and app settings",
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for local state",
    )
    database_path: Path | None = Field(
        default=None,
        description="SQLite database file (defaults to data_dir/herostudio.db)",
    )
    credentials_path: Path | None = Field(
        default=None,
        description="JSON file backing the local credential store",
    )
    supabase_url: str | None = Field(default=None)
    supabase_key: str | None = Field(default=None)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=8000,
        description="Server port",
        ge=1024,
        le=65535,
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create the data directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def resolved_database_path(self) -> Path:
        """SQLite database file, defaulting into ``data_dir``."""
        return self.database_path or self.data_dir / "herostudio.db"

    @property
    def resolved_credentials_path(self) -> Path:
        """Credential store file, defaulting into ``data_dir``."""
        return self.credentials_path or self.data_dir / "credentials.json"


# Global configuration instance
# Loads values from environment variables (HEROSTUDIO_* prefix) and .env file.
config = HeroStudioConfig()
