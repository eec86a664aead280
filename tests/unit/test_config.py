"""Tests for herostudio.core.config — configuration management.

Tests cover:
- Default values for model, timeout, pricing and quota fields.
- Environment variable overrides via the HEROSTUDIO_ prefix.
- The GEMINI_API_KEY / API_KEY fallbacks for the deployment key.
- Automatic data directory creation and derived paths.
- Pydantic validation constraints.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from herostudio.core.config import HeroStudioConfig

KEY_VARS = ("HEROSTUDIO_API_KEY", "GEMINI_API_KEY", "API_KEY")


@pytest.fixture
def clean_env(monkeypatch):
    for name in KEY_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestConfigDefaults:
    """Verify that HeroStudioConfig provides the documented defaults."""

    def test_model_name(self, test_config: HeroStudioConfig):
        assert test_config.model_name == "gemini-3-pro-image-preview"

    def test_generation_timeout_is_95_seconds(self, test_config: HeroStudioConfig):
        assert test_config.generation_timeout_seconds == 95.0

    def test_reference_image_limits(self, test_config: HeroStudioConfig):
        assert test_config.reference_max_edge == 1536
        assert test_config.reference_jpeg_quality == 85
        assert test_config.reference_timeout_seconds == 5.0

    def test_pricing_tiers(self, test_config: HeroStudioConfig):
        assert test_config.cost_standard == pytest.approx(0.67)
        assert test_config.cost_high == pytest.approx(1.20)

    def test_default_image_limit(self, test_config: HeroStudioConfig):
        assert test_config.default_image_limit == 10

    def test_sqlite_is_default_backend(self, test_config: HeroStudioConfig):
        assert test_config.storage_backend == "sqlite"

    def test_no_api_key_without_environment(self, clean_env, temp_dir: Path):
        cfg = HeroStudioConfig(data_dir=temp_dir, _env_file=None)
        assert cfg.api_key is None


class TestEnvironmentOverrides:
    """Environment variables with the HEROSTUDIO_ prefix override defaults."""

    def test_prefixed_timeout(self, monkeypatch, temp_dir: Path):
        monkeypatch.setenv("HEROSTUDIO_GENERATION_TIMEOUT_SECONDS", "30")
        cfg = HeroStudioConfig(data_dir=temp_dir, _env_file=None)
        assert cfg.generation_timeout_seconds == 30.0

    def test_prefixed_backend(self, monkeypatch, temp_dir: Path):
        monkeypatch.setenv("HEROSTUDIO_STORAGE_BACKEND", "supabase")
        cfg = HeroStudioConfig(data_dir=temp_dir, _env_file=None)
        assert cfg.storage_backend == "supabase"

    @pytest.mark.parametrize("variable", KEY_VARS)
    def test_api_key_aliases(self, clean_env, temp_dir: Path, variable: str):
        """The deployment key is read from any of the accepted variable names."""
        clean_env.setenv(variable, "env-key")
        cfg = HeroStudioConfig(data_dir=temp_dir, _env_file=None)
        assert cfg.api_key == "env-key"

    def test_explicit_kwarg_wins(self, clean_env, temp_dir: Path):
        clean_env.setenv("GEMINI_API_KEY", "env-key")
        cfg = HeroStudioConfig(data_dir=temp_dir, api_key="kwarg-key", _env_file=None)
        assert cfg.api_key == "kwarg-key"


class TestPaths:
    """Data directory creation and derived file locations."""

    def test_data_dir_created(self, temp_dir: Path):
        data_dir = temp_dir / "nested" / "data"
        HeroStudioConfig(data_dir=data_dir, _env_file=None)
        assert data_dir.is_dir()

    def test_database_path_defaults_into_data_dir(self, test_config: HeroStudioConfig):
        assert test_config.resolved_database_path == test_config.data_dir / "herostudio.db"

    def test_explicit_database_path(self, temp_dir: Path):
        cfg = HeroStudioConfig(data_dir=temp_dir, database_path=temp_dir / "x.db", _env_file=None)
        assert cfg.resolved_database_path == temp_dir / "x.db"

    def test_credentials_path_defaults_into_data_dir(self, test_config: HeroStudioConfig):
        assert test_config.resolved_credentials_path.name == "credentials.json"


class TestValidation:
    """Pydantic constraints reject invalid values."""

    def test_timeout_must_be_positive(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            HeroStudioConfig(data_dir=temp_dir, generation_timeout_seconds=0, _env_file=None)

    def test_port_range(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            HeroStudioConfig(data_dir=temp_dir, server_port=80, _env_file=None)

    def test_unknown_backend(self, temp_dir: Path):
        with pytest.raises(ValidationError):
            HeroStudioConfig(data_dir=temp_dir, storage_backend="mongo", _env_file=None)
