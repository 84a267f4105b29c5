"""Unit tests for configuration management.

Tests cover:
- Default configuration values
- TOML file loading
- Environment variable overrides
- Validation errors for invalid configurations
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from shipwright.config import (
    CheckoutConfig,
    ContextConfig,
    DockerConfig,
    LoggingConfig,
    RegistryConfig,
    ReportConfig,
    ShipwrightConfig,
    SmokeConfig,
    ValidatorConfig,
    load_config,
)


class TestLoggingConfig:
    """Test LoggingConfig defaults and validation."""

    def test_default_values(self) -> None:
        """Test that default logging configuration values are correct."""
        config = LoggingConfig()
        assert config.level == "INFO"
        assert config.format == "console"
        assert config.file is None

    def test_level_is_normalised(self) -> None:
        """Test that log levels are upper-cased."""
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_level_validation(self) -> None:
        """Test that unknown levels are rejected."""
        with pytest.raises(ValidationError):
            LoggingConfig(level="VERBOSE")

    def test_format_validation(self) -> None:
        """Test that unknown formats are rejected."""
        assert LoggingConfig(format="JSON").format == "json"
        with pytest.raises(ValidationError):
            LoggingConfig(format="xml")


class TestDockerConfig:
    def test_default_values(self) -> None:
        config = DockerConfig()
        assert config.rootless is False
        assert config.build_timeout_seconds == 1800
        assert config.dockerfile == "Dockerfile"
        assert config.prune_build_cache is True

    def test_timeout_validation(self) -> None:
        with pytest.raises(ValidationError):
            DockerConfig(build_timeout_seconds=10)


class TestRegistryConfig:
    """Test RegistryConfig normalisation and API URL derivation."""

    def test_scheme_is_stripped(self) -> None:
        """Test that image references never carry a scheme."""
        config = RegistryConfig(url="https://harbor.example.com/")
        assert config.url == "harbor.example.com"

    def test_effective_api_url_derived(self) -> None:
        config = RegistryConfig(url="harbor.example.com:8443")
        assert config.effective_api_url() == "https://harbor.example.com:8443/api/v2.0"

    def test_effective_api_url_explicit(self) -> None:
        config = RegistryConfig(api_url="http://harbor-core.internal/api/v2.0/")
        assert config.effective_api_url() == "http://harbor-core.internal/api/v2.0"

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            RegistryConfig(hostname="harbor")  # type: ignore[call-arg]


class TestOtherSections:
    def test_validator_defaults_to_glob_matching(self) -> None:
        config = ValidatorConfig()
        assert config.descriptor_pattern == "*.mpr"
        assert config.archive_pattern == "*.mda"
        assert config.model_directory == "model"
        assert config.literal_markers is False

    def test_context_scratch_root_unset(self) -> None:
        assert ContextConfig().scratch_root is None

    def test_smoke_grace_validation(self) -> None:
        assert SmokeConfig().grace_seconds == 10.0
        with pytest.raises(ValidationError):
            SmokeConfig(grace_seconds=-1)

    def test_checkout_clones_into_subdirectory(self) -> None:
        """The clone never targets the job directory itself."""
        assert CheckoutConfig().directory == Path("source")
        assert ReportConfig().directory == Path(".")


class TestShipwrightConfig:
    def test_nested_override(self) -> None:
        """Test that sections can be overridden programmatically."""
        config = ShipwrightConfig(registry=RegistryConfig(project="apps"))
        assert config.registry.project == "apps"
        assert config.manifest.path == Path("k8s/deployment.yaml")
        assert config.report.filename == "deployment-info.txt"

    def test_environment_variables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that nested environment variables are applied."""
        monkeypatch.setenv("SHIPWRIGHT_REGISTRY__URL", "https://harbor.internal:8443")
        monkeypatch.setenv("SHIPWRIGHT_SMOKE__ENABLED", "false")

        config = ShipwrightConfig()
        assert config.registry.url == "harbor.internal:8443"
        assert config.smoke.enabled is False


class TestLoadConfig:
    """Test TOML configuration loading."""

    def test_load_defaults_when_no_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that defaults are loaded when no config file exists."""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        config = load_config()
        assert isinstance(config, ShipwrightConfig)
        assert config.registry.url == "localhost:5000"

    def test_explicit_path_not_found(self) -> None:
        """Test that FileNotFoundError is raised for missing explicit path."""
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config(Path("/nonexistent/shipwright.toml"))

    def test_load_from_toml_file(self, tmp_path: Path) -> None:
        """Test loading configuration from a TOML file."""
        config_file = tmp_path / "test.toml"
        config_file.write_text("""
[registry]
url = "harbor.example.com"
project = "apps"

[smoke]
grace_seconds = 15

[validator]
literal_markers = true
""")

        config = load_config(config_file)
        assert config.registry.url == "harbor.example.com"
        assert config.registry.project == "apps"
        assert config.smoke.grace_seconds == 15
        assert config.validator.literal_markers is True
        # Unspecified values should be defaults
        assert config.docker.dockerfile == "Dockerfile"

    def test_invalid_toml_raises_error(self, tmp_path: Path) -> None:
        """Test that invalid values raise a ValueError."""
        config_file = tmp_path / "invalid.toml"
        config_file.write_text("""
[smoke]
grace_seconds = "soon"
""")

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(config_file)

    def test_unknown_key_raises_error(self, tmp_path: Path) -> None:
        config_file = tmp_path / "unknown.toml"
        config_file.write_text("""
[registry]
hostname = "harbor"
""")

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(config_file)

    def test_search_current_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that load_config searches the current directory."""
        (tmp_path / "shipwright.toml").write_text("""
[report]
namespace = "production"
""")

        monkeypatch.chdir(tmp_path)
        config = load_config()
        assert config.report.namespace == "production"
