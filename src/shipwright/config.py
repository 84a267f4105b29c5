"""Configuration management for Shipwright.

This module defines the configuration schema using Pydantic settings,
supporting TOML files, environment variables, and programmatic overrides.

Configuration loading priority (highest to lowest):
1. Programmatic overrides (passed to ShipwrightConfig constructor)
2. Environment variables (SHIPWRIGHT_* prefix)
3. TOML configuration file
4. Default values defined in this module

Example TOML configuration:
    [registry]
    url = "harbor.example.com"
    project = "apps"

    [smoke]
    grace_seconds = 15

Example environment variable override:
    SHIPWRIGHT_REGISTRY__URL="harbor.internal:8443"
    SHIPWRIGHT_SMOKE__GRACE_SECONDS=5
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomli
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format (json or console)
        file: Optional log file path (None for stderr only)
        rotation_size_mb: Log file rotation size in megabytes
        retention_count: Number of rotated log files to keep
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_LOGGING__",
        extra="forbid",
    )

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file: Path | None = Field(default=None)
    rotation_size_mb: int = Field(default=50, ge=1, le=1000)
    retention_count: int = Field(default=10, ge=1, le=100)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level is recognized."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format is recognized."""
        valid_formats = {"json", "console"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of {valid_formats}")
        return v_lower


class DockerConfig(BaseSettings):
    """Docker engine configuration.

    Attributes:
        rootless: Use rootless Docker daemon
        build_timeout_seconds: Build operation timeout in seconds
        dockerfile: Dockerfile name inside the prepared build context
        prune_build_cache: Prune the builder cache during cleanup
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_DOCKER__",
        extra="forbid",
    )

    rootless: bool = Field(default=False)
    build_timeout_seconds: int = Field(default=1800, ge=60, le=7200)
    dockerfile: str = Field(default="Dockerfile")
    prune_build_cache: bool = Field(default=True)


class RegistryConfig(BaseSettings):
    """Image registry configuration.

    Attributes:
        url: Registry host (and optional port), without scheme
        project: Registry project (namespace) that holds application images
        api_url: Base URL of the registry HTTP API used for project creation
        username: Registry username or robot account
        password: Registry password
        token: Bearer token, preferred over password when set
        create_project: Attempt project pre-creation before pushing
        public_project: Create the project as publicly readable
        verify_tls: Verify TLS certificates on registry API calls
        timeout_seconds: Registry API request timeout
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_REGISTRY__",
        extra="forbid",
    )

    url: str = Field(default="localhost:5000")
    project: str = Field(default="library")
    api_url: str | None = Field(default=None)
    username: str | None = Field(default=None)
    password: str | None = Field(default=None)
    token: str | None = Field(default=None)
    create_project: bool = Field(default=True)
    public_project: bool = Field(default=False)
    verify_tls: bool = Field(default=True)
    timeout_seconds: int = Field(default=30, ge=1, le=300)

    @field_validator("url")
    @classmethod
    def strip_scheme(cls, v: str) -> str:
        """Image references never carry a scheme."""
        for scheme in ("https://", "http://"):
            if v.startswith(scheme):
                v = v[len(scheme):]
        return v.rstrip("/")

    def effective_api_url(self) -> str:
        """Return the registry API base URL, derived from ``url`` when unset."""
        if self.api_url:
            return self.api_url.rstrip("/")
        return f"https://{self.url}/api/v2.0"


class BaseImagesConfig(BaseSettings):
    """Foundation image configuration.

    Attributes:
        directory: Directory holding the base image Dockerfiles
        builder_dockerfile: Dockerfile for the build-toolchain image
        runtime_dockerfile: Dockerfile for the runtime image
        builder_name: Repository name of the build-toolchain image
        runtime_name: Repository name of the runtime image
        tag: Tag applied to both base images
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_BASE_IMAGES__",
        extra="forbid",
    )

    directory: Path = Field(default=Path("base-images"))
    builder_dockerfile: str = Field(default="rootfs-builder.dockerfile")
    runtime_dockerfile: str = Field(default="rootfs-app.dockerfile")
    builder_name: str = Field(default="rootfs-builder")
    runtime_name: str = Field(default="rootfs-app")
    tag: str = Field(default="latest")


class ValidatorConfig(BaseSettings):
    """Application source validation configuration.

    Attributes:
        descriptor_pattern: Glob for the model descriptor file
        archive_pattern: Glob for the packaged deployment archive
        model_directory: Name of the model directory
        literal_markers: Match marker patterns as literal file names
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_VALIDATOR__",
        extra="forbid",
    )

    descriptor_pattern: str = Field(default="*.mpr")
    archive_pattern: str = Field(default="*.mda")
    model_directory: str = Field(default="model")
    literal_markers: bool = Field(default=False)


class ContextConfig(BaseSettings):
    """Build context preparation configuration.

    Attributes:
        scratch_root: Directory under which per-run build contexts are created
        ignore_patterns: Globs excluded when copying sources into the context
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_CONTEXT__",
        extra="forbid",
    )

    scratch_root: Path | None = Field(default=None)
    ignore_patterns: list[str] = Field(
        default_factory=lambda: [".git", ".svn", "__pycache__", "*.pyc", ".mendix-cache"]
    )


class SmokeConfig(BaseSettings):
    """Smoke test configuration.

    Attributes:
        enabled: Run the liveness check after the build
        grace_seconds: Seconds to wait before checking the container
        log_tail: Number of container log lines dumped on failure
        environment: Extra environment variables for the test container
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_SMOKE__",
        extra="forbid",
    )

    enabled: bool = Field(default=True)
    grace_seconds: float = Field(default=10.0, ge=0.0, le=600.0)
    log_tail: int = Field(default=200, ge=1, le=10000)
    environment: dict[str, str] = Field(default_factory=dict)


class ManifestConfig(BaseSettings):
    """Deployment descriptor configuration.

    Attributes:
        path: Descriptor path, relative to the workspace
        commit_message: Commit message template ({name} and {image} placeholders)
        author_name: Commit author name
        author_email: Commit author email
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_MANIFEST__",
        extra="forbid",
    )

    path: Path = Field(default=Path("k8s/deployment.yaml"))
    commit_message: str = Field(default="chore(deploy): {name} -> {image} [skip ci]")
    author_name: str = Field(default="shipwright")
    author_email: str = Field(default="shipwright@localhost")


class ReportConfig(BaseSettings):
    """Deployment report configuration.

    Attributes:
        directory: Directory the report is written to, relative to the workspace
        filename: Report file name
        namespace: Kubernetes namespace used in the generated commands
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_REPORT__",
        extra="forbid",
    )

    directory: Path = Field(default=Path("."))
    filename: str = Field(default="deployment-info.txt")
    namespace: str = Field(default="default")


class CheckoutConfig(BaseSettings):
    """Source checkout configuration.

    Attributes:
        repository_url: Repository to clone; None when the CI platform checked out
        ref: Branch, tag or commit to check out
        directory: Checkout directory, relative to the workspace; later
            stages resolve their paths against it
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_CHECKOUT__",
        extra="forbid",
    )

    repository_url: str | None = Field(default=None)
    ref: str = Field(default="main")
    directory: Path = Field(default=Path("source"))


class ShipwrightConfig(BaseSettings):
    """Root configuration for Shipwright.

    This is the main configuration class that aggregates all subsystem configurations.
    Configuration can be loaded from:
    1. TOML files (using load_config function)
    2. Environment variables (SHIPWRIGHT_* prefix)
    3. Direct instantiation with keyword arguments

    Environment variable format for nested config:
        SHIPWRIGHT_<SECTION>__<KEY>=value

    Example:
        SHIPWRIGHT_REGISTRY__PROJECT="apps"
        SHIPWRIGHT_DOCKER__ROOTLESS=true
    """

    model_config = SettingsConfigDict(
        env_prefix="SHIPWRIGHT_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    base_images: BaseImagesConfig = Field(default_factory=BaseImagesConfig)
    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    smoke: SmokeConfig = Field(default_factory=SmokeConfig)
    manifest: ManifestConfig = Field(default_factory=ManifestConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    checkout: CheckoutConfig = Field(default_factory=CheckoutConfig)


def load_config(config_path: Path | None = None) -> ShipwrightConfig:
    """Load configuration from TOML file with environment variable overrides.

    Configuration search order (first found is used):
    1. config_path if explicitly provided
    2. ./shipwright.toml (current directory)
    3. ~/.config/shipwright/config.toml (user config directory)

    Args:
        config_path: Explicit path to TOML config file. If None, searches
                    default locations.

    Returns:
        ShipwrightConfig: Fully resolved configuration instance.

    Raises:
        FileNotFoundError: If config_path is explicitly provided but doesn't exist.
        ValueError: If TOML file contains invalid configuration.
    """
    toml_data: dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        selected_path = config_path
    else:
        search_paths = [
            Path.cwd() / "shipwright.toml",
            Path.home() / ".config" / "shipwright" / "config.toml",
        ]
        selected_path = None
        for path in search_paths:
            if path.exists():
                selected_path = path
                break

    if selected_path is not None:
        with open(selected_path, "rb") as f:
            toml_data = tomli.load(f)

    # Pydantic overlays environment variables on top of the TOML data
    try:
        return ShipwrightConfig(**toml_data)
    except Exception as e:
        if selected_path:
            raise ValueError(
                f"Invalid configuration in {selected_path}: {e}"
            ) from e
        else:
            raise ValueError(f"Invalid configuration: {e}") from e
