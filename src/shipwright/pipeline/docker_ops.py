"""Docker image building and tagging for Shipwright.

This module provides a high-level async interface to Docker image builds using
docker-py, with error handling and structured logging. The application image is
built once per run, tagged with its immutable version tag, and only then given
the floating ``latest`` tag, so a failed build never moves ``latest``.

Example usage:
    >>> from shipwright.config import DockerConfig
    >>> from shipwright.pipeline.docker_ops import DockerBuildClient
    >>>
    >>> client = DockerBuildClient(DockerConfig())
    >>> ref = client.generate_reference("harbor.local", "apps", "crm", "123")
    >>> result = await client.build_image(Path("/tmp/ctx"), tag=ref.versioned)
    >>> if result.success:
    ...     await client.tag_latest(result.image_id, ref)
"""

from __future__ import annotations

import asyncio
import os
import time
from enum import Enum
from pathlib import Path
from typing import Any

from docker.errors import APIError, BuildError, DockerException, ImageNotFound
from pydantic import BaseModel, Field

import docker
from shipwright.config import DockerConfig
from shipwright.logging import get_logger
from shipwright.models import ImageReference

# Number of build log lines kept on failure results
BUILD_LOG_TAIL = 50


def connect_docker(config: DockerConfig) -> docker.DockerClient:
    """Open a Docker client honouring DOCKER_HOST and rootless mode.

    Args:
        config: Docker configuration settings

    Returns:
        Connected Docker client

    Raises:
        DockerException: If unable to connect to the Docker daemon
    """
    docker_host = os.environ.get("DOCKER_HOST")
    if docker_host:
        return docker.DockerClient(base_url=docker_host)
    if config.rootless and hasattr(os, "getuid"):
        xdg_runtime = os.environ.get("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
        try:
            return docker.DockerClient(base_url=f"unix://{xdg_runtime}/docker.sock")
        except DockerException:
            # Fall back to default
            pass
    return docker.DockerClient.from_env()


class BuildStatus(str, Enum):
    """Status of a Docker image build operation.

    Attributes:
        PENDING: Build has been queued but not started
        SUCCEEDED: Build completed successfully
        FAILED: Build encountered an error
        CANCELLED: Build timed out before completion
    """

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BuildResult(BaseModel):
    """Result of a Docker image build operation.

    Attributes:
        image_id: Docker image ID (sha256 hash)
        tags: List of tags applied to the built image
        build_log: Collected build log lines
        duration_seconds: Total build time in seconds
        success: Whether the build completed successfully
        error: Error message if build failed, None otherwise
        status: Current build status
    """

    image_id: str = Field(default="", description="Docker image ID")
    tags: list[str] = Field(default_factory=list, description="Image tags")
    build_log: list[str] = Field(default_factory=list, description="Build log lines")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Build duration")
    success: bool = Field(default=False, description="Build success flag")
    error: str | None = Field(default=None, description="Error message if failed")
    status: BuildStatus = Field(default=BuildStatus.PENDING, description="Build status")


def _collect_log(entries: Any) -> list[str]:
    lines: list[str] = []
    for log_entry in entries:
        if isinstance(log_entry, dict):
            line = log_entry.get("stream", "") or log_entry.get("error", "")
            if line and line.strip():
                lines.append(line.strip())
    return lines


class DockerBuildClient:
    """High-level async Docker build client using docker-py.

    Attributes:
        config: Docker configuration from ShipwrightConfig
        logger: Structured logger instance
    """

    def __init__(self, config: DockerConfig) -> None:
        """Initialize DockerBuildClient with configuration.

        The Docker client connection is deferred until first use.
        """
        self.config = config
        self.logger = get_logger(__name__)
        self._client: docker.DockerClient | None = None

    def _get_client(self) -> docker.DockerClient:
        """Get or create the Docker client connection.

        Raises:
            DockerException: If unable to connect to Docker daemon
        """
        if self._client is None:
            try:
                self._client = connect_docker(self.config)
                self.logger.info("docker_client_connected", rootless=self.config.rootless)
            except DockerException as e:
                self.logger.error(
                    "docker_client_connection_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    rootless=self.config.rootless,
                )
                raise

        return self._client

    def generate_reference(
        self, registry: str, project: str, name: str, tag: str
    ) -> ImageReference:
        """Build the fully qualified reference ``registry/project/name:tag``."""
        reference = ImageReference(registry=registry, project=project, name=name, tag=tag)
        self.logger.debug("image_reference_generated", reference=reference.versioned)
        return reference

    async def build_image(
        self,
        path: Path,
        tag: str,
        dockerfile: str | None = None,
        build_args: dict[str, str] | None = None,
        no_cache: bool = False,
        pull: bool = False,
    ) -> BuildResult:
        """Build a Docker image from a build context.

        Args:
            path: Path to the build context directory
            tag: Tag for the built image (e.g., 'harbor.local/apps/crm:123')
            dockerfile: Dockerfile name relative to path (defaults to config)
            build_args: Build-time variables to pass to Docker
            no_cache: If True, do not use cache when building
            pull: Always attempt to pull newer base images

        Returns:
            BuildResult with image ID, tags, logs, and status
        """
        start_time = time.monotonic()
        dockerfile = dockerfile or self.config.dockerfile

        self.logger.info(
            "docker_build_started",
            path=str(path),
            dockerfile=dockerfile,
            tag=tag,
            no_cache=no_cache,
            build_args=sorted(build_args) if build_args else [],
        )

        if not path.is_dir():
            self.logger.error("docker_build_path_not_found", path=str(path))
            return BuildResult(
                success=False,
                error=f"Build context path does not exist: {path}",
                status=BuildStatus.FAILED,
                duration_seconds=time.monotonic() - start_time,
            )

        dockerfile_path = path / dockerfile
        if not dockerfile_path.is_file():
            self.logger.error("docker_build_dockerfile_not_found", dockerfile=str(dockerfile_path))
            return BuildResult(
                success=False,
                error=f"Dockerfile not found: {dockerfile_path}",
                status=BuildStatus.FAILED,
                duration_seconds=time.monotonic() - start_time,
            )

        build_kwargs: dict[str, Any] = {
            "path": str(path),
            "dockerfile": dockerfile,
            "tag": tag,
            "nocache": no_cache,
            "pull": pull,
            "rm": True,
            "forcerm": True,
            "timeout": self.config.build_timeout_seconds,
        }
        if build_args:
            build_kwargs["buildargs"] = build_args

        try:
            client = await asyncio.to_thread(self._get_client)
            image, build_logs_raw = await asyncio.wait_for(
                asyncio.to_thread(client.images.build, **build_kwargs),
                timeout=self.config.build_timeout_seconds,
            )

            build_log = _collect_log(build_logs_raw)
            duration = time.monotonic() - start_time
            image_id = image.id or ""

            self.logger.info(
                "docker_build_succeeded",
                image_id=image_id[:20],
                tags=image.tags,
                duration_seconds=round(duration, 2),
                log_lines=len(build_log),
            )

            return BuildResult(
                image_id=image_id,
                tags=list(image.tags or []),
                build_log=build_log,
                duration_seconds=duration,
                success=True,
                status=BuildStatus.SUCCEEDED,
            )

        except BuildError as e:
            duration = time.monotonic() - start_time
            build_log = _collect_log(e.build_log)
            self.logger.error(
                "docker_build_failed",
                tag=tag,
                error=str(e),
                duration_seconds=round(duration, 2),
                log_tail=build_log[-10:],
            )
            return BuildResult(
                build_log=build_log[-BUILD_LOG_TAIL:],
                duration_seconds=duration,
                success=False,
                error=str(e),
                status=BuildStatus.FAILED,
            )

        except asyncio.TimeoutError:
            duration = time.monotonic() - start_time
            self.logger.error(
                "docker_build_timeout",
                tag=tag,
                timeout_seconds=self.config.build_timeout_seconds,
            )
            return BuildResult(
                duration_seconds=duration,
                success=False,
                error=f"Build timed out after {self.config.build_timeout_seconds} seconds",
                status=BuildStatus.CANCELLED,
            )

        except (APIError, DockerException) as e:
            duration = time.monotonic() - start_time
            self.logger.error(
                "docker_build_api_error",
                tag=tag,
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            return BuildResult(
                duration_seconds=duration,
                success=False,
                error=str(e),
                status=BuildStatus.FAILED,
            )

    async def tag_image(self, image_id: str, tag: str) -> bool:
        """Apply a tag to an existing Docker image.

        Args:
            image_id: Docker image ID or existing tag
            tag: New tag to apply (format: registry/project/name:tag)

        Returns:
            True if tagging succeeded, False otherwise
        """
        repo_part, sep, tag_part = tag.rpartition(":")
        if not sep or "/" in tag_part:
            repo_part, tag_part = tag, "latest"

        try:
            client = await asyncio.to_thread(self._get_client)
            image = await asyncio.to_thread(client.images.get, image_id)
            result: bool = await asyncio.to_thread(image.tag, repository=repo_part, tag=tag_part)

            self.logger.info(
                "image_tagged",
                image_id=image_id[:20],
                tag=tag,
                success=result,
            )
            return result

        except ImageNotFound:
            self.logger.error("image_not_found_for_tagging", image_id=image_id, tag=tag)
            return False

        except (APIError, DockerException) as e:
            self.logger.error(
                "image_tag_failed",
                image_id=image_id,
                tag=tag,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def tag_latest(self, image_id: str, reference: ImageReference) -> bool:
        """Point the floating ``latest`` tag of ``reference`` at ``image_id``."""
        self.logger.info(
            "updating_latest_tag",
            image_id=image_id[:20],
            latest_tag=reference.latest,
        )
        return await self.tag_image(image_id, reference.latest)

    async def prune_build_cache(self) -> bool:
        """Prune the builder cache. Best-effort: never raises."""
        try:
            client = await asyncio.to_thread(self._get_client)
            result: dict[str, Any] = await asyncio.to_thread(client.api.prune_builds)
            self.logger.info(
                "build_cache_pruned",
                space_reclaimed=(result or {}).get("SpaceReclaimed", 0),
            )
            return True
        except (APIError, DockerException) as e:
            self.logger.warning("build_cache_prune_failed", error=str(e))
            return False

    async def prune_dangling_images(self) -> bool:
        """Remove dangling image layers. Best-effort: never raises."""
        try:
            client = await asyncio.to_thread(self._get_client)
            result: dict[str, Any] = await asyncio.to_thread(
                client.images.prune, filters={"dangling": True}
            )
            self.logger.info(
                "dangling_images_pruned",
                images_deleted=len((result or {}).get("ImagesDeleted") or []),
                space_reclaimed=(result or {}).get("SpaceReclaimed", 0),
            )
            return True
        except (APIError, DockerException) as e:
            self.logger.warning("dangling_image_prune_failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close the Docker client connection.

        Safe to call multiple times or if the client was never connected.
        """
        if self._client is not None:
            try:
                await asyncio.to_thread(self._client.close)
                self.logger.info("docker_client_closed")
            except DockerException as e:
                self.logger.warning("docker_client_close_error", error=str(e))
            finally:
                self._client = None
