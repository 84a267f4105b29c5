"""Image registry operations for Shipwright.

RegistryClient pushes image tags through the Docker engine, authenticating
with password or token credentials. There is no retry: a failed push fails
the publish stage.

RegistryApiClient talks to the registry's HTTP API (Harbor-style
``/api/v2.0``) to pre-create the target project. Pre-creation is best-effort;
an existing project or an unreachable API only produces a warning.

Example usage:
    >>> from shipwright.config import DockerConfig, RegistryConfig
    >>> from shipwright.pipeline.registry import RegistryClient, RegistryApiClient
    >>>
    >>> registry = RegistryConfig(url="harbor.local", project="apps")
    >>> await RegistryApiClient(registry).ensure_project()
    >>> client = RegistryClient(DockerConfig(), registry)
    >>> result = await client.push_image("harbor.local/apps/crm:123")
"""

from __future__ import annotations

import asyncio
import os
import re
import time
from enum import Enum

import httpx
from docker.errors import APIError, DockerException
from pydantic import BaseModel, Field

import docker
from shipwright.config import DockerConfig, RegistryConfig
from shipwright.logging import get_logger
from shipwright.pipeline.docker_ops import connect_docker

# Regex pattern for extracting digest from push output
_DIGEST_PATTERN = re.compile(r"digest:\s*(sha256:[a-f0-9]{64})")


class PushStatus(str, Enum):
    """Status of a Docker image push operation.

    Attributes:
        PENDING: Push has been queued but not started
        SUCCEEDED: Push completed successfully
        FAILED: Push encountered an error
    """

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RegistryAuth(BaseModel):
    """Authentication credentials for an image registry.

    Attributes:
        registry: Registry host (e.g., 'harbor.local', 'ghcr.io')
        username: Registry username or robot account
        password: Registry password
        token: Explicit token (optional, overrides password)
    """

    registry: str = Field(description="Registry host")
    username: str = Field(description="Registry username")
    password: str = Field(default="", description="Registry password")
    token: str | None = Field(default=None, description="Explicit auth token")

    @property
    def secret(self) -> str:
        """Credential sent to the registry."""
        return self.token or self.password


class PushResult(BaseModel):
    """Result of a Docker image push operation.

    Attributes:
        success: Whether the push completed successfully
        image_tag: Full image tag that was pushed
        digest: Image digest (sha256 hash) from the registry
        push_log: Collected push log lines
        duration_seconds: Total push time in seconds
        error: Error message if push failed, None otherwise
        status: Current push status
    """

    success: bool = Field(default=False, description="Push success flag")
    image_tag: str = Field(description="Image tag pushed")
    digest: str | None = Field(default=None, description="Image digest from registry")
    push_log: list[str] = Field(default_factory=list, description="Push log lines")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Push duration")
    error: str | None = Field(default=None, description="Error message if failed")
    status: PushStatus = Field(default=PushStatus.PENDING, description="Push status")


def auth_from_config(config: RegistryConfig) -> RegistryAuth | None:
    """Build credentials from configuration, falling back to environment variables.

    Environment fallbacks: REGISTRY_USERNAME, REGISTRY_PASSWORD, REGISTRY_TOKEN.
    """
    username = config.username or os.environ.get("REGISTRY_USERNAME")
    password = config.password or os.environ.get("REGISTRY_PASSWORD")
    token = config.token or os.environ.get("REGISTRY_TOKEN")

    if username and (password or token):
        return RegistryAuth(
            registry=config.url,
            username=username,
            password=password or "",
            token=token,
        )
    return None


class RegistryClient:
    """High-level async image push client using docker-py.

    Attributes:
        config: Docker configuration
        registry: Registry configuration
        logger: Structured logger instance
    """

    def __init__(
        self,
        config: DockerConfig,
        registry: RegistryConfig,
        auth: RegistryAuth | None = None,
    ) -> None:
        """Initialize RegistryClient; the Docker connection is deferred."""
        self.config = config
        self.registry = registry
        self.logger = get_logger(__name__)
        self._client: docker.DockerClient | None = None
        self._auth: RegistryAuth | None = auth if auth is not None else auth_from_config(registry)
        self._authenticated = False

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
                )
                raise

        return self._client

    async def authenticate(self) -> bool:
        """Log the Docker engine in to the registry.

        Returns:
            True if logged in, or if no credentials are configured (anonymous push);
            False if the registry rejected the credentials
        """
        if self._authenticated:
            return True

        if self._auth is None:
            self.logger.info("registry_anonymous_push", registry=self.registry.url)
            self._authenticated = True
            return True

        try:
            client = await asyncio.to_thread(self._get_client)
            login_result: dict[str, str] = await asyncio.to_thread(
                client.login,
                username=self._auth.username,
                password=self._auth.secret,
                registry=self._auth.registry,
            )
        except (APIError, DockerException) as e:
            self.logger.error(
                "registry_authentication_error",
                registry=self._auth.registry,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        # docker-py returns the daemon response, or cached config data on re-login
        status = login_result.get("Status") if isinstance(login_result, dict) else None
        self._authenticated = status in (None, "Login Succeeded")
        if self._authenticated:
            self.logger.info(
                "registry_authentication_succeeded",
                registry=self._auth.registry,
                username=self._auth.username,
                using_token=self._auth.token is not None,
            )
        else:
            self.logger.error(
                "registry_authentication_failed",
                registry=self._auth.registry,
                username=self._auth.username,
                status=status,
            )
        return self._authenticated

    async def push_image(self, image_tag: str) -> PushResult:
        """Push one image tag to the registry.

        Args:
            image_tag: Full image tag to push (e.g., 'harbor.local/apps/crm:123')

        Returns:
            PushResult with success status, digest, logs, and timing
        """
        start_time = time.monotonic()
        self.logger.info("docker_push_started", image_tag=image_tag)

        if not await self.authenticate():
            return PushResult(
                success=False,
                image_tag=image_tag,
                error="Authentication failed",
                status=PushStatus.FAILED,
                duration_seconds=time.monotonic() - start_time,
            )

        repository, sep, tag = image_tag.rpartition(":")
        if not sep or "/" in tag:
            repository, tag = image_tag, "latest"

        push_log: list[str] = []
        digest: str | None = None

        try:
            client = await asyncio.to_thread(self._get_client)
            push_response = await asyncio.to_thread(
                client.images.push,
                repository=repository,
                tag=tag,
                stream=True,
                decode=True,
            )

            for log_entry in push_response:
                if not isinstance(log_entry, dict):
                    continue

                status_msg = log_entry.get("status", "")
                if status_msg:
                    progress_msg = log_entry.get("progress", "")
                    push_log.append(f"{status_msg} {progress_msg}".strip())

                aux = log_entry.get("aux")
                if isinstance(aux, dict):
                    digest = aux.get("Digest") or aux.get("digest") or digest
                elif status_msg:
                    match = _DIGEST_PATTERN.search(status_msg)
                    if match:
                        digest = match.group(1)

                if "error" in log_entry:
                    push_log.append(f"ERROR: {log_entry['error']}")
                    raise APIError(log_entry["error"])

        except (APIError, DockerException) as e:
            duration = time.monotonic() - start_time
            self.logger.error(
                "docker_push_failed",
                image_tag=image_tag,
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            return PushResult(
                success=False,
                image_tag=image_tag,
                push_log=push_log,
                duration_seconds=duration,
                error=str(e),
                status=PushStatus.FAILED,
            )

        duration = time.monotonic() - start_time
        self.logger.info(
            "docker_push_succeeded",
            image_tag=image_tag,
            digest=digest,
            duration_seconds=round(duration, 2),
            log_lines=len(push_log),
        )
        return PushResult(
            success=True,
            image_tag=image_tag,
            digest=digest,
            push_log=push_log,
            duration_seconds=duration,
            status=PushStatus.SUCCEEDED,
        )

    async def close(self) -> None:
        """Close the Docker client connection."""
        if self._client is not None:
            try:
                await asyncio.to_thread(self._client.close)
                self.logger.info("registry_client_closed")
            except DockerException as e:
                self.logger.warning("registry_client_close_error", error=str(e))
            finally:
                self._client = None


class RegistryApiClient:
    """Client for the registry's project management HTTP API."""

    def __init__(self, config: RegistryConfig, auth: RegistryAuth | None = None) -> None:
        self.config = config
        self.logger = get_logger(__name__)
        self._auth = auth if auth is not None else auth_from_config(config)
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            auth: httpx.BasicAuth | None = None
            if self._auth is not None:
                if self._auth.token:
                    headers["Authorization"] = f"Bearer {self._auth.token}"
                else:
                    auth = httpx.BasicAuth(self._auth.username, self._auth.password)
            self._client = httpx.AsyncClient(
                base_url=self.config.effective_api_url(),
                headers=headers,
                auth=auth,
                timeout=self.config.timeout_seconds,
                verify=self.config.verify_tls,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def ensure_project(self, project: str | None = None) -> bool:
        """Create the registry project if it does not exist yet.

        Best-effort: never raises.

        Returns:
            True if the project was created or already exists, False otherwise
        """
        project = project or self.config.project
        payload = {
            "project_name": project,
            "metadata": {"public": "true" if self.config.public_project else "false"},
        }

        try:
            client = await self._get_client()
            response = await client.post("/projects", json=payload)
        except httpx.HTTPError as e:
            self.logger.warning(
                "registry_project_create_error",
                project=project,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if response.status_code in (200, 201):
            self.logger.info("registry_project_created", project=project)
            return True
        if response.status_code == 409:
            self.logger.info("registry_project_exists", project=project)
            return True

        self.logger.warning(
            "registry_project_create_failed",
            project=project,
            status_code=response.status_code,
            response_text=response.text[:200],
        )
        return False
