"""Container lifecycle management and smoke testing for Shipwright.

ContainerManager wraps the docker-py container operations the pipeline needs
(run detached, inspect, read logs, force-remove) with async compatibility,
error handling, and structured logging.

SmokeTester uses it to start one throwaway container from a freshly built
image, wait a fixed grace period, and check that the container is still
running. The test container is always removed afterwards.

Example usage:
    >>> from shipwright.config import DockerConfig, SmokeConfig
    >>> from shipwright.pipeline.container import ContainerManager, SmokeTester
    >>>
    >>> manager = ContainerManager(DockerConfig())
    >>> tester = SmokeTester(manager, SmokeConfig(grace_seconds=10))
    >>> result = await tester.run("harbor.local/apps/crm:123", "smoke-crm-123-1187")
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum

from docker.errors import APIError, DockerException, NotFound
from pydantic import BaseModel, Field

import docker
from shipwright.config import DockerConfig, SmokeConfig
from shipwright.errors import SmokeTestError
from shipwright.logging import get_logger
from shipwright.pipeline.docker_ops import connect_docker


class ContainerStatus(str, Enum):
    """Status of a Docker container.

    Attributes:
        RUNNING: Container is running
        PAUSED: Container is paused
        RESTARTING: Container is restarting
        EXITED: Container has exited
        DEAD: Container is dead (non-recoverable error state)
        CREATED: Container has been created but not started
        REMOVING: Container is being removed
        UNKNOWN: Container could not be inspected
    """

    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    EXITED = "exited"
    DEAD = "dead"
    CREATED = "created"
    REMOVING = "removing"
    UNKNOWN = "unknown"


class ContainerAction(BaseModel):
    """Result of a container lifecycle operation.

    Attributes:
        success: Whether the operation completed successfully
        container_id: Docker container ID or name
        action: Action performed (run, remove)
        current_status: Container status after the operation
        error: Error message if operation failed
        duration_seconds: Time taken for the operation
    """

    success: bool = Field(description="Operation success flag")
    container_id: str = Field(description="Container ID or name")
    action: str = Field(description="Action performed")
    current_status: str | None = Field(default=None, description="Status after action")
    error: str | None = Field(default=None, description="Error message if failed")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Operation duration")


class SmokeTestResult(BaseModel):
    """Result of a smoke test.

    Attributes:
        success: Whether the container was running after the grace period
        image: Image reference that was tested
        container_name: Name of the throwaway container
        status: Container status observed after the grace period
        logs: Container log output (captured on failure only)
        removed: Whether the test container was removed afterwards
        duration_seconds: Total test duration
        error: Error message if the test failed
    """

    success: bool = Field(default=False, description="Liveness check passed")
    image: str = Field(description="Tested image")
    container_name: str = Field(description="Test container name")
    status: ContainerStatus = Field(default=ContainerStatus.UNKNOWN, description="Observed status")
    logs: str = Field(default="", description="Captured container logs")
    removed: bool = Field(default=False, description="Container removed")
    duration_seconds: float = Field(default=0.0, ge=0.0, description="Test duration")
    error: str | None = Field(default=None, description="Failure reason")


def _as_status(raw: str | None) -> ContainerStatus:
    try:
        return ContainerStatus(raw or "unknown")
    except ValueError:
        return ContainerStatus.UNKNOWN


class ContainerManager:
    """High-level async Docker container lifecycle manager.

    Attributes:
        config: Docker configuration from ShipwrightConfig
        logger: Structured logger instance
    """

    def __init__(self, config: DockerConfig) -> None:
        """Initialize ContainerManager; the Docker connection is deferred."""
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
                )
                raise

        return self._client

    async def run_detached(
        self,
        image: str,
        name: str,
        environment: dict[str, str] | None = None,
    ) -> ContainerAction:
        """Start a detached container from an image.

        Args:
            image: Image reference to run
            name: Container name
            environment: Environment variables for the container

        Returns:
            ContainerAction with the container ID and initial status
        """
        start_time = time.monotonic()
        self.logger.info("starting_container", image=image, name=name)

        try:
            client = await asyncio.to_thread(self._get_client)
            container = await asyncio.to_thread(
                client.containers.run,
                image,
                name=name,
                detach=True,
                environment=environment or {},
                labels={"shipwright.role": "smoke-test"},
            )
            duration = time.monotonic() - start_time
            self.logger.info(
                "container_started",
                container_id=container.id,
                name=name,
                status=container.status,
                duration_seconds=round(duration, 2),
            )
            return ContainerAction(
                success=True,
                container_id=container.id,
                action="run",
                current_status=container.status,
                duration_seconds=duration,
            )

        except (APIError, DockerException) as e:
            duration = time.monotonic() - start_time
            self.logger.error(
                "container_start_failed",
                image=image,
                name=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ContainerAction(
                success=False,
                container_id=name,
                action="run",
                error=str(e),
                duration_seconds=duration,
            )

    async def get_status(self, container_id: str) -> ContainerStatus:
        """Return the current status of a container."""
        try:
            client = await asyncio.to_thread(self._get_client)
            container = await asyncio.to_thread(client.containers.get, container_id)
            await asyncio.to_thread(container.reload)
            return _as_status(container.status)
        except NotFound:
            self.logger.warning("container_not_found", container_id=container_id)
            return ContainerStatus.UNKNOWN
        except (APIError, DockerException) as e:
            self.logger.error("container_inspect_failed", container_id=container_id, error=str(e))
            return ContainerStatus.UNKNOWN

    async def get_logs(self, container_id: str, tail: int = 200) -> str:
        """Return the tail of a container's combined output."""
        try:
            client = await asyncio.to_thread(self._get_client)
            container = await asyncio.to_thread(client.containers.get, container_id)
            raw: bytes = await asyncio.to_thread(
                container.logs, stdout=True, stderr=True, tail=tail
            )
            return raw.decode("utf-8", errors="replace")
        except (NotFound, APIError, DockerException) as e:
            self.logger.warning("container_logs_unavailable", container_id=container_id, error=str(e))
            return ""

    async def remove_container(self, container_id: str) -> ContainerAction:
        """Force-remove a container. Never raises."""
        start_time = time.monotonic()
        try:
            client = await asyncio.to_thread(self._get_client)
            container = await asyncio.to_thread(client.containers.get, container_id)
            await asyncio.to_thread(container.remove, force=True)
            self.logger.info("container_removed", container_id=container_id)
            return ContainerAction(
                success=True,
                container_id=container_id,
                action="remove",
                current_status="removed",
                duration_seconds=time.monotonic() - start_time,
            )
        except NotFound:
            self.logger.info("container_already_gone", container_id=container_id)
            return ContainerAction(
                success=True,
                container_id=container_id,
                action="remove",
                current_status="removed",
                duration_seconds=time.monotonic() - start_time,
            )
        except (APIError, DockerException) as e:
            self.logger.warning(
                "container_remove_failed",
                container_id=container_id,
                error=str(e),
            )
            return ContainerAction(
                success=False,
                container_id=container_id,
                action="remove",
                error=str(e),
                duration_seconds=time.monotonic() - start_time,
            )

    async def close(self) -> None:
        """Close the Docker client connection."""
        if self._client is not None:
            try:
                await asyncio.to_thread(self._client.close)
            except DockerException as e:
                self.logger.warning("docker_client_close_error", error=str(e))
            finally:
                self._client = None


class SmokeTester:
    """Post-build liveness check.

    Makes no claim about application-level correctness: the check passes
    when the container is still running after the grace period.
    """

    def __init__(self, manager: ContainerManager, config: SmokeConfig) -> None:
        self.manager = manager
        self.config = config
        self.logger = get_logger(__name__)

    @staticmethod
    def container_name(scope: str) -> str:
        """Run-scoped name of the smoke-test container.

        Args:
            scope: Run scope (application, version and run id)
        """
        return f"smoke-{scope}"

    async def run(self, image: str, container_name: str) -> SmokeTestResult:
        """Start the image, wait, check liveness, then tear down.

        Args:
            image: Versioned image reference to test
            container_name: Run-scoped container name

        Returns:
            SmokeTestResult of a passing test

        Raises:
            SmokeTestError: If the container did not start or is not running
                after the grace period
        """
        start_time = time.monotonic()
        self.logger.info(
            "smoke_test_started",
            image=image,
            container_name=container_name,
            grace_seconds=self.config.grace_seconds,
        )

        result = SmokeTestResult(image=image, container_name=container_name)
        container_id: str | None = None
        try:
            started = await self.manager.run_detached(
                image, container_name, environment=self.config.environment
            )
            if not started.success:
                result.error = started.error or "container failed to start"
                raise SmokeTestError(
                    f"Smoke test container {container_name} failed to start: {result.error}",
                    container_name=container_name,
                )
            container_id = started.container_id

            await asyncio.sleep(self.config.grace_seconds)

            result.status = await self.manager.get_status(container_id)
            if result.status != ContainerStatus.RUNNING:
                result.logs = await self.manager.get_logs(container_id, tail=self.config.log_tail)
                result.error = f"container is {result.status.value} after {self.config.grace_seconds}s"
                self.logger.error(
                    "smoke_test_failed",
                    image=image,
                    container_name=container_name,
                    status=result.status.value,
                    logs=result.logs,
                )
                raise SmokeTestError(
                    f"Smoke test failed for {image}: {result.error}",
                    container_name=container_name,
                    logs=result.logs,
                )

            result.success = True
            self.logger.info("smoke_test_passed", image=image, container_name=container_name)
            return result

        finally:
            # a container that never started may belong to a concurrent run
            if container_id is not None:
                removal = await self.manager.remove_container(container_id)
                result.removed = removal.success
            result.duration_seconds = time.monotonic() - start_time
