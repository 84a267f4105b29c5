"""Engine-facing pipeline operations for Shipwright.

This module implements Docker image builds, registry pushes and project
creation, smoke-test container management, git operations, and per-run
cleanup.
"""

from __future__ import annotations

from shipwright.pipeline.cleanup import Cleanup, CleanupReport
from shipwright.pipeline.container import (
    ContainerAction,
    ContainerManager,
    ContainerStatus,
    SmokeTester,
    SmokeTestResult,
)
from shipwright.pipeline.docker_ops import (
    BuildResult,
    BuildStatus,
    DockerBuildClient,
    connect_docker,
)
from shipwright.pipeline.git_ops import GitManager, SourceCheckout
from shipwright.pipeline.registry import (
    PushResult,
    PushStatus,
    RegistryApiClient,
    RegistryAuth,
    RegistryClient,
    auth_from_config,
)

__all__ = [
    # Docker build
    "BuildResult",
    "BuildStatus",
    "DockerBuildClient",
    "connect_docker",
    # Git operations
    "GitManager",
    "SourceCheckout",
    # Registry operations
    "PushResult",
    "PushStatus",
    "RegistryApiClient",
    "RegistryAuth",
    "RegistryClient",
    "auth_from_config",
    # Container management
    "ContainerAction",
    "ContainerManager",
    "ContainerStatus",
    "SmokeTestResult",
    "SmokeTester",
    # Cleanup
    "Cleanup",
    "CleanupReport",
]
