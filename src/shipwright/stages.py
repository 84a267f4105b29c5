"""Pipeline stages.

Each stage is a small object with a precondition predicate and an async
``run`` that reads and updates the shared :class:`RunState`. A stage whose
precondition is false is skipped; skipping is a logged outcome, not a failure.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

from shipwright.config import BaseImagesConfig, RegistryConfig
from shipwright.context import ContextPreparer
from shipwright.errors import BuildFailedError, PushFailedError
from shipwright.logging import get_logger
from shipwright.manifest import ManifestUpdater
from shipwright.models import ImageReference, RunState
from shipwright.pipeline.container import SmokeTester
from shipwright.pipeline.docker_ops import DockerBuildClient
from shipwright.pipeline.git_ops import SourceCheckout
from shipwright.pipeline.registry import RegistryApiClient, RegistryClient
from shipwright.report import ReportGenerator
from shipwright.validator import ApplicationValidator

logger = get_logger(__name__)


def base_image_references(
    registry: RegistryConfig, config: BaseImagesConfig
) -> dict[str, ImageReference]:
    """References of the builder and runtime foundation images."""
    return {
        "builder": ImageReference(
            registry=registry.url,
            project=registry.project,
            name=config.builder_name,
            tag=config.tag,
        ),
        "runtime": ImageReference(
            registry=registry.url,
            project=registry.project,
            name=config.runtime_name,
            tag=config.tag,
        ),
    }


def resolve_source(state: RunState) -> Path:
    """Application source path, relative paths resolved against the workspace."""
    source = state.params.source_path
    return source if source.is_absolute() else state.workspace / source


class Stage(ABC):
    """Abstract base class for every pipeline stage."""

    name: str = "stage"

    def should_run(self, state: RunState) -> bool:
        """Precondition predicate; False skips the stage."""
        return True

    def skip_reason(self, state: RunState) -> str:
        """Human-readable reason recorded when the stage is skipped."""
        return "precondition not met"

    @abstractmethod
    async def run(self, state: RunState) -> str | None:
        """Execute the stage; return an optional detail string."""


class CheckoutStage(Stage):
    name = "checkout"

    def __init__(self, checkout: SourceCheckout) -> None:
        self.checkout = checkout

    def should_run(self, state: RunState) -> bool:
        return self.checkout.enabled

    def skip_reason(self, state: RunState) -> str:
        return "no repository configured; using existing workspace"

    async def run(self, state: RunState) -> str | None:
        sha = await asyncio.to_thread(self.checkout.checkout, state.workspace)
        state.workspace = state.workspace / self.checkout.config.directory
        return f"checked out {sha[:12]} into {state.workspace}"


class BaseImagesStage(Stage):
    """Builds and publishes the builder and runtime foundation images."""

    name = "base_images"

    def __init__(
        self,
        config: BaseImagesConfig,
        registry: RegistryConfig,
        build_client: DockerBuildClient,
        registry_client: RegistryClient,
        api_client: RegistryApiClient,
    ) -> None:
        self.config = config
        self.registry = registry
        self.build_client = build_client
        self.registry_client = registry_client
        self.api_client = api_client

    def should_run(self, state: RunState) -> bool:
        return state.params.rebuild_base_images

    def skip_reason(self, state: RunState) -> str:
        return "base image rebuild not requested"

    async def run(self, state: RunState) -> str | None:
        directory = self.config.directory
        if not directory.is_absolute():
            directory = state.workspace / directory

        references = base_image_references(self.registry, self.config)
        dockerfiles = {
            "builder": self.config.builder_dockerfile,
            "runtime": self.config.runtime_dockerfile,
        }

        for role, reference in references.items():
            result = await self.build_client.build_image(
                directory, tag=reference.versioned, dockerfile=dockerfiles[role], pull=True
            )
            if not result.success:
                raise BuildFailedError(
                    f"Base image {reference.versioned} failed to build: {result.error}",
                    image=reference.versioned,
                    build_log=result.build_log,
                )
            state.base_images[role] = reference.versioned

        if not state.params.push:
            logger.info("base_images_not_pushed", reason="push disabled")
            return "built " + ", ".join(state.base_images.values())

        if self.registry.create_project:
            await self.api_client.ensure_project()
        for tag in state.base_images.values():
            push = await self.registry_client.push_image(tag)
            if not push.success:
                raise PushFailedError(f"Failed to push {tag}: {push.error}", image_tag=tag)

        return "built and pushed " + ", ".join(state.base_images.values())


class ValidateStage(Stage):
    name = "validate"

    def __init__(self, validator: ApplicationValidator) -> None:
        self.validator = validator
        self.markers: list[str] = []

    async def run(self, state: RunState) -> str | None:
        self.markers = self.validator.validate(resolve_source(state))
        return "markers: " + ", ".join(self.markers)


class PrepareContextStage(Stage):
    name = "prepare_context"

    def __init__(self, preparer: ContextPreparer, validate_stage: ValidateStage) -> None:
        self.preparer = preparer
        self.validate_stage = validate_stage

    async def run(self, state: RunState) -> str | None:
        state.context = await asyncio.to_thread(
            self.preparer.prepare, resolve_source(state), state.params, self.validate_stage.markers
        )
        return str(state.context.path)


class BuildStage(Stage):
    """Builds the versioned application image and records its reference."""

    name = "build"

    def __init__(
        self,
        registry: RegistryConfig,
        base_images: BaseImagesConfig,
        build_client: DockerBuildClient,
    ) -> None:
        self.registry = registry
        self.base_images = base_images
        self.build_client = build_client

    async def run(self, state: RunState) -> str | None:
        if state.context is None:
            raise BuildFailedError("No build context prepared", image="")

        reference = self.build_client.generate_reference(
            self.registry.url, self.registry.project, state.params.app_name, state.params.version
        )

        bases = {
            role: ref.versioned
            for role, ref in base_image_references(self.registry, self.base_images).items()
        }
        bases.update(state.base_images)
        build_args = {
            "ROOTFS_IMAGE": bases["runtime"],
            "BUILDER_ROOTFS_IMAGE": bases["builder"],
        }

        result = await self.build_client.build_image(
            state.context.path, tag=reference.versioned, build_args=build_args
        )
        if not result.success:
            raise BuildFailedError(
                f"Image build failed for {reference.versioned}: {result.error}",
                image=reference.versioned,
                build_log=result.build_log,
            )

        if not await self.build_client.tag_latest(result.image_id, reference):
            raise BuildFailedError(
                f"Could not tag {reference.latest}", image=reference.versioned
            )

        state.record_image(reference)
        return f"{reference.versioned} ({result.image_id[:19]})"


class SmokeTestStage(Stage):
    name = "smoke_test"

    def __init__(self, tester: SmokeTester) -> None:
        self.tester = tester

    def should_run(self, state: RunState) -> bool:
        return self.tester.config.enabled

    def skip_reason(self, state: RunState) -> str:
        return "smoke test disabled"

    async def run(self, state: RunState) -> str | None:
        image = state.require_image()
        name = SmokeTester.container_name(state.params.scope)
        result = await self.tester.run(image.versioned, name)
        return f"{name} {result.status.value} after {self.tester.config.grace_seconds}s"


class PublishStage(Stage):
    """Pushes the versioned and latest tags; entirely skipped when push is off."""

    name = "publish"

    def __init__(
        self,
        registry: RegistryConfig,
        registry_client: RegistryClient,
        api_client: RegistryApiClient,
    ) -> None:
        self.registry = registry
        self.registry_client = registry_client
        self.api_client = api_client

    def should_run(self, state: RunState) -> bool:
        return state.params.push

    def skip_reason(self, state: RunState) -> str:
        return "push disabled"

    async def run(self, state: RunState) -> str | None:
        image = state.require_image()

        if self.registry.create_project:
            await self.api_client.ensure_project(image.project)

        for tag in (image.versioned, image.latest):
            result = await self.registry_client.push_image(tag)
            if not result.success:
                raise PushFailedError(f"Failed to push {tag}: {result.error}", image_tag=tag)
            state.digests[tag] = result.digest

        return "pushed " + ", ".join(state.digests)


class ManifestStage(Stage):
    name = "manifest"

    def __init__(self, updater: ManifestUpdater) -> None:
        self.updater = updater

    def should_run(self, state: RunState) -> bool:
        return self.updater.descriptor_path(state.workspace).is_file()

    def skip_reason(self, state: RunState) -> str:
        return "no deployment descriptor"

    async def run(self, state: RunState) -> str | None:
        update = await asyncio.to_thread(
            self.updater.update, state.workspace, state.require_image()
        )
        state.manifest_commit = update.commit_sha
        if update.commit_sha:
            return f"{update.replaced} line(s) updated, commit {update.commit_sha[:8]}"
        return f"{update.replaced} line(s) updated, no commit"


class ReportStage(Stage):
    name = "report"

    def __init__(self, generator: ReportGenerator) -> None:
        self.generator = generator

    async def run(self, state: RunState) -> str | None:
        return str(self.generator.write(state))
