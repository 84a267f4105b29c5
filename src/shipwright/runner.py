"""Sequential promotion pipeline.

Runs the stages in order within a single thread of control. The first failing
stage aborts the run; cleanup always runs afterwards, on success and failure
alike, and never changes the run's outcome.

Example usage:
    >>> from shipwright.config import load_config
    >>> from shipwright.models import RunParameters
    >>> from shipwright.runner import PromotionPipeline
    >>>
    >>> params = RunParameters(app_name="crm", version="123")
    >>> result = await PromotionPipeline(load_config(), params, Path.cwd()).run()
    >>> result.success
"""

from __future__ import annotations

import time
from pathlib import Path

from rich.console import Console

from shipwright.config import ShipwrightConfig
from shipwright.context import ContextPreparer
from shipwright.errors import ShipwrightError, StageError
from shipwright.logging import bind_run_context, get_logger, set_correlation_id
from shipwright.manifest import ManifestUpdater
from shipwright.models import PipelineResult, RunParameters, RunState, StageOutcome, StageRecord
from shipwright.pipeline.cleanup import Cleanup
from shipwright.pipeline.container import ContainerManager, SmokeTester
from shipwright.pipeline.docker_ops import DockerBuildClient
from shipwright.pipeline.git_ops import SourceCheckout
from shipwright.pipeline.registry import RegistryApiClient, RegistryClient
from shipwright.report import ReportGenerator
from shipwright.stages import (
    BaseImagesStage,
    BuildStage,
    CheckoutStage,
    ManifestStage,
    PrepareContextStage,
    PublishStage,
    ReportStage,
    SmokeTestStage,
    Stage,
    ValidateStage,
)
from shipwright.validator import ApplicationValidator

CLEANUP_STAGE = "cleanup"


class PromotionPipeline:
    """Builds, tests, publishes and records one application image.

    Collaborating clients can be injected; otherwise they are created from
    the configuration.
    """

    def __init__(
        self,
        config: ShipwrightConfig,
        params: RunParameters,
        workspace: Path,
        build_client: DockerBuildClient | None = None,
        container_manager: ContainerManager | None = None,
        registry_client: RegistryClient | None = None,
        api_client: RegistryApiClient | None = None,
        console: Console | None = None,
    ) -> None:
        self.config = config
        self.params = params
        self.workspace = workspace
        self.logger = get_logger(__name__)

        self.build_client = build_client or DockerBuildClient(config.docker)
        self.container_manager = container_manager or ContainerManager(config.docker)
        self.registry_client = registry_client or RegistryClient(config.docker, config.registry)
        self.api_client = api_client or RegistryApiClient(config.registry)
        self.console = console

        self.preparer = ContextPreparer(config.context, dockerfile=config.docker.dockerfile)
        self.cleanup = Cleanup(config.docker, self.build_client)
        self.stages = self.build_stages()

    def build_stages(self) -> list[Stage]:
        """Assemble the ordered stage list."""
        validate = ValidateStage(ApplicationValidator(self.config.validator))
        return [
            CheckoutStage(SourceCheckout(self.config.checkout)),
            BaseImagesStage(
                self.config.base_images,
                self.config.registry,
                self.build_client,
                self.registry_client,
                self.api_client,
            ),
            validate,
            PrepareContextStage(self.preparer, validate),
            BuildStage(self.config.registry, self.config.base_images, self.build_client),
            SmokeTestStage(SmokeTester(self.container_manager, self.config.smoke)),
            PublishStage(self.config.registry, self.registry_client, self.api_client),
            ManifestStage(ManifestUpdater(self.config.manifest)),
            ReportStage(ReportGenerator(self.config.report, self.config.registry, self.console)),
        ]

    async def _run_stage(self, stage: Stage, state: RunState, result: PipelineResult) -> bool:
        """Run one stage and append its record. Returns False on failure."""
        if not stage.should_run(state):
            reason = stage.skip_reason(state)
            self.logger.info("stage_skipped", stage=stage.name, reason=reason)
            result.stages.append(
                StageRecord(name=stage.name, outcome=StageOutcome.SKIPPED, detail=reason)
            )
            return True

        self.logger.info("stage_started", stage=stage.name)
        start = time.perf_counter()
        try:
            detail = await stage.run(state)
        except ShipwrightError as e:
            error: ShipwrightError = e
        except Exception as e:  # noqa: BLE001  (wrapped and reported below)
            self.logger.error(
                "stage_raised_unexpected_error", stage=stage.name, exc_info=True
            )
            error = StageError(stage.name, e)
        else:
            elapsed = time.perf_counter() - start
            self.logger.info(
                "stage_succeeded", stage=stage.name, duration_seconds=round(elapsed, 2), detail=detail
            )
            result.stages.append(
                StageRecord(
                    name=stage.name,
                    outcome=StageOutcome.SUCCEEDED,
                    duration_seconds=elapsed,
                    detail=detail,
                )
            )
            return True

        elapsed = time.perf_counter() - start
        self.logger.error(
            "stage_failed",
            stage=stage.name,
            error=str(error),
            error_type=type(error).__name__,
            duration_seconds=round(elapsed, 2),
        )
        result.stages.append(
            StageRecord(
                name=stage.name,
                outcome=StageOutcome.FAILED,
                duration_seconds=elapsed,
                detail=str(error),
            )
        )
        result.error = str(error)
        result.error_type = type(error).__name__
        return False

    async def run(self) -> PipelineResult:
        """Execute every stage, then clean up.

        Returns:
            PipelineResult with one record per stage plus the cleanup record
        """
        set_correlation_id(self.params.scope)
        bind_run_context(self.params.run_id, self.params.app_name, self.params.version)

        state = RunState(params=self.params, workspace=self.workspace)
        result = PipelineResult()
        self.logger.info(
            "pipeline_started",
            source=str(self.params.source_path),
            push=self.params.push,
            rebuild_base_images=self.params.rebuild_base_images,
        )

        try:
            for stage in self.stages:
                if not await self._run_stage(stage, state, result):
                    break
            else:
                result.success = True
        finally:
            await self._cleanup(state, result)

        result.image = state.image
        self.logger.info(
            "pipeline_finished",
            success=result.success,
            image=state.image.versioned if state.image else None,
            error=result.error,
        )
        return result

    async def _cleanup(self, state: RunState, result: PipelineResult) -> None:
        """Always-run teardown; failures here are logged and swallowed."""
        start = time.perf_counter()
        try:
            report = await self.cleanup.run(state, self.preparer.scratch_root)
            detail = ", ".join(k for k, v in report.model_dump().items() if v) or "nothing to do"
            outcome = StageOutcome.SUCCEEDED
        except Exception as e:  # noqa: BLE001  (cleanup must not replace the run outcome)
            self.logger.warning("cleanup_failed", error=str(e), error_type=type(e).__name__)
            detail = str(e)
            outcome = StageOutcome.FAILED
        finally:
            for client in (self.build_client, self.container_manager, self.registry_client, self.api_client):
                await client.close()

        result.stages.append(
            StageRecord(
                name=CLEANUP_STAGE,
                outcome=outcome,
                duration_seconds=time.perf_counter() - start,
                detail=detail,
            )
        )
