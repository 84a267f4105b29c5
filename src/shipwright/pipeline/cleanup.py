"""Always-run teardown of per-run resources.

Removes the run's build context directory and scratch file, then prunes the
builder cache and dangling image layers. Every step is best-effort so that
cleanup never masks or replaces the outcome of the run.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from pydantic import BaseModel

from shipwright.config import DockerConfig
from shipwright.context import CONTEXT_PREFIX, read_recorded_context, scratch_file_for
from shipwright.logging import get_logger
from shipwright.models import RunState
from shipwright.pipeline.docker_ops import DockerBuildClient


class CleanupReport(BaseModel):
    """What cleanup managed to do."""

    context_removed: bool = False
    scratch_file_removed: bool = False
    build_cache_pruned: bool = False
    images_pruned: bool = False


class Cleanup:
    """Releases the resources of one pipeline run."""

    def __init__(self, config: DockerConfig, docker_client: DockerBuildClient) -> None:
        self.config = config
        self.docker_client = docker_client
        self.logger = get_logger(__name__)

    def remove_context(self, state: RunState, scratch_root: Path) -> CleanupReport:
        """Remove this run's build context and scratch file.

        Only paths recorded for this run are touched. A recorded path outside
        the scratch root, or not named like a build context, is left alone.
        """
        report = CleanupReport()
        scope = state.params.scope

        context_path: Path | None = state.context.path if state.context else None
        if context_path is None:
            context_path = read_recorded_context(scratch_root, scope)

        if context_path is not None:
            if self._owned(context_path, scratch_root, scope):
                try:
                    shutil.rmtree(context_path)
                    report.context_removed = True
                    self.logger.info("build_context_removed", path=str(context_path))
                except FileNotFoundError:
                    report.context_removed = True
                except OSError as e:
                    self.logger.warning(
                        "build_context_remove_failed",
                        path=str(context_path),
                        error=str(e),
                    )
            else:
                self.logger.warning(
                    "build_context_not_owned",
                    path=str(context_path),
                    scratch_root=str(scratch_root),
                )

        scratch_file = state.context.scratch_file if state.context else scratch_file_for(scratch_root, scope)
        try:
            scratch_file.unlink()
            report.scratch_file_removed = True
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning("scratch_file_remove_failed", path=str(scratch_file), error=str(e))

        return report

    @staticmethod
    def _owned(path: Path, scratch_root: Path, scope: str) -> bool:
        try:
            path.resolve().relative_to(scratch_root.resolve())
        except ValueError:
            return False
        return path.name.startswith(f"{CONTEXT_PREFIX}{scope}-")

    async def run(self, state: RunState, scratch_root: Path) -> CleanupReport:
        """Run every teardown step, swallowing individual failures."""
        report = self.remove_context(state, scratch_root)

        if self.config.prune_build_cache:
            report.build_cache_pruned = await self.docker_client.prune_build_cache()
        report.images_pruned = await self.docker_client.prune_dangling_images()

        self.logger.info("cleanup_finished", **report.model_dump())
        return report
