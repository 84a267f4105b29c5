"""Build context preparation.

Transforms a validated application source tree into a self-contained build
context directory. Every run gets its own directory under the scratch root,
keyed by the run id and a random suffix, so concurrent runs cannot collide.
The directory path is recorded in a run-scoped scratch file that the
cleanup stage reads back.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from pathlib import Path

from shipwright.config import ContextConfig
from shipwright.errors import ContextPreparationError
from shipwright.logging import get_logger
from shipwright.models import BuildContext, RunParameters

CONTEXT_PREFIX = "build-context-"
METADATA_FILE = ".shipwright-context.json"

DOCKERFILE_TEMPLATE = """\
# Generated by shipwright for {app_name}:{version}
ARG BUILDER_ROOTFS_IMAGE
ARG ROOTFS_IMAGE

FROM ${{BUILDER_ROOTFS_IMAGE}} AS builder
COPY project /workdir/project
RUN ["/opt/builder/compile", "/workdir/project", "/workdir/output"]

FROM ${{ROOTFS_IMAGE}}
COPY --from=builder --chown=1001:0 /workdir/output /opt/app
USER 1001
EXPOSE 8080
ENTRYPOINT ["/opt/app/start"]
"""


def scratch_file_for(scratch_root: Path, scope: str) -> Path:
    """Return the scratch file that records the build context of run ``scope``."""
    return scratch_root / f".{CONTEXT_PREFIX}{scope}"


def read_recorded_context(scratch_root: Path, scope: str) -> Path | None:
    """Return the context path recorded for run ``scope``, if any."""
    scratch_file = scratch_file_for(scratch_root, scope)
    try:
        recorded = scratch_file.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return Path(recorded) if recorded else None


class ContextPreparer:
    """Assembles the build context handed to the image builder."""

    def __init__(self, config: ContextConfig, dockerfile: str = "Dockerfile") -> None:
        self.config = config
        self.dockerfile = dockerfile
        self.logger = get_logger(__name__)

    @property
    def scratch_root(self) -> Path:
        """Directory under which per-run contexts are created."""
        if self.config.scratch_root is not None:
            return self.config.scratch_root
        return Path(tempfile.gettempdir()) / "shipwright"

    def prepare(self, source: Path, params: RunParameters, markers: list[str]) -> BuildContext:
        """Create a fresh build context for this run.

        Args:
            source: Validated application source directory
            params: Run parameters (name, version, run id)
            markers: Project markers reported by the validator

        Returns:
            The prepared BuildContext

        Raises:
            ContextPreparationError: If any step of the preparation fails
        """
        scratch_root = self.scratch_root
        context_dir: Path | None = None

        try:
            scratch_root.mkdir(parents=True, exist_ok=True)
            context_dir = Path(
                tempfile.mkdtemp(prefix=f"{CONTEXT_PREFIX}{params.scope}-", dir=scratch_root)
            )

            shutil.copytree(
                source,
                context_dir / "project",
                ignore=shutil.ignore_patterns(*self.config.ignore_patterns),
                symlinks=True,
            )

            source_dockerfile = source / self.dockerfile
            if source_dockerfile.is_file():
                shutil.copy2(source_dockerfile, context_dir / self.dockerfile)
                generated = False
            else:
                (context_dir / self.dockerfile).write_text(
                    DOCKERFILE_TEMPLATE.format(app_name=params.app_name, version=params.version),
                    encoding="utf-8",
                )
                generated = True

            metadata = {
                "app_name": params.app_name,
                "version": params.version,
                "run_id": params.run_id,
                "source": str(source.resolve()),
                "markers": markers,
                "generated_dockerfile": generated,
            }
            (context_dir / METADATA_FILE).write_text(
                json.dumps(metadata, indent=2), encoding="utf-8"
            )

            scratch_file = scratch_file_for(scratch_root, params.scope)
            scratch_file.write_text(str(context_dir), encoding="utf-8")

        except (OSError, shutil.Error) as e:
            self.logger.error(
                "context_preparation_failed",
                source=str(source),
                error=str(e),
                error_type=type(e).__name__,
            )
            if context_dir is not None:
                shutil.rmtree(context_dir, ignore_errors=True)
            raise ContextPreparationError(f"Failed to prepare build context: {e}") from e

        self.logger.info(
            "context_prepared",
            context=str(context_dir),
            scratch_file=str(scratch_file),
            generated_dockerfile=generated,
        )

        return BuildContext(
            path=context_dir,
            scratch_file=scratch_file,
            run_id=params.run_id,
            markers=markers,
        )
