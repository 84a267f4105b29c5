"""Data model shared by all pipeline stages.

Run parameters are immutable for the duration of a run. The image reference
is produced once by the application image builder and stored in
:class:`RunState`; every later stage reads it from there.
"""

from __future__ import annotations

import os
import re
import secrets
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shipwright.errors import ImageReferenceConflictError

_NAME_PATTERN = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")


def _default_version() -> str:
    return os.environ.get("BUILD_NUMBER") or "dev"


def _default_run_id() -> str:
    return os.environ.get("BUILD_NUMBER") or secrets.token_hex(4)


class RunParameters(BaseModel):
    """Inputs supplied at invocation.

    Attributes:
        source_path: Directory holding the application sources
        app_name: Application (image repository) name
        version: Version tag of the application image
        push: Push the built image to the registry
        rebuild_base_images: Rebuild and publish the foundation images first
        run_id: Run-scoped unique token for shared-namespace resources
    """

    model_config = ConfigDict(frozen=True)

    source_path: Path = Field(default=Path("app/src"), description="Application source path")
    app_name: str = Field(description="Application name")
    version: str = Field(default_factory=_default_version, description="Image version tag")
    push: bool = Field(default=True, description="Push to registry")
    rebuild_base_images: bool = Field(default=False, description="Rebuild base images")
    run_id: str = Field(default_factory=_default_run_id, description="Run-scoped identifier")

    @field_validator("app_name")
    @classmethod
    def validate_app_name(cls, v: str) -> str:
        """Validate the name is usable as a repository path component."""
        if not _NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid application name: '{v}'. "
                "Use lowercase letters, digits and single separators."
            )
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate the version is a legal image tag."""
        if not _TAG_PATTERN.match(v):
            raise ValueError(f"Invalid version tag: '{v}'")
        if v == "latest":
            raise ValueError("Version tag 'latest' is reserved for the floating tag")
        return v

    @field_validator("run_id")
    @classmethod
    def validate_run_id(cls, v: str) -> str:
        """Run ids end up in file and container names."""
        cleaned = re.sub(r"[^A-Za-z0-9_.-]", "-", v).strip("-.")
        if not cleaned:
            raise ValueError(f"Invalid run id: '{v}'")
        return cleaned

    @property
    def scope(self) -> str:
        """Identifier combining application, version and run id."""
        return f"{self.app_name}-{self.version}-{self.run_id}"


class ImageReference(BaseModel):
    """Fully qualified image reference ``registry/project/name:tag``."""

    model_config = ConfigDict(frozen=True)

    registry: str
    project: str
    name: str
    tag: str

    @property
    def repository(self) -> str:
        """Reference without tag."""
        return f"{self.registry}/{self.project}/{self.name}"

    @property
    def versioned(self) -> str:
        """Reference with the immutable version tag."""
        return f"{self.repository}:{self.tag}"

    @property
    def latest(self) -> str:
        """Reference with the floating ``latest`` tag."""
        return f"{self.repository}:latest"

    def __str__(self) -> str:
        return self.versioned

    @classmethod
    def parse(cls, reference: str) -> ImageReference:
        """Parse ``registry/project/name:tag``.

        Raises:
            ValueError: If the reference does not have three path components and a tag
        """
        path, sep, tag = reference.rpartition(":")
        if not sep or "/" in tag:
            raise ValueError(f"Image reference has no tag: '{reference}'")
        parts = path.split("/")
        if len(parts) < 3:
            raise ValueError(f"Expected registry/project/name:tag, got '{reference}'")
        registry = parts[0]
        name = parts[-1]
        project = "/".join(parts[1:-1])
        return cls(registry=registry, project=project, name=name, tag=tag)


class BuildContext(BaseModel):
    """A prepared, self-contained build context directory.

    Attributes:
        path: Directory handed to the image builder
        scratch_file: File recording ``path`` for later stages and cleanup
        run_id: Run that owns the directory
        markers: Project markers detected in the source
    """

    path: Path
    scratch_file: Path
    run_id: str
    markers: list[str] = Field(default_factory=list)


class StageOutcome(str, Enum):
    """Outcome of a single stage."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class StageRecord(BaseModel):
    """Execution record of one stage."""

    name: str
    outcome: StageOutcome
    duration_seconds: float = Field(default=0.0, ge=0.0)
    detail: str | None = None


@dataclass
class RunState:
    """Pipeline-scoped values handed from stage to stage.

    Attributes:
        params: Immutable run parameters
        workspace: Root directory for relative paths
        image: Reference recorded by the application image builder
        context: Prepared build context
        base_images: Base image references keyed by role (builder, runtime)
        digests: Registry digests keyed by pushed tag
        manifest_commit: SHA of the deployment descriptor commit
        report_path: Path of the generated deployment report
    """

    params: RunParameters
    workspace: Path
    image: ImageReference | None = None
    context: BuildContext | None = None
    base_images: dict[str, str] = field(default_factory=dict)
    digests: dict[str, str | None] = field(default_factory=dict)
    manifest_commit: str | None = None
    report_path: Path | None = None

    def record_image(self, image: ImageReference) -> None:
        """Record the built image reference exactly once."""
        if self.image is not None and self.image != image:
            raise ImageReferenceConflictError(
                f"Image already recorded as {self.image.versioned}, refusing {image.versioned}"
            )
        self.image = image

    def require_image(self) -> ImageReference:
        """Return the recorded image reference.

        Raises:
            ImageReferenceConflictError: If no image has been built in this run
        """
        if self.image is None:
            raise ImageReferenceConflictError("No image reference recorded for this run")
        return self.image


class PipelineResult(BaseModel):
    """Result of a full pipeline run."""

    success: bool = False
    stages: list[StageRecord] = Field(default_factory=list)
    image: ImageReference | None = None
    error: str | None = None
    error_type: str | None = None

    def outcome_of(self, stage: str) -> StageOutcome | None:
        """Return the outcome of the named stage, None if it never ran."""
        for record in self.stages:
            if record.name == stage:
                return record.outcome
        return None
