"""Unit tests for the pipeline data model."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from shipwright.errors import ImageReferenceConflictError
from shipwright.models import (
    ImageReference,
    PipelineResult,
    RunParameters,
    RunState,
    StageOutcome,
    StageRecord,
)


class TestRunParameters:
    """Tests for run parameter defaults and validation."""

    def test_defaults(self) -> None:
        params = RunParameters(app_name="crm")
        assert params.source_path == Path("app/src")
        assert params.version == "dev"
        assert params.push is True
        assert params.rebuild_base_images is False
        assert params.run_id

    def test_build_number_supplies_version_and_run_id(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the CI build number is the default version and run id."""
        monkeypatch.setenv("BUILD_NUMBER", "1187")
        params = RunParameters(app_name="crm")
        assert params.version == "1187"
        assert params.run_id == "1187"

    def test_random_run_ids_differ(self) -> None:
        assert RunParameters(app_name="crm").run_id != RunParameters(app_name="crm").run_id

    @pytest.mark.parametrize("name", ["CRM", "crm app", "-crm", "crm/"])
    def test_invalid_app_name(self, name: str) -> None:
        with pytest.raises(ValidationError):
            RunParameters(app_name=name)

    def test_latest_is_not_a_version(self) -> None:
        """Test that the floating tag cannot be used as a version."""
        with pytest.raises(ValidationError, match="reserved"):
            RunParameters(app_name="crm", version="latest")

    def test_run_id_is_sanitised(self) -> None:
        params = RunParameters(app_name="crm", version="7", run_id="feature/x#7")
        assert params.run_id == "feature-x-7"

    def test_scope_combines_name_version_and_run(self) -> None:
        params = RunParameters(app_name="crm", version="7", run_id="abc")
        assert params.scope == "crm-7-abc"

    def test_parameters_are_immutable(self) -> None:
        params = RunParameters(app_name="crm", version="7")
        with pytest.raises(ValidationError):
            params.version = "8"  # type: ignore[misc]


class TestImageReference:
    def test_forms(self) -> None:
        ref = ImageReference(registry="harbor.test", project="apps", name="crm", tag="42")
        assert ref.repository == "harbor.test/apps/crm"
        assert ref.versioned == "harbor.test/apps/crm:42"
        assert ref.latest == "harbor.test/apps/crm:latest"
        assert str(ref) == ref.versioned

    def test_parse_with_port(self) -> None:
        ref = ImageReference.parse("harbor.test:8443/apps/crm:42")
        assert ref.registry == "harbor.test:8443"
        assert ref.project == "apps"
        assert ref.name == "crm"
        assert ref.tag == "42"

    def test_parse_nested_project(self) -> None:
        ref = ImageReference.parse("harbor.test/team/apps/crm:1.0")
        assert ref.project == "team/apps"

    @pytest.mark.parametrize("reference", ["harbor.test/apps/crm", "crm:1", "harbor.test:8443/crm"])
    def test_parse_rejects_partial_references(self, reference: str) -> None:
        with pytest.raises(ValueError):
            ImageReference.parse(reference)


class TestRunState:
    """Tests for the single-assignment image reference."""

    @pytest.fixture
    def state(self, tmp_path: Path) -> RunState:
        return RunState(params=RunParameters(app_name="crm", version="42"), workspace=tmp_path)

    @pytest.fixture
    def image(self) -> ImageReference:
        return ImageReference(registry="harbor.test", project="apps", name="crm", tag="42")

    def test_require_image_before_build(self, state: RunState) -> None:
        with pytest.raises(ImageReferenceConflictError):
            state.require_image()

    def test_record_then_require(self, state: RunState, image: ImageReference) -> None:
        state.record_image(image)
        assert state.require_image() is image

    def test_recording_same_image_twice_is_allowed(self, state: RunState, image: ImageReference) -> None:
        state.record_image(image)
        state.record_image(ImageReference.parse(image.versioned))
        assert state.image == image

    def test_recording_different_image_is_refused(self, state: RunState, image: ImageReference) -> None:
        state.record_image(image)
        with pytest.raises(ImageReferenceConflictError):
            state.record_image(image.model_copy(update={"tag": "43"}))
        assert state.image == image


def test_pipeline_result_outcome_of() -> None:
    result = PipelineResult(
        stages=[
            StageRecord(name="validate", outcome=StageOutcome.SUCCEEDED),
            StageRecord(name="publish", outcome=StageOutcome.SKIPPED, detail="push disabled"),
        ]
    )
    assert result.outcome_of("validate") == StageOutcome.SUCCEEDED
    assert result.outcome_of("publish") == StageOutcome.SKIPPED
    assert result.outcome_of("build") is None
