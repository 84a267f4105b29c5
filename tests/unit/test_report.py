"""Unit tests for the deployment report."""

from __future__ import annotations

from io import StringIO
from pathlib import Path

import pytest
from rich.console import Console

from shipwright.config import RegistryConfig, ReportConfig
from shipwright.errors import ImageReferenceConflictError
from shipwright.models import ImageReference, RunParameters, RunState
from shipwright.report import ReportGenerator


@pytest.fixture
def generator() -> ReportGenerator:
    return ReportGenerator(
        ReportConfig(namespace="production"),
        RegistryConfig(url="harbor.test", project="apps"),
        console=Console(file=StringIO(), width=120),
    )


def _state(tmp_path: Path, push: bool = True) -> RunState:
    state = RunState(
        params=RunParameters(app_name="crm", version="42", run_id="42", push=push),
        workspace=tmp_path,
    )
    state.record_image(ImageReference(registry="harbor.test", project="apps", name="crm", tag="42"))
    return state


def test_render_contains_reference_and_commands(generator: ReportGenerator, tmp_path: Path) -> None:
    state = _state(tmp_path)
    state.digests = {"harbor.test/apps/crm:42": "sha256:abc"}

    text = generator.render(state)

    assert "Image       : harbor.test/apps/crm:42" in text
    assert "Latest      : harbor.test/apps/crm:latest" in text
    assert "Registry    : https://harbor.test" in text
    assert "Pushed      : yes" in text
    assert "harbor.test/apps/crm:42 -> sha256:abc" in text
    assert "docker pull harbor.test/apps/crm:42" in text
    assert "kubectl -n production set image deployment/crm crm=harbor.test/apps/crm:42" in text
    assert "kubectl -n production rollout status deployment/crm" in text


def test_render_unpushed(generator: ReportGenerator, tmp_path: Path) -> None:
    text = generator.render(_state(tmp_path, push=False))
    assert "Pushed      : no" in text
    assert "Digest" not in text


def test_write_creates_file_and_records_path(generator: ReportGenerator, tmp_path: Path) -> None:
    state = _state(tmp_path)

    path = generator.write(state)

    assert path == tmp_path / "deployment-info.txt"
    assert state.report_path == path
    assert "harbor.test/apps/crm:42" in path.read_text()
    assert "Deployment Summary" in generator.console.file.getvalue()


def test_write_into_configured_directory(tmp_path: Path) -> None:
    generator = ReportGenerator(
        ReportConfig(directory=Path("out/reports")),
        RegistryConfig(url="harbor.test", project="apps"),
        console=Console(file=StringIO()),
    )
    path = generator.write(_state(tmp_path))
    assert path == tmp_path / "out" / "reports" / "deployment-info.txt"


def test_render_requires_built_image(generator: ReportGenerator, tmp_path: Path) -> None:
    state = RunState(params=RunParameters(app_name="crm", version="42"), workspace=tmp_path)
    with pytest.raises(ImageReferenceConflictError):
        generator.render(state)
