"""Integration tests for per-run cleanup."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError

from shipwright.config import ContextConfig, DockerConfig
from shipwright.context import ContextPreparer, scratch_file_for
from shipwright.models import RunParameters, RunState
from shipwright.pipeline.cleanup import Cleanup
from shipwright.pipeline.docker_ops import DockerBuildClient


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "src"
    path.mkdir()
    (path / "crm.mpr").write_bytes(b"")
    return path


@pytest.fixture
def preparer(scratch_root: Path) -> ContextPreparer:
    return ContextPreparer(ContextConfig(scratch_root=scratch_root))


@pytest.fixture
def build_client(mock_docker: MagicMock) -> DockerBuildClient:
    client = DockerBuildClient(DockerConfig())
    client._client = mock_docker
    return client


@pytest.fixture
def cleanup(build_client: DockerBuildClient) -> Cleanup:
    return Cleanup(DockerConfig(), build_client)


def _prepared_state(preparer: ContextPreparer, source: Path, run_id: str) -> RunState:
    params = RunParameters(app_name="crm", version="42", run_id=run_id)
    state = RunState(params=params, workspace=source.parent)
    state.context = preparer.prepare(source, params, ["crm.mpr"])
    return state


class TestRemoveContext:
    def test_removes_own_context_and_scratch_file(
        self, cleanup: Cleanup, preparer: ContextPreparer, source: Path, scratch_root: Path
    ) -> None:
        state = _prepared_state(preparer, source, "a")
        assert state.context is not None

        report = cleanup.remove_context(state, scratch_root)

        assert report.context_removed is True
        assert report.scratch_file_removed is True
        assert not state.context.path.exists()
        assert not state.context.scratch_file.exists()

    def test_concurrent_run_is_untouched(
        self, cleanup: Cleanup, preparer: ContextPreparer, source: Path, scratch_root: Path
    ) -> None:
        """Cleaning up one run leaves another run's context in place."""
        mine = _prepared_state(preparer, source, "a")
        theirs = _prepared_state(preparer, source, "b")
        assert mine.context is not None and theirs.context is not None

        cleanup.remove_context(mine, scratch_root)

        assert not mine.context.path.exists()
        assert theirs.context.path.exists()
        assert theirs.context.scratch_file.exists()

    def test_uses_recorded_scratch_file(
        self, cleanup: Cleanup, preparer: ContextPreparer, source: Path, scratch_root: Path
    ) -> None:
        """A context recorded on disk is found even when the state lost it."""
        state = _prepared_state(preparer, source, "a")
        assert state.context is not None
        context_path = state.context.path
        state.context = None

        report = cleanup.remove_context(state, scratch_root)

        assert report.context_removed is True
        assert not context_path.exists()
        assert not scratch_file_for(scratch_root, state.params.scope).exists()

    def test_nothing_to_remove(self, cleanup: Cleanup, scratch_root: Path, tmp_path: Path) -> None:
        state = RunState(params=RunParameters(app_name="crm", version="42"), workspace=tmp_path)
        report = cleanup.remove_context(state, scratch_root)
        assert report.context_removed is False
        assert report.scratch_file_removed is False

    def test_foreign_path_is_never_removed(
        self, cleanup: Cleanup, scratch_root: Path, tmp_path: Path
    ) -> None:
        """A scratch file pointing outside the scratch root is ignored."""
        precious = tmp_path / "precious"
        precious.mkdir()
        state = RunState(params=RunParameters(app_name="crm", version="42", run_id="a"), workspace=tmp_path)
        scratch_file_for(scratch_root, state.params.scope).write_text(str(precious))

        report = cleanup.remove_context(state, scratch_root)

        assert report.context_removed is False
        assert precious.exists()

    def test_other_runs_directory_is_never_removed(
        self, cleanup: Cleanup, preparer: ContextPreparer, source: Path, scratch_root: Path
    ) -> None:
        theirs = _prepared_state(preparer, source, "b")
        assert theirs.context is not None
        mine = RunState(params=RunParameters(app_name="crm", version="42", run_id="a"), workspace=source.parent)
        scratch_file_for(scratch_root, mine.params.scope).write_text(str(theirs.context.path))

        cleanup.remove_context(mine, scratch_root)

        assert theirs.context.path.exists()


class TestRun:
    @pytest.mark.asyncio
    async def test_prunes_cache_and_images(
        self,
        cleanup: Cleanup,
        preparer: ContextPreparer,
        source: Path,
        scratch_root: Path,
        mock_docker: MagicMock,
    ) -> None:
        state = _prepared_state(preparer, source, "a")

        report = await cleanup.run(state, scratch_root)

        assert report.context_removed is True
        assert report.build_cache_pruned is True
        assert report.images_pruned is True
        mock_docker.api.prune_builds.assert_called_once()
        mock_docker.images.prune.assert_called_once_with(filters={"dangling": True})

    @pytest.mark.asyncio
    async def test_build_cache_prune_disabled(
        self, build_client: DockerBuildClient, scratch_root: Path, tmp_path: Path, mock_docker: MagicMock
    ) -> None:
        cleanup = Cleanup(DockerConfig(prune_build_cache=False), build_client)
        state = RunState(params=RunParameters(app_name="crm", version="42"), workspace=tmp_path)

        report = await cleanup.run(state, scratch_root)

        assert report.build_cache_pruned is False
        mock_docker.api.prune_builds.assert_not_called()

    @pytest.mark.asyncio
    async def test_prune_failure_does_not_raise(
        self, cleanup: Cleanup, scratch_root: Path, tmp_path: Path, mock_docker: MagicMock
    ) -> None:
        mock_docker.images.prune.side_effect = APIError("a prune operation is already running")
        state = RunState(params=RunParameters(app_name="crm", version="42"), workspace=tmp_path)

        report = await cleanup.run(state, scratch_root)

        assert report.images_pruned is False
