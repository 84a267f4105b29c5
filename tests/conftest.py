"""Shared pytest fixtures.

Provides an isolated environment (no SHIPWRIGHT_*, BUILD_NUMBER or registry
credential variables leak in from the CI host), a configuration rooted in
the test's temporary directory, and an application workspace that is a
real git repository.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import MagicMock

import git
import pytest

from shipwright.config import (
    ContextConfig,
    RegistryConfig,
    ShipwrightConfig,
    SmokeConfig,
)

DEPLOYMENT_YAML = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: crm
spec:
  template:
    spec:
      containers:
        - name: crm
          image: harbor.test/apps/crm:1
          ports:
            - containerPort: 8080
        - name: sidecar
          image: harbor.test/infra/proxy:2.4
"""

IMAGE_ID = "sha256:" + "a" * 64
DIGEST = "sha256:" + "b" * 64


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove host variables that change configuration defaults."""
    for key in list(os.environ):
        if key.startswith("SHIPWRIGHT_"):
            monkeypatch.delenv(key, raising=False)
    for key in ("BUILD_NUMBER", "DOCKER_HOST", "REGISTRY_USERNAME", "REGISTRY_PASSWORD", "REGISTRY_TOKEN"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def scratch_root(tmp_path: Path) -> Path:
    """Scratch directory for build contexts."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def config(scratch_root: Path) -> ShipwrightConfig:
    """Test configuration: local scratch root, no smoke grace period."""
    return ShipwrightConfig(
        registry=RegistryConfig(url="harbor.test", project="apps", create_project=False),
        context=ContextConfig(scratch_root=scratch_root),
        smoke=SmokeConfig(grace_seconds=0),
    )


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Workspace git repository holding an application project and descriptor.

    Returns:
        Path to the workspace root
    """
    root = tmp_path / "workspace"
    source = root / "app" / "src"
    source.mkdir(parents=True)
    (source / "crm.mpr").write_bytes(b"model descriptor")
    (source / "model").mkdir()
    (source / "model" / "module.json").write_text("{}")

    manifest = root / "k8s" / "deployment.yaml"
    manifest.parent.mkdir()
    manifest.write_text(DEPLOYMENT_YAML)

    repo = git.Repo.init(root)
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()
    repo.git.add(A=True)
    repo.index.commit("Initial commit")

    return root


@pytest.fixture
def mock_docker() -> MagicMock:
    """Docker client mock whose build, run and push calls all succeed."""
    client = MagicMock()

    image = MagicMock()
    image.id = IMAGE_ID
    image.tags = []
    image.tag.return_value = True
    client.images.build.return_value = (image, [{"stream": "Step 1/2 : FROM base\n"}])
    client.images.get.return_value = image
    client.images.push.return_value = [
        {"status": "Pushing", "progress": "[=====>  ]"},
        {"status": "Pushed"},
        {"aux": {"Tag": "42", "Digest": DIGEST, "Size": 1234}},
    ]
    client.images.prune.return_value = {"ImagesDeleted": None, "SpaceReclaimed": 0}
    client.api.prune_builds.return_value = {"SpaceReclaimed": 0}

    container = MagicMock()
    container.id = "c0ffee"
    container.status = "running"
    container.logs.return_value = b"started\n"
    client.containers.run.return_value = container
    client.containers.get.return_value = container

    return client
