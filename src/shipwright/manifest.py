"""Deployment descriptor update.

Rewrites the ``image:`` lines of a deployment descriptor that point at the
application's repository and commits the change. The descriptor is optional
infrastructure: when it does not exist, nothing is written and nothing is
committed.
"""

from __future__ import annotations

import re
from pathlib import Path

from git import Actor, GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from pydantic import BaseModel, Field

from shipwright.config import ManifestConfig
from shipwright.logging import get_logger
from shipwright.models import ImageReference
from shipwright.pipeline.git_ops import GitManager

_IMAGE_LINE = re.compile(
    r"^(?P<prefix>\s*(?:-\s+)?image:\s*)(?P<quote>[\"']?)(?P<ref>[^\"'\s#]+)(?P=quote)(?P<suffix>.*)$"
)


class ManifestUpdate(BaseModel):
    """Result of a manifest update.

    Attributes:
        path: Descriptor path
        exists: Whether the descriptor existed
        replaced: Number of image lines rewritten
        commit_sha: SHA of the commit, None if nothing was committed
    """

    path: Path
    exists: bool = False
    replaced: int = Field(default=0, ge=0)
    commit_sha: str | None = None


def _repository_of(reference: str) -> str:
    """Strip the tag or digest from an image reference."""
    reference = reference.split("@", 1)[0]
    head, sep, tail = reference.rpartition(":")
    if sep and "/" not in tail:
        return head
    return reference


def rewrite_image_lines(text: str, image: ImageReference) -> tuple[str, int]:
    """Point every image line of ``image``'s repository at ``image.versioned``.

    A line matches when its repository equals ``image.repository`` or ends in
    ``/<name>``, so references written with another registry alias still match.

    Returns:
        The new text and the number of lines rewritten
    """
    replaced = 0
    lines = text.splitlines(keepends=True)
    for index, line in enumerate(lines):
        body = line.rstrip("\r\n")
        ending = line[len(body):]
        match = _IMAGE_LINE.match(body)
        if match is None:
            continue

        repository = _repository_of(match.group("ref"))
        if repository != image.repository and not repository.endswith(f"/{image.name}"):
            continue

        new_body = (
            f"{match.group('prefix')}{match.group('quote')}{image.versioned}"
            f"{match.group('quote')}{match.group('suffix')}"
        )
        if new_body != body:
            lines[index] = new_body + ending
            replaced += 1

    return "".join(lines), replaced


class ManifestUpdater:
    """Rewrites and commits the deployment descriptor."""

    def __init__(self, config: ManifestConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)

    def descriptor_path(self, workspace: Path) -> Path:
        """Conventional location of the descriptor."""
        if self.config.path.is_absolute():
            return self.config.path
        return workspace / self.config.path

    def update(self, workspace: Path, image: ImageReference) -> ManifestUpdate:
        """Rewrite the descriptor and commit the change.

        Args:
            workspace: Workspace root
            image: Reference recorded by the image builder

        Returns:
            ManifestUpdate describing what happened
        """
        path = self.descriptor_path(workspace)
        result = ManifestUpdate(path=path)

        if not path.is_file():
            self.logger.info("manifest_not_found", path=str(path))
            return result

        result.exists = True
        original = path.read_text(encoding="utf-8")
        updated, result.replaced = rewrite_image_lines(original, image)

        if result.replaced == 0:
            self.logger.info("manifest_unchanged", path=str(path), image=image.versioned)
            return result

        path.write_text(updated, encoding="utf-8")
        self.logger.info(
            "manifest_updated",
            path=str(path),
            image=image.versioned,
            replaced=result.replaced,
        )

        result.commit_sha = self._commit(path, image)
        return result

    def _commit(self, path: Path, image: ImageReference) -> str | None:
        """Commit the descriptor. Best-effort: failures are logged, never raised."""
        message = self.config.commit_message.format(name=image.name, image=image.versioned)
        author = Actor(self.config.author_name, self.config.author_email)

        try:
            manager = GitManager(path.parent, search_parent_directories=True)
            relative = path.resolve().relative_to(manager.working_dir.resolve())
            return manager.commit(message, files=[relative.as_posix()], author=author)
        except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError, ValueError) as e:
            self.logger.warning(
                "manifest_commit_skipped",
                path=str(path),
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
