"""Git operations wrapper for Shipwright.

This module provides a high-level interface to the git operations the
pipeline needs, using GitPython with error handling and structured logging:
checking out the application sources and committing the updated deployment
descriptor.

Example usage:
    >>> from pathlib import Path
    >>> from shipwright.pipeline.git_ops import GitManager
    >>>
    >>> git_manager = GitManager(repo_path=Path("/workspace/repo"))
    >>> sha = git_manager.commit("chore(deploy): crm [skip ci]", files=["k8s/deployment.yaml"])
"""

from __future__ import annotations

from pathlib import Path

import git
from git import Actor, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from shipwright.config import CheckoutConfig
from shipwright.logging import get_logger


class GitManager:
    """High-level git operations manager using GitPython.

    Attributes:
        repo_path: Path to the git repository
        repo: GitPython Repo object
        logger: Structured logger instance
    """

    def __init__(self, repo_path: Path, search_parent_directories: bool = False) -> None:
        """Open an existing repository.

        Args:
            repo_path: Path inside the git repository
            search_parent_directories: Look for the repository root above repo_path

        Raises:
            InvalidGitRepositoryError: If repo_path is not a valid git repository
            NoSuchPathError: If repo_path does not exist
        """
        self.repo_path = repo_path
        self.logger = get_logger(__name__)

        try:
            self.repo = git.Repo(repo_path, search_parent_directories=search_parent_directories)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            self.logger.error(
                "git_manager_init_failed",
                repo_path=str(repo_path),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    @property
    def working_dir(self) -> Path:
        """Root of the working tree."""
        return Path(self.repo.working_tree_dir or self.repo_path)

    def commit(
        self,
        message: str,
        files: list[str] | None = None,
        author: Actor | None = None,
    ) -> str:
        """Create a git commit with the specified message.

        Args:
            message: Commit message
            files: File paths (relative to the working tree) to stage; None stages all
            author: Commit author and committer

        Returns:
            SHA of the created commit

        Raises:
            GitCommandError: If commit fails or there's nothing to commit
        """
        try:
            if files is not None:
                self.repo.index.add(files)
                self.logger.debug("files_staged", file_count=len(files), files=files)
            else:
                self.repo.git.add(A=True)
                self.logger.debug("all_changes_staged")

            has_head = self.repo.head.is_valid()
            if has_head and not self.repo.index.diff("HEAD"):
                self.logger.warning("nothing_to_commit", message=message)
                raise GitCommandError("commit", "No changes to commit")

            commit = self.repo.index.commit(message, author=author, committer=author)

            self.logger.info(
                "commit_created",
                commit_sha=commit.hexsha[:8],
                full_sha=commit.hexsha,
                message=message,
            )
            return commit.hexsha

        except GitCommandError as e:
            self.logger.error(
                "commit_failed",
                message=message,
                files=files,
                error=str(e),
            )
            raise


class SourceCheckout:
    """Retrieves the application sources from version control."""

    def __init__(self, config: CheckoutConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)

    @property
    def enabled(self) -> bool:
        """Checkout only runs when a repository URL is configured."""
        return bool(self.config.repository_url)

    def checkout(self, workspace: Path) -> str:
        """Clone or update the repository and check out the configured ref.

        Args:
            workspace: Workspace root; the checkout directory is relative to it

        Returns:
            SHA of the checked out commit

        Raises:
            GitCommandError: If cloning, fetching or checking out fails
            ValueError: If no repository URL is configured
        """
        if not self.config.repository_url:
            raise ValueError("No repository URL configured for checkout")

        target = workspace / self.config.directory
        ref = self.config.ref

        try:
            if (target / ".git").exists():
                repo = git.Repo(target)
                self.logger.info("source_fetch_started", path=str(target), ref=ref)
                repo.remotes.origin.fetch()
            else:
                self.logger.info(
                    "source_clone_started",
                    url=self.config.repository_url,
                    path=str(target),
                    ref=ref,
                )
                repo = git.Repo.clone_from(self.config.repository_url, target)

            remote_ref = f"origin/{ref}"
            if any(r.name == remote_ref for r in repo.remotes.origin.refs):
                repo.git.checkout("-B", ref, remote_ref)
            else:
                repo.git.checkout(ref)

            sha = repo.head.commit.hexsha
            self.logger.info("source_checked_out", path=str(target), ref=ref, commit_sha=sha[:8])
            return sha

        except GitCommandError as e:
            self.logger.error(
                "source_checkout_failed",
                url=self.config.repository_url,
                ref=ref,
                error=str(e),
            )
            raise
