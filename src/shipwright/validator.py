"""Application source validation.

Turns an expensive, late build failure into a cheap, early one: the source
path must exist and contain at least one recognised project marker (a model
descriptor file, a packaged deployment archive or a model directory).
"""

from __future__ import annotations

from pathlib import Path

from shipwright.config import ValidatorConfig
from shipwright.errors import ValidationError
from shipwright.logging import get_logger


class ApplicationValidator:
    """Checks a source path for recognised project markers.

    Markers are glob patterns expanded against the directory listing. With
    ``literal_markers`` enabled the patterns are instead tested as literal
    file names, which reproduces the legacy shell check (``-f path/*.mpr``)
    that never matched a real project.
    """

    def __init__(self, config: ValidatorConfig) -> None:
        self.config = config
        self.logger = get_logger(__name__)

    def find_markers(self, path: Path) -> list[str]:
        """Return the relative names of the markers present under ``path``."""
        found: list[str] = []

        if self.config.literal_markers:
            self.logger.warning(
                "validator_literal_marker_matching",
                patterns=[self.config.descriptor_pattern, self.config.archive_pattern],
            )
            for pattern in (self.config.descriptor_pattern, self.config.archive_pattern):
                if (path / pattern).is_file():
                    found.append(pattern)
        else:
            for pattern in (self.config.descriptor_pattern, self.config.archive_pattern):
                found.extend(sorted(p.name for p in path.glob(pattern) if p.is_file()))

        model_dir = path / self.config.model_directory
        if model_dir.is_dir():
            found.append(f"{self.config.model_directory}/")

        return found

    def validate(self, path: Path) -> list[str]:
        """Validate an application source path.

        Args:
            path: Directory expected to hold the application project

        Returns:
            The markers found

        Raises:
            ValidationError: If the path is missing or holds no marker
        """
        if not path.exists():
            self.logger.error("source_path_not_found", path=str(path))
            raise ValidationError(f"Source path does not exist: {path}", path=str(path))

        if not path.is_dir():
            self.logger.error("source_path_not_directory", path=str(path))
            raise ValidationError(f"Source path is not a directory: {path}", path=str(path))

        markers = self.find_markers(path)
        if not markers:
            self.logger.error(
                "source_markers_missing",
                path=str(path),
                descriptor_pattern=self.config.descriptor_pattern,
                archive_pattern=self.config.archive_pattern,
                model_directory=self.config.model_directory,
                literal=self.config.literal_markers,
            )
            raise ValidationError(
                f"No project found in {path}: expected {self.config.descriptor_pattern}, "
                f"{self.config.archive_pattern} or a {self.config.model_directory}/ directory",
                path=str(path),
            )

        self.logger.info("source_validated", path=str(path), markers=markers)
        return markers
