"""Exception hierarchy for Shipwright pipeline runs.

Fatal stage failures raise one of these. Best-effort steps catch library
errors themselves and never raise.
"""

from __future__ import annotations


class ShipwrightError(Exception):
    """Base class for all Shipwright errors."""


class ValidationError(ShipwrightError):
    """Raised when the application source fails its preconditions.

    Attributes:
        path: The source path that was validated.
    """

    def __init__(self, message: str, path: str | None = None) -> None:
        self.path = path
        super().__init__(message)


class ContextPreparationError(ShipwrightError):
    """Raised when the build context cannot be assembled."""


class BuildFailedError(ShipwrightError):
    """Raised when the image builder exits unsuccessfully.

    Attributes:
        image: Image reference that was being built.
        build_log: Tail of the collected build log.
    """

    def __init__(self, message: str, image: str, build_log: list[str] | None = None) -> None:
        self.image = image
        self.build_log = build_log or []
        super().__init__(message)


class SmokeTestError(ShipwrightError):
    """Raised when the smoke-test container is not alive after the grace period.

    Attributes:
        container_name: Name of the throwaway test container.
        logs: Container log output captured for diagnosis.
    """

    def __init__(self, message: str, container_name: str, logs: str = "") -> None:
        self.container_name = container_name
        self.logs = logs
        super().__init__(message)


class PushFailedError(ShipwrightError):
    """Raised when pushing an image tag to the registry fails."""

    def __init__(self, message: str, image_tag: str) -> None:
        self.image_tag = image_tag
        super().__init__(message)


class ImageReferenceConflictError(ShipwrightError):
    """Raised when a stage tries to record a second, different image reference."""


class StageError(ShipwrightError):
    """Wraps an unexpected exception raised inside a pipeline stage.

    Attributes:
        stage: Name of the failing stage.
    """

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        super().__init__(f"Stage '{stage}' failed: {cause}")
