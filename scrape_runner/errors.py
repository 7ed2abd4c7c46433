from __future__ import annotations


class JobError(Exception):
    """Base class for failures while handling a job request."""


class JobValidationError(JobError):
    """The request body is missing a field or names a path outside the base dir."""


class ImageAbsentError(JobError):
    """The runtime image is not present on the container engine host."""

    def __init__(self, image: str) -> None:
        super().__init__(f"No such image: {image}")
        self.image = image


class ExecutionError(JobError):
    """Creating, starting or observing the job container failed."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class JobCancelledError(ExecutionError):
    pass


class InfrastructureError(JobError):
    """The container engine cannot be reached; the service cannot run."""


class EngineError(Exception):
    """Raised by container engine clients for any failed engine call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
