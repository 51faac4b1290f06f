"""Error taxonomy for preview provisioning."""

from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Base class for every failure surfaced by forkpreview."""


class ConfigurationError(ProvisioningError):
    """Credentials are missing or the target platform is not configured."""


class NotFoundError(ProvisioningError):
    """A source repository, branch or remote resource does not exist."""


class ConflictError(ProvisioningError):
    """The resource being created already exists.

    Callers that create idempotently (forks, branch refs, apps) treat this
    as success rather than failure.
    """


class TransientError(ProvisioningError):
    """Network or timeout class failure that may succeed on retry."""


class RemoteExecutionError(ProvisioningError):
    """The remote dev server could not be brought up."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class SpawnError(RemoteExecutionError):
    """The remote shell session could not be started at all."""


class ProvisioningTimeoutError(ProvisioningError):
    """A bounded wait elapsed before the awaited condition held."""


class BringUpTimeoutError(ProvisioningTimeoutError):
    """No listening port was detected before the bring-up deadline."""

    def __init__(self, message: str, elapsed: float = 0.0, output: str = "") -> None:
        super().__init__(message)
        self.elapsed = elapsed
        self.output = output


class WorkflowCancelledError(ProvisioningTimeoutError):
    """The caller cancelled the workflow; handled like a timeout."""
