"""
Exception types for the Compute Engine volume resizer.
"""

from typing import Any, Optional


class ResizeError(Exception):
    """Base class for every resize workflow failure."""


class ValidationError(ResizeError, ValueError):
    """The resize request is not eligible. Raised before any mutation."""


class NoBlockDeviceError(ValidationError):
    """The instance has no block device to resize."""


class InvalidSizeError(ValidationError):
    """The desired size is not larger than the current one, or over the ceiling."""

    def __init__(
        self,
        message: str,
        current_size: Optional[int] = None,
        desired_size: Optional[int] = None,
    ):
        super().__init__(message)
        self.current_size = current_size
        self.desired_size = desired_size


class ProviderCallError(ResizeError, RuntimeError):
    """A provider (Compute Engine, Cloud DNS) call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(ProviderCallError):
    """The requested provider resource does not exist."""


class PollTimeoutError(ResizeError, TimeoutError):
    """A state-polling loop exceeded its budget."""

    def __init__(self, description: str, elapsed: float, last_state: Any = None):
        super().__init__(
            f"Timed out waiting for {description} after {elapsed:.0f}s "
            f"(last state: {last_state})"
        )
        self.description = description
        self.elapsed = elapsed
        self.last_state = last_state


class PartialFailureWarning(ResizeError):
    """
    Storage was resized and committed, but post-resize bookkeeping failed.

    The artifact of the committed resize is attached so callers can still
    report the new address.
    """

    def __init__(self, message: str, artifact=None):
        super().__init__(message)
        self.artifact = artifact


class MachineBusyError(ResizeError):
    """Another resize holds the lock for this machine."""


class HealthCheckError(ResizeError):
    """The machine agent could not be reached or did not answer a ping."""
