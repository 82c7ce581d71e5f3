"""Error taxonomy shared by the pipeline state machine and batch orchestrator.

Three families of failure exist:

- ConfigurationError: an operation was called while a session or run was in
  the wrong state. This is a caller bug and must not be retried.
- InvalidTransition: a navigation request that the stage ordering forbids
  (jumping ahead of the active stage, skipping the first stage).
- GenerationFailure: an image or caption collaborator failed. Always
  recoverable by an explicit user action (run again, retry the job).
"""

from enum import Enum
from typing import Optional


class AutopostError(Exception):
    """Base class for all autopost errors."""


class ConfigurationError(AutopostError):
    """Raised when an operation is invoked with a session or run in the wrong state."""


class InvalidTransition(AutopostError):
    """Raised when a stage navigation request violates the stage ordering."""


class GenerationErrorCode(str, Enum):
    """Machine-readable reason attached to a GenerationFailure."""

    CONFIG_ERROR = "CONFIG_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    API_ERROR = "API_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"


class GenerationFailure(AutopostError):
    """Raised when the Generator or CaptionGenerator collaborator fails.

    Attributes:
        code: Machine-readable failure reason
        status_code: HTTP status returned by the provider, when there was one
    """

    def __init__(
        self,
        message: str,
        code: GenerationErrorCode = GenerationErrorCode.API_ERROR,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.args[0]}"
