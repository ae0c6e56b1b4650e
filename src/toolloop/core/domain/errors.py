"""
Error taxonomy for the agent runtime.

Two families live here:

- ``ErrorKind`` classifies a failed tool invocation. These never leave the
  dispatcher as exceptions; they travel inside ``ToolResult.error``.
- ``ToolloopError`` and its subclasses are real exceptions. Only transport,
  protocol, state and configuration faults are raised.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Kind of a per-invocation tool failure."""

    PARSE_ERROR = "ParseError"
    VALIDATION_ERROR = "ValidationError"
    UNKNOWN_TOOL = "UnknownTool"
    RUNNER_ERROR = "RunnerError"
    TIMEOUT = "Timeout"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class ToolloopError(Exception):
    """Base class for all runtime errors.

    Attributes:
        code: Stable machine-readable error code
        recoverable: Whether retrying the same operation may succeed
    """

    code = "TOOLLOOP_ERROR"
    recoverable = False

    def __init__(self, message: str, *, code: str | None = None, recoverable: bool | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ConfigurationError(ToolloopError):
    code = "CONFIG_ERROR"


class TransportError(ToolloopError):
    """Transient model-provider failure (rate limit, connection reset, 5xx)."""

    code = "TRANSPORT_ERROR"
    recoverable = True


class AuthError(ToolloopError):
    """Credentials were rejected by the model provider."""

    code = "AUTH_ERROR"


class ProtocolError(ToolloopError):
    """The provider answered with something that is not a usable stream."""

    code = "PROTOCOL_ERROR"


class TaskFailure(ToolloopError):
    """A turn could not be completed, e.g. retries were exhausted."""

    code = "TASK_FAILURE"


class StateError(ToolloopError):
    """An illegal state mutation was requested."""

    code = "STATE_ERROR"


class StatePersistenceError(StateError):
    """The backing store refused a write. In-memory state was left untouched."""

    code = "STATE_PERSISTENCE_ERROR"
    recoverable = True


class TaskNotFoundError(StateError):
    code = "TASK_NOT_FOUND"


class CoordinatorBusyError(ToolloopError):
    """A task is already active on this coordinator."""

    code = "COORDINATOR_BUSY"
