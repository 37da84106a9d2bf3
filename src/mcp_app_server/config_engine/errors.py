"""Error kinds raised by the Config Engine.

Three kinds are kept apart so callers can tell them apart:
- TransportError: the management endpoint could not be reached
- OperationFailedError: the server processed the request and said no
- ConfigurationError: the declarative input is malformed (nothing was sent)
"""
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .schema import ExecutionResult


class ManagementError(Exception):
    """Base class for all management errors."""
    pass


class TransportError(ManagementError):
    """Connection, timeout or stream failure reaching the management endpoint."""

    def __init__(self, message: str, server_id: Optional[str] = None):
        super().__init__(message)
        self.server_id = server_id


class OperationFailedError(ManagementError):
    """The server reported a non-success outcome for an operation."""

    def __init__(self, result: "ExecutionResult", message: Optional[str] = None):
        super().__init__(message or result.failure_description or "Operation failed")
        self.result = result

    @property
    def description(self) -> str:
        return self.result.failure_description or ""

    @property
    def failed_step(self) -> Optional[int]:
        return self.result.failed_step


class ConfigurationError(ManagementError):
    """A resource spec, goal config or command is malformed."""
    pass
