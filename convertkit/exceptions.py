"""Custom exceptions for convertkit."""

from enum import Enum


class ErrorKind(str, Enum):
    """Category of a conversion failure."""

    INITIALIZATION = "initialization"
    TIMEOUT = "timeout"
    BACKEND = "backend"
    VALIDATION = "validation"


class ConvertkitError(Exception):
    """Base exception class for convertkit."""

    pass


class ConversionError(ConvertkitError):
    """Error during a single conversion request.

    The message is always human readable; technical detail lives in
    ``cause`` and in the log.
    """

    kind: ErrorKind = ErrorKind.BACKEND

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        """Convert to the ``{kind, message}`` record shown to callers."""
        return {"kind": self.kind.value, "message": self.message}


class InitializationError(ConversionError):
    """Background worker could not be created or never became ready."""

    kind = ErrorKind.INITIALIZATION


class WorkerTerminatedError(InitializationError):
    """The worker was torn down while a request was pending."""

    def __init__(self, worker_kind: str) -> None:
        super().__init__(f"The {worker_kind} worker was shut down before replying")
        self.worker_kind = worker_kind


class ConversionTimeoutError(ConversionError):
    """A dispatched operation did not reply before its deadline."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"{operation} did not finish within {timeout:g}s")
        self.operation = operation
        self.timeout = timeout


class BackendError(ConversionError):
    """The format backend reported a failure."""

    kind = ErrorKind.BACKEND


class ValidationError(ConversionError):
    """The request failed pre-flight checks."""

    kind = ErrorKind.VALIDATION


class ProtocolError(ConvertkitError):
    """Malformed envelope on the worker boundary."""

    pass


class ConfigurationError(ConvertkitError):
    """Configuration error."""

    pass
