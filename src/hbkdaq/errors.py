"""Error types and recovery strategies for HBK data acquisition.

Error taxonomy:
- NET: Network errors (timeouts, connection refused, HTTP failures)
- PROTO: Protocol parsing errors (malformed stream messages, bad JSON)
- SESSION: Recorder lifecycle errors, tagged with the phase that failed
- IO: Persistence errors (disk full, permission denied, existing output)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """Error category for classification and routing."""

    NET = "NET"
    PROTO = "PROTO"
    SESSION = "SESSION"
    IO = "IO"


class RecoveryAction(Enum):
    """Suggested recovery action for the user."""

    RETRY = "retry"
    RECONNECT = "reconnect"
    CHOOSE_DIRECTORY = "choose_directory"
    MANUAL = "manual"


class SessionPhase(Enum):
    """Lifecycle phase of a recorder session."""

    DISCOVERY = "discovery"
    OPEN = "open"
    CONFIGURE = "configure"
    START = "start"
    POLL = "poll"
    STOP = "stop"
    CLOSE = "close"


@dataclass(frozen=True, slots=True)
class ErrorContext:
    """Additional context for an error.

    Attributes:
        host: Remote host involved (IP or hostname).
        port: Port number involved.
        path: File path or URL path involved.
        protocol: Protocol name (HTTP, STREAM, HDF5).
        original_error: The underlying exception message.
    """

    host: Optional[str] = None
    port: Optional[int] = None
    path: Optional[str] = None
    protocol: Optional[str] = None
    original_error: Optional[str] = None


class HbkError(Exception):
    """Base exception for all hbkdaq errors.

    Attributes:
        category: Error category for classification.
        code: Short error code (e.g., "NET-001").
        message: User-friendly error message.
        recovery: Suggested recovery action.
        context: Additional error context.
    """

    def __init__(
        self,
        category: ErrorCategory,
        code: str,
        message: str,
        recovery: RecoveryAction,
        context: Optional[ErrorContext] = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.code = code
        self.message = message
        self.recovery = recovery
        self.context = context or ErrorContext()

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def user_message(self) -> str:
        """Return a user-friendly message suitable for display."""
        return self.message


class NetworkError(HbkError):
    """Network-related errors (connection, timeout, HTTP status)."""

    def __init__(
        self,
        code: str,
        message: str,
        recovery: RecoveryAction = RecoveryAction.RECONNECT,
        context: Optional[ErrorContext] = None,
    ) -> None:
        super().__init__(ErrorCategory.NET, code, message, recovery, context)


class ConnectionRefusedError(NetworkError):
    """Connection was refused by the remote host."""

    def __init__(self, host: str, port: int, original_error: Optional[str] = None) -> None:
        context = ErrorContext(host=host, port=port, original_error=original_error)
        super().__init__(
            code="NET-001",
            message=f"Connection refused by {host}:{port}. Check that the device is powered on and the IP address is correct.",
            recovery=RecoveryAction.RECONNECT,
            context=context,
        )


class ConnectionTimeoutError(NetworkError):
    """A request or stream read timed out."""

    def __init__(self, host: str, port: int, timeout_seconds: float) -> None:
        context = ErrorContext(host=host, port=port)
        super().__init__(
            code="NET-002",
            message=f"Connection to {host}:{port} timed out after {timeout_seconds:.1f}s. Check network connectivity and device status.",
            recovery=RecoveryAction.RETRY,
            context=context,
        )


class NetworkDisconnectError(NetworkError):
    """Connection was lost unexpectedly."""

    def __init__(self, host: str, port: int, original_error: Optional[str] = None) -> None:
        context = ErrorContext(host=host, port=port, original_error=original_error)
        super().__init__(
            code="NET-003",
            message=f"Lost connection to {host}:{port}. The device may have been disconnected or powered off.",
            recovery=RecoveryAction.RECONNECT,
            context=context,
        )


class HttpStatusError(NetworkError):
    """The device answered a REST request with a non-success status."""

    def __init__(self, host: str, port: int, method: str, path: str, status_line: str) -> None:
        context = ErrorContext(host=host, port=port, path=path, protocol="HTTP")
        super().__init__(
            code="NET-004",
            message=f"{method} {path} on {host}:{port} failed: {status_line}",
            recovery=RecoveryAction.MANUAL,
            context=context,
        )
        self.method = method
        self.status_line = status_line


class ProtocolError(HbkError):
    """Protocol parsing or communication errors."""

    def __init__(
        self,
        code: str,
        message: str,
        recovery: RecoveryAction = RecoveryAction.RECONNECT,
        context: Optional[ErrorContext] = None,
    ) -> None:
        super().__init__(ErrorCategory.PROTO, code, message, recovery, context)


class MalformedMessageError(ProtocolError):
    """Received message has an invalid length."""

    def __init__(
        self, protocol: str, expected_size: int, actual_size: int, host: Optional[str] = None
    ) -> None:
        context = ErrorContext(host=host, protocol=protocol)
        super().__init__(
            code="PROTO-001",
            message=f"Malformed {protocol} message: expected {expected_size} bytes, got {actual_size}.",
            recovery=RecoveryAction.RECONNECT,
            context=context,
        )


class InvalidHeaderError(ProtocolError):
    """Message header is invalid or missing."""

    def __init__(self, protocol: str, expected: str, actual: str) -> None:
        context = ErrorContext(protocol=protocol)
        super().__init__(
            code="PROTO-002",
            message=f"Invalid {protocol} header: expected {expected}, got {actual}.",
            recovery=RecoveryAction.RECONNECT,
            context=context,
        )


class MessageParseError(ProtocolError):
    """Failed to parse message contents."""

    def __init__(self, protocol: str, field: str, reason: str) -> None:
        context = ErrorContext(protocol=protocol)
        super().__init__(
            code="PROTO-003",
            message=f"Failed to parse {protocol} message field '{field}': {reason}",
            recovery=RecoveryAction.RECONNECT,
            context=context,
        )


class SessionError(HbkError):
    """A recorder lifecycle step failed.

    Attributes:
        phase: The lifecycle phase in which the failure occurred.
        cause: The underlying exception, also chained as ``__cause__``.
    """

    code_for_phase = {
        SessionPhase.DISCOVERY: "SES-001",
        SessionPhase.OPEN: "SES-002",
        SessionPhase.CONFIGURE: "SES-003",
        SessionPhase.START: "SES-004",
        SessionPhase.POLL: "SES-005",
        SessionPhase.STOP: "SES-006",
        SessionPhase.CLOSE: "SES-007",
    }

    def __init__(
        self,
        phase: SessionPhase,
        address: str,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
        recovery: RecoveryAction = RecoveryAction.RETRY,
    ) -> None:
        reason = message or (str(cause) if cause is not None else "unknown failure")
        context = ErrorContext(
            host=address,
            original_error=str(cause) if cause is not None else None,
        )
        super().__init__(
            category=ErrorCategory.SESSION,
            code=self.code_for_phase[phase],
            message=f"Recorder {phase.value} failed on {address}: {reason}",
            recovery=recovery,
            context=context,
        )
        self.phase = phase
        self.address = address
        self.cause = cause


class DiscoveryError(SessionError):
    """Module information could not be retrieved."""

    def __init__(self, address: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(SessionPhase.DISCOVERY, address, cause, recovery=RecoveryAction.RECONNECT)


class OpenError(SessionError):
    """The recorder session could not be opened."""

    def __init__(self, address: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(SessionPhase.OPEN, address, cause)


class ConfigurationError(SessionError):
    """The channel configuration was rejected."""

    def __init__(self, address: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(SessionPhase.CONFIGURE, address, cause, recovery=RecoveryAction.MANUAL)


class StartError(SessionError):
    """The recording could not be started."""

    def __init__(self, address: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(SessionPhase.START, address, cause)


class PollError(SessionError):
    """Data retrieval failed while recording."""

    def __init__(
        self,
        address: str,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(SessionPhase.POLL, address, cause, message=message)


class AcquisitionTimeoutError(PollError):
    """Not enough samples arrived before the overall acquisition deadline."""

    def __init__(self, address: str, received: int, required: int, deadline_s: float) -> None:
        super().__init__(
            address,
            message=f"received {received} of {required} samples within {deadline_s:.1f}s",
        )
        self.received = received
        self.required = required


class AcquisitionCancelledError(PollError):
    """The acquisition was cancelled by the caller."""

    def __init__(self, address: str, received: int, required: int) -> None:
        super().__init__(
            address,
            message=f"cancelled after {received} of {required} samples",
        )
        self.received = received
        self.required = required


class StopError(SessionError):
    """The stop command failed."""

    def __init__(self, address: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(SessionPhase.STOP, address, cause, recovery=RecoveryAction.MANUAL)


class CloseError(SessionError):
    """The recorder session could not be closed."""

    def __init__(self, address: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(SessionPhase.CLOSE, address, cause, recovery=RecoveryAction.MANUAL)


_ERROR_FOR_PHASE: dict[SessionPhase, type[SessionError]] = {
    SessionPhase.DISCOVERY: DiscoveryError,
    SessionPhase.OPEN: OpenError,
    SessionPhase.CONFIGURE: ConfigurationError,
    SessionPhase.START: StartError,
    SessionPhase.POLL: PollError,
    SessionPhase.STOP: StopError,
    SessionPhase.CLOSE: CloseError,
}


def error_for_phase(phase: SessionPhase, address: str, cause: BaseException) -> SessionError:
    """Build the phase-specific SessionError wrapping ``cause``."""
    return _ERROR_FOR_PHASE[phase](address, cause)


class PersistenceError(HbkError):
    """Storage errors raised while writing an acquisition file.

    Attributes:
        path: The file or directory involved.
        cause: The underlying exception, if any.
    """

    def __init__(
        self,
        code: str,
        message: str,
        path: str,
        cause: Optional[BaseException] = None,
        recovery: RecoveryAction = RecoveryAction.CHOOSE_DIRECTORY,
    ) -> None:
        context = ErrorContext(
            path=path,
            protocol="HDF5",
            original_error=str(cause) if cause is not None else None,
        )
        super().__init__(ErrorCategory.IO, code, message, recovery, context)
        self.path = path
        self.cause = cause


class DirectoryNotWritableError(PersistenceError):
    """Output directory cannot be created or written."""

    def __init__(self, path: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(
            code="IO-001",
            message=f"Cannot write to directory '{path}'. Check permissions or choose a different directory.",
            path=path,
            cause=cause,
        )


class DiskFullError(PersistenceError):
    """Disk is full, cannot write data."""

    def __init__(self, path: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(
            code="IO-002",
            message=f"Disk full while writing to '{path}'. The file may be incomplete.",
            path=path,
            cause=cause,
        )


class OutputExistsError(PersistenceError):
    """Something already exists at the target path."""

    def __init__(self, path: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(
            code="IO-003",
            message=f"Output path '{path}' already exists. Choose a different directory or prefix.",
            path=path,
            cause=cause,
        )


class FileWriteError(PersistenceError):
    """General file write error."""

    def __init__(self, path: str, reason: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(
            code="IO-004",
            message=f"Error writing to '{path}': {reason}",
            path=path,
            cause=cause,
        )


class FileReadError(PersistenceError):
    """An acquisition file could not be read back."""

    def __init__(self, path: str, reason: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(
            code="IO-005",
            message=f"Error reading '{path}': {reason}",
            path=path,
            cause=cause,
            recovery=RecoveryAction.MANUAL,
        )
