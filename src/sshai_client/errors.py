"""Exception hierarchy shared across services."""

from __future__ import annotations

from enum import Enum


class SshAiError(Exception):
    """Base class for all sshai-client errors."""


class ConnectErrorKind(str, Enum):
    UNREACHABLE = "unreachable"
    AUTH_REJECTED = "auth_rejected"
    PROTOCOL_ERROR = "protocol_error"
    TIMEOUT = "timeout"


class ExecErrorKind(str, Enum):
    NOT_CONNECTED = "not_connected"
    CHANNEL_CLOSED = "channel_closed"
    TIMEOUT = "timeout"


class GenerationErrorKind(str, Enum):
    NETWORK_FAILURE = "network_failure"
    AUTH_FAILURE = "auth_failure"
    MALFORMED = "malformed"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"


class ConnectError(SshAiError):
    """Raised when a session cannot be established."""

    def __init__(self, kind: ConnectErrorKind, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or kind.value)


class ExecError(SshAiError):
    """Raised when a single command cannot be executed."""

    def __init__(self, kind: ExecErrorKind, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or kind.value)


class GenerationError(SshAiError):
    """Raised when the completion backend fails to produce a suggestion."""

    def __init__(self, kind: GenerationErrorKind, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or kind.value)


class ConfirmationRequired(SshAiError):
    """Raised when a flagged suggestion is executed without explicit confirmation."""
