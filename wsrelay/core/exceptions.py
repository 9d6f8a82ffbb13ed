"""Custom exceptions for WS-Relay."""

from typing import Optional, Any, Dict


class RelayException(Exception):
    """Base exception for all WS-Relay errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ============================================================================
# Protocol Errors
# ============================================================================


class ProtocolError(RelayException):
    """Base class for protocol-related errors."""

    pass


class UnknownFormatError(ProtocolError):
    """First frame matched none of the supported tunnel protocols.

    Deliberately carries no details: which protocol or which field was
    rejected must not be observable by the peer.
    """

    def __init__(self):
        super().__init__("Unknown data packet format")


# ============================================================================
# Connection Errors
# ============================================================================


class ConnectionError(RelayException):
    """Base class for connection-related errors."""

    pass


class UpstreamUnreachableError(ConnectionError):
    """TCP connect to the requested destination failed."""

    def __init__(self, host: str, port: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Upstream connection to {host}:{port} failed",
            {"host": host, "port": port, "cause": repr(cause) if cause else None},
        )
        self.host = host
        self.port = port
        self.cause = cause


# ============================================================================
# Relay Errors
# ============================================================================


class RelayIOError(RelayException):
    """A copy loop failed mid-stream."""

    def __init__(self, direction: str, cause: Optional[BaseException] = None):
        super().__init__(
            f"Relay {direction} failed",
            {"direction": direction, "cause": repr(cause) if cause else None},
        )
        self.direction = direction
        self.cause = cause


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(RelayException):
    """Invalid or missing configuration."""

    def __init__(self, errors: list):
        super().__init__(
            f"Configuration invalid: {'; '.join(errors)}", {"errors": errors}
        )
        self.errors = errors
