"""Core modules for WS-Relay."""

from .config import (
    RelayConfig,
    TrustConfig,
    UpstreamConfig,
    ServerConfig,
    load_config,
)
from .models import (
    ProtocolKind,
    AddressKind,
    HeaderFailure,
    SessionState,
    ParsedRequest,
    DecodeFailure,
    TunnelSession,
)
from .exceptions import (
    RelayException,
    ProtocolError,
    UnknownFormatError,
    ConnectionError,
    UpstreamUnreachableError,
    RelayIOError,
    ConfigurationError,
)
from .pipeline import RelayPipeline, ClientChannel

__all__ = [
    # Config
    "RelayConfig",
    "TrustConfig",
    "UpstreamConfig",
    "ServerConfig",
    "load_config",
    # Models
    "ProtocolKind",
    "AddressKind",
    "HeaderFailure",
    "SessionState",
    "ParsedRequest",
    "DecodeFailure",
    "TunnelSession",
    # Exceptions
    "RelayException",
    "ProtocolError",
    "UnknownFormatError",
    "ConnectionError",
    "UpstreamUnreachableError",
    "RelayIOError",
    "ConfigurationError",
    # Pipeline
    "RelayPipeline",
    "ClientChannel",
]
