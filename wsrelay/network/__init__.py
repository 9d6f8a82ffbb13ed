"""Network modules for WS-Relay."""

from .upstream import (
    UpstreamChannel,
    UpstreamConnector,
    OpenConnection,
)

__all__ = [
    "UpstreamChannel",
    "UpstreamConnector",
    "OpenConnection",
]
