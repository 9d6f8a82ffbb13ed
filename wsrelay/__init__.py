"""WS-Relay: WebSocket to TCP tunnel relay.

Detects VLESS-style and Trojan-style request headers on the first WebSocket
frame, connects to the requested destination and relays bytes in both
directions until either side closes.
"""

__version__ = "1.0.0"
__author__ = "WS-Relay Contributors"

from wsrelay.core.config import RelayConfig, TrustConfig, load_config
from wsrelay.core.pipeline import RelayPipeline
from wsrelay.core.models import ParsedRequest, ProtocolKind
from wsrelay.protocol.detector import ProtocolDetector

__all__ = [
    "__version__",
    "RelayConfig",
    "TrustConfig",
    "load_config",
    "RelayPipeline",
    "ParsedRequest",
    "ProtocolKind",
    "ProtocolDetector",
]
