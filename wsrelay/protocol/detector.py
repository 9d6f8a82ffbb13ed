"""First-frame protocol detection.

Tries each supported header decoder in a fixed order and returns the first
successful parse. Individual decoder failures are never surfaced or logged;
the caller only learns that the frame was not understood.
"""

from typing import Callable, Sequence

from wsrelay.core.config import TrustConfig
from wsrelay.core.exceptions import UnknownFormatError
from wsrelay.core.models import DecodeResult, ParsedRequest
from wsrelay.protocol.codec import decode_trojan, decode_vless


Decoder = Callable[[bytes, TrustConfig], DecodeResult]

DECODERS: Sequence[Decoder] = (decode_vless, decode_trojan)


class ProtocolDetector:
    """Identify the tunnel protocol spoken by a first frame."""

    def __init__(self, trust: TrustConfig):
        self.trust = trust

    def detect(self, buf: bytes) -> ParsedRequest:
        """Parse ``buf`` with the first decoder that accepts it.

        Raises:
            UnknownFormatError: no decoder accepted the frame
        """
        for decoder in DECODERS:
            result = decoder(buf, self.trust)
            if isinstance(result, ParsedRequest):
                return result
        raise UnknownFormatError()
