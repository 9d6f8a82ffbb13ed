from dataclasses import dataclass
from typing import Optional, Union
from enum import Enum


class ProtocolKind(Enum):
    VLESS = "vless"
    TROJAN = "trojan"


class AddressKind(Enum):
    IPV4 = "ipv4"
    DOMAIN = "domain"
    IPV6 = "ipv6"


class HeaderFailure(Enum):
    TOO_SHORT = "too_short"
    TRUNCATED = "truncated"
    CREDENTIAL_MISMATCH = "credential_mismatch"
    MALFORMED_FRAMING = "malformed_framing"
    UNSUPPORTED_COMMAND = "unsupported_command"
    UNSUPPORTED_ADDRESS_TYPE = "unsupported_address_type"


class SessionState(Enum):
    AWAITING_FIRST_FRAME = "awaiting_first_frame"
    CONNECTING = "connecting"
    RELAYING = "relaying"
    CLOSED = "closed"


@dataclass(frozen=True)
class ParsedRequest:
    protocol: ProtocolKind
    address: str
    address_kind: AddressKind
    port: int
    payload: bytes = b""

    @property
    def target(self) -> str:
        if self.address_kind == AddressKind.IPV6:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


@dataclass(frozen=True)
class DecodeFailure:
    protocol: ProtocolKind
    reason: HeaderFailure


DecodeResult = Union[ParsedRequest, DecodeFailure]


@dataclass
class TunnelSession:
    session_id: str
    client: object
    upstream: Optional[object] = None
    request: Optional[ParsedRequest] = None
    state: SessionState = SessionState.AWAITING_FIRST_FRAME
    started: bool = False

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED
