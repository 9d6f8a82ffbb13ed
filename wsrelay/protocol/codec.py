"""Header codec for the VLESS-style and Trojan-style tunnel protocols.

Decoders are pure functions: they never raise on malformed input, they
return either a ``ParsedRequest`` or a ``DecodeFailure`` naming the first
check that rejected the buffer. Builders produce byte-exact headers for
clients and tests.

VLESS-style request::

    +-----+----------+--------+--------+-----+------+------+---------+---------+
    | VER | UUID(16) | ALEN   | ADDONS | CMD | PORT | ATYP | ADDRESS | PAYLOAD |
    +-----+----------+--------+--------+-----+------+------+---------+---------+

Trojan-style request::

    +--------------+------+------+---------+------+------+---------+
    | HEX(SHA224)  | CRLF | ATYP | ADDRESS | PORT | CRLF | PAYLOAD |
    +--------------+------+------+---------+------+------+---------+
"""

import hmac
import hashlib
import ipaddress
import struct
import uuid
from typing import Dict, Optional, Tuple, Union

from wsrelay.core.config import TrustConfig
from wsrelay.core.models import (
    AddressKind,
    DecodeFailure,
    DecodeResult,
    HeaderFailure,
    ParsedRequest,
    ProtocolKind,
)


CRLF = b"\r\n"

# VLESS: version(1) + uuid(16) + addon length(1)
VLESS_MIN_LENGTH = 18
VLESS_COMMAND_TCP = 1

# Trojan: digest(56) + CRLF(2) + atyp(1) + address(>=1) + port(2)
TROJAN_DIGEST_LENGTH = 56
TROJAN_MIN_LENGTH = TROJAN_DIGEST_LENGTH + 2 + 1 + 1 + 2

# Address type tags differ between the two protocols
VLESS_ADDRESS_TYPES: Dict[int, AddressKind] = {
    1: AddressKind.IPV4,
    2: AddressKind.DOMAIN,
    3: AddressKind.IPV6,
}
TROJAN_ADDRESS_TYPES: Dict[int, AddressKind] = {
    1: AddressKind.IPV4,
    3: AddressKind.DOMAIN,
    4: AddressKind.IPV6,
}


def format_uuid(data: bytes) -> str:
    """Render 16 raw bytes as a canonical hyphenated lowercase UUID."""
    return str(uuid.UUID(bytes=bytes(data)))


def _read_address(
    buf: bytes, offset: int, kind: AddressKind
) -> Optional[Tuple[str, int]]:
    """Read an address of ``kind`` at ``offset``.

    Returns (address, new_offset), or None if the buffer ends early.
    """
    if kind == AddressKind.IPV4:
        end = offset + 4
        if len(buf) < end:
            return None
        return ".".join(str(b) for b in buf[offset:end]), end

    if kind == AddressKind.DOMAIN:
        if len(buf) < offset + 1:
            return None
        length = buf[offset]
        end = offset + 1 + length
        if len(buf) < end:
            return None
        return bytes(buf[offset + 1:end]).decode("utf-8", errors="replace"), end

    end = offset + 16
    if len(buf) < end:
        return None
    groups = struct.unpack("!8H", buf[offset:end])
    return ":".join(f"{group:04x}" for group in groups), end


def decode_vless(buf: bytes, trust: TrustConfig) -> DecodeResult:
    """Decode a VLESS-style request header."""
    protocol = ProtocolKind.VLESS

    if len(buf) < VLESS_MIN_LENGTH:
        return DecodeFailure(protocol, HeaderFailure.TOO_SHORT)

    if format_uuid(buf[1:17]) != trust.identifier:
        return DecodeFailure(protocol, HeaderFailure.CREDENTIAL_MISMATCH)

    addon_length = buf[17]
    offset = VLESS_MIN_LENGTH + addon_length
    # command(1) + port(2) + atyp(1)
    if len(buf) < offset + 4:
        return DecodeFailure(protocol, HeaderFailure.TRUNCATED)

    if buf[offset] != VLESS_COMMAND_TCP:
        return DecodeFailure(protocol, HeaderFailure.UNSUPPORTED_COMMAND)
    offset += 1

    (port,) = struct.unpack_from("!H", buf, offset)
    offset += 2

    kind = VLESS_ADDRESS_TYPES.get(buf[offset])
    offset += 1
    if kind is None:
        return DecodeFailure(protocol, HeaderFailure.UNSUPPORTED_ADDRESS_TYPE)

    parsed = _read_address(buf, offset, kind)
    if parsed is None:
        return DecodeFailure(protocol, HeaderFailure.TRUNCATED)
    address, offset = parsed

    return ParsedRequest(
        protocol=protocol,
        address=address,
        address_kind=kind,
        port=port,
        payload=bytes(buf[offset:]),
    )


def decode_trojan(buf: bytes, trust: TrustConfig) -> DecodeResult:
    """Decode a Trojan-style request header."""
    protocol = ProtocolKind.TROJAN

    if len(buf) < TROJAN_MIN_LENGTH:
        return DecodeFailure(protocol, HeaderFailure.TOO_SHORT)

    presented = bytes(buf[:TROJAN_DIGEST_LENGTH])
    expected = trust.trojan_digest[:TROJAN_DIGEST_LENGTH].encode("ascii")
    if not hmac.compare_digest(presented, expected):
        return DecodeFailure(protocol, HeaderFailure.CREDENTIAL_MISMATCH)

    offset = TROJAN_DIGEST_LENGTH
    if buf[offset:offset + 2] != CRLF:
        return DecodeFailure(protocol, HeaderFailure.MALFORMED_FRAMING)
    offset += 2

    kind = TROJAN_ADDRESS_TYPES.get(buf[offset])
    offset += 1
    if kind is None:
        return DecodeFailure(protocol, HeaderFailure.UNSUPPORTED_ADDRESS_TYPE)

    parsed = _read_address(buf, offset, kind)
    if parsed is None:
        return DecodeFailure(protocol, HeaderFailure.TRUNCATED)
    address, offset = parsed

    if len(buf) < offset + 4:
        return DecodeFailure(protocol, HeaderFailure.TRUNCATED)
    (port,) = struct.unpack_from("!H", buf, offset)
    offset += 2

    if buf[offset:offset + 2] != CRLF:
        return DecodeFailure(protocol, HeaderFailure.MALFORMED_FRAMING)
    offset += 2

    return ParsedRequest(
        protocol=protocol,
        address=address,
        address_kind=kind,
        port=port,
        payload=bytes(buf[offset:]),
    )


# ============================================================================
# Header builders
# ============================================================================


def address_kind_of(address: str) -> AddressKind:
    """Classify an address string as IPv4, IPv6 or domain."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return AddressKind.DOMAIN
    return AddressKind.IPV4 if ip.version == 4 else AddressKind.IPV6


def _encode_address(address: str, tags: Dict[int, AddressKind]) -> bytes:
    kind = address_kind_of(address)
    tag = next(t for t, k in tags.items() if k == kind)

    if kind == AddressKind.DOMAIN:
        raw = address.encode("utf-8")
        if len(raw) > 255:
            raise ValueError(f"Domain name too long: {len(raw)} bytes")
        return bytes([tag, len(raw)]) + raw

    return bytes([tag]) + ipaddress.ip_address(address).packed


def build_vless_header(
    identifier: Union[str, uuid.UUID],
    address: str,
    port: int,
    payload: bytes = b"",
    addons: bytes = b"",
    command: int = VLESS_COMMAND_TCP,
    version: int = 0,
) -> bytes:
    """Build a VLESS-style request header followed by ``payload``."""
    if len(addons) > 255:
        raise ValueError("Addons exceed 255 bytes")

    uid = identifier if isinstance(identifier, uuid.UUID) else uuid.UUID(identifier)
    return (
        bytes([version])
        + uid.bytes
        + bytes([len(addons)])
        + addons
        + bytes([command])
        + struct.pack("!H", port)
        + _encode_address(address, VLESS_ADDRESS_TYPES)
        + payload
    )


def trojan_digest(secret: str) -> str:
    """Hex SHA-224 digest a Trojan-style client presents for ``secret``."""
    return hashlib.sha224(secret.encode("utf-8")).hexdigest()


def build_trojan_header(
    secret: str,
    address: str,
    port: int,
    payload: bytes = b"",
) -> bytes:
    """Build a Trojan-style request header followed by ``payload``."""
    addr = _encode_address(address, TROJAN_ADDRESS_TYPES)
    return (
        trojan_digest(secret).encode("ascii")
        + CRLF
        + addr
        + struct.pack("!H", port)
        + CRLF
        + payload
    )
