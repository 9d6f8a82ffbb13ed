"""Tunnel protocol header codec and detection."""

from .codec import (
    decode_vless,
    decode_trojan,
    build_vless_header,
    build_trojan_header,
    trojan_digest,
    format_uuid,
    address_kind_of,
    VLESS_ADDRESS_TYPES,
    TROJAN_ADDRESS_TYPES,
)
from .detector import ProtocolDetector, DECODERS

__all__ = [
    "decode_vless",
    "decode_trojan",
    "build_vless_header",
    "build_trojan_header",
    "trojan_digest",
    "format_uuid",
    "address_kind_of",
    "VLESS_ADDRESS_TYPES",
    "TROJAN_ADDRESS_TYPES",
    "ProtocolDetector",
    "DECODERS",
]
