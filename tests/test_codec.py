"""Tests for the tunnel header codec."""

import hashlib
import struct

import pytest

from wsrelay.core.config import TrustConfig
from wsrelay.core.models import (
    AddressKind,
    DecodeFailure,
    HeaderFailure,
    ParsedRequest,
    ProtocolKind,
)
from wsrelay.protocol.codec import (
    TROJAN_MIN_LENGTH,
    address_kind_of,
    build_trojan_header,
    build_vless_header,
    decode_trojan,
    decode_vless,
    format_uuid,
    trojan_digest,
)

from conftest import IDENTIFIER, SHARED_SECRET


IPV6 = "2001:0db8:0000:0000:0000:ff00:0042:8329"


def assert_failure(result, reason: HeaderFailure):
    assert isinstance(result, DecodeFailure)
    assert result.reason == reason


class TestHelpers:
    """Tests for codec helpers."""

    def test_format_uuid(self):
        """Test raw bytes render as a canonical UUID."""
        raw = bytes.fromhex(IDENTIFIER.replace("-", ""))
        assert format_uuid(raw) == IDENTIFIER

    def test_address_kind_of(self):
        """Test address strings are classified by kind."""
        assert address_kind_of("93.184.216.34") == AddressKind.IPV4
        assert address_kind_of("::1") == AddressKind.IPV6
        assert address_kind_of("example.com") == AddressKind.DOMAIN

    def test_trojan_digest_is_sha224_hex(self):
        """Test the Trojan digest is the SHA-224 hex of the secret."""
        expected = hashlib.sha224(SHARED_SECRET.encode()).hexdigest()
        assert trojan_digest(SHARED_SECRET) == expected
        assert len(expected) == 56


class TestRoundTrip:
    """Built headers decode back to the same destination."""

    @pytest.mark.parametrize("address,kind", [
        ("93.184.216.34", AddressKind.IPV4),
        ("example.com", AddressKind.DOMAIN),
        (IPV6, AddressKind.IPV6),
    ])
    def test_vless(self, trust, address, kind):
        """Test built VLESS headers decode to the same destination."""
        header = build_vless_header(IDENTIFIER, address, 8443)
        result = decode_vless(header, trust)

        assert isinstance(result, ParsedRequest)
        assert result.protocol == ProtocolKind.VLESS
        assert result.address == address
        assert result.address_kind == kind
        assert result.port == 8443
        assert result.payload == b""

    @pytest.mark.parametrize("address,kind", [
        ("93.184.216.34", AddressKind.IPV4),
        ("example.com", AddressKind.DOMAIN),
        (IPV6, AddressKind.IPV6),
    ])
    def test_trojan(self, trust, address, kind):
        """Test built Trojan headers decode to the same destination."""
        header = build_trojan_header(SHARED_SECRET, address, 443)
        result = decode_trojan(header, trust)

        assert isinstance(result, ParsedRequest)
        assert result.protocol == ProtocolKind.TROJAN
        assert result.address == address
        assert result.address_kind == kind
        assert result.port == 443


class TestDecodeVless:
    """Tests for VLESS-style header decoding."""

    def test_leftover_payload(self, trust):
        """Test bytes after the header are returned as payload."""
        header = build_vless_header(IDENTIFIER, "example.com", 80, payload=b"GET / HTTP/1.1\r\n\r\n")
        result = decode_vless(header, trust)

        assert result.payload == b"GET / HTTP/1.1\r\n\r\n"

    def test_addons_are_skipped(self, trust):
        """Test addon bytes are skipped."""
        header = build_vless_header(IDENTIFIER, "10.0.0.1", 22, addons=b"\x0a\x04flow")
        result = decode_vless(header, trust)

        assert result.address == "10.0.0.1"
        assert result.port == 22

    def test_identifier_compared_case_insensitively(self):
        """Test an upper-case configured identifier still matches."""
        trust = TrustConfig(identifier=IDENTIFIER.upper(), shared_secret=SHARED_SECRET)
        header = build_vless_header(IDENTIFIER, "example.com", 80)

        assert isinstance(decode_vless(header, trust), ParsedRequest)

    @pytest.mark.parametrize("configured", [
        IDENTIFIER.replace("-", ""),
        "{" + IDENTIFIER.upper() + "}",
        "urn:uuid:" + IDENTIFIER,
    ])
    def test_non_canonical_identifier_matches(self, configured):
        """Test a braced, undashed or URN identifier still matches."""
        trust = TrustConfig(identifier=configured, shared_secret=SHARED_SECRET)
        header = build_vless_header(IDENTIFIER, "example.com", 80)

        assert isinstance(decode_vless(header, trust), ParsedRequest)

    def test_version_byte_ignored(self, trust):
        """Test the version byte is not checked."""
        header = build_vless_header(IDENTIFIER, "example.com", 80, version=7)
        assert isinstance(decode_vless(header, trust), ParsedRequest)

    def test_too_short(self, trust):
        """Test buffers under 18 bytes are too short."""
        header = build_vless_header(IDENTIFIER, "example.com", 80)
        assert_failure(decode_vless(header[:17], trust), HeaderFailure.TOO_SHORT)

    def test_credential_mismatch(self, trust):
        """Test a foreign UUID is rejected."""
        header = build_vless_header("00000000-0000-0000-0000-000000000001", "example.com", 80)
        assert_failure(decode_vless(header, trust), HeaderFailure.CREDENTIAL_MISMATCH)

    def test_addons_truncated(self, trust):
        """Test an addon length past the buffer is truncated."""
        header = build_vless_header(IDENTIFIER, "example.com", 80)
        # Claim 200 addon bytes that are not there
        broken = header[:17] + bytes([200]) + header[18:]
        assert_failure(decode_vless(broken, trust), HeaderFailure.TRUNCATED)

    def test_unsupported_command(self, trust):
        """Test commands other than TCP are rejected."""
        header = build_vless_header(IDENTIFIER, "example.com", 80, command=2)
        assert_failure(decode_vless(header, trust), HeaderFailure.UNSUPPORTED_COMMAND)

    def test_unsupported_address_type(self, trust):
        """Test unknown address tags are rejected."""
        header = bytearray(build_vless_header(IDENTIFIER, "1.2.3.4", 80))
        header[21] = 9
        assert_failure(decode_vless(bytes(header), trust), HeaderFailure.UNSUPPORTED_ADDRESS_TYPE)

    def test_address_truncated(self, trust):
        """Test a cut-off address is truncated."""
        header = build_vless_header(IDENTIFIER, IPV6, 80)
        assert_failure(decode_vless(header[:-4], trust), HeaderFailure.TRUNCATED)

    def test_domain_tag_is_two(self, trust):
        """Test VLESS tags domains with 2."""
        header = build_vless_header(IDENTIFIER, "example.com", 80)
        # ver(1) + uuid(16) + alen(1) + cmd(1) + port(2)
        assert header[21] == 2

    def test_invalid_utf8_domain_replaced(self, trust):
        """Test invalid UTF-8 in a domain is replaced."""
        header = build_vless_header(IDENTIFIER, "ab", 80)
        broken = header[:-2] + b"a\xff"
        result = decode_vless(broken, trust)

        assert isinstance(result, ParsedRequest)
        assert result.address == "a\ufffd"


class TestDecodeTrojan:
    """Tests for Trojan-style header decoding."""

    def test_leftover_payload(self, trust):
        """Test bytes after the final CRLF are returned as payload."""
        header = build_trojan_header(SHARED_SECRET, "example.com", 443, payload=b"\x16\x03\x01")
        result = decode_trojan(header, trust)

        assert result.payload == b"\x16\x03\x01"

    def test_too_short(self, trust):
        """Test buffers under 62 bytes are too short."""
        buf = trojan_digest(SHARED_SECRET).encode() + b"\r\n\x01\x00"
        assert len(buf) < TROJAN_MIN_LENGTH
        assert_failure(decode_trojan(buf, trust), HeaderFailure.TOO_SHORT)

    def test_credential_mismatch(self, trust):
        """Test a digest of another secret is rejected."""
        header = build_trojan_header("wrong password", "example.com", 443)
        assert_failure(decode_trojan(header, trust), HeaderFailure.CREDENTIAL_MISMATCH)

    def test_missing_first_crlf(self, trust):
        """Test a missing CRLF after the digest is malformed."""
        header = bytearray(build_trojan_header(SHARED_SECRET, "example.com", 443))
        header[56:58] = b"\n\r"
        assert_failure(decode_trojan(bytes(header), trust), HeaderFailure.MALFORMED_FRAMING)

    def test_missing_port_crlf(self, trust):
        """Test a missing CRLF after the port is malformed."""
        header = build_trojan_header(SHARED_SECRET, "example.com", 443, payload=b"data")
        broken = header.replace(struct.pack("!H", 443) + b"\r\n", struct.pack("!H", 443) + b"XX")
        assert_failure(decode_trojan(broken, trust), HeaderFailure.MALFORMED_FRAMING)

    def test_unsupported_address_type(self, trust):
        """Test unknown address tags are rejected."""
        header = bytearray(build_trojan_header(SHARED_SECRET, "1.2.3.4", 443))
        header[58] = 2
        assert_failure(decode_trojan(bytes(header), trust), HeaderFailure.UNSUPPORTED_ADDRESS_TYPE)

    def test_address_truncated(self, trust):
        """Test a cut-off address is truncated."""
        header = build_trojan_header(SHARED_SECRET, IPV6, 443)
        assert_failure(decode_trojan(header[:70], trust), HeaderFailure.TRUNCATED)

    def test_domain_tag_is_three(self):
        """Test Trojan tags domains with 3."""
        header = build_trojan_header(SHARED_SECRET, "example.com", 443)
        assert header[58] == 3


class TestBuilders:
    """Tests for header builders."""

    def test_domain_too_long(self):
        """Test domains over 255 bytes cannot be encoded."""
        with pytest.raises(ValueError):
            build_vless_header(IDENTIFIER, "a" * 256, 80)

    def test_vless_layout(self):
        """Test the byte layout of a built VLESS header."""
        header = build_vless_header(IDENTIFIER, "1.2.3.4", 80)

        assert header[0] == 0
        assert header[17] == 0
        assert header[18] == 1
        assert header[19:21] == b"\x00\x50"
        assert header[21:] == b"\x01\x01\x02\x03\x04"
