"""
PacketGlobe Test Configuration

Pytest fixtures and PCAP-NG / frame builders shared by all tests.
"""

import socket
import struct
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import dpkt
import pytest

from packetglobe.enrichment.base import IntelligenceProvider
from packetglobe.enrichment.cache import IntelligenceCache
from packetglobe.enrichment.models import IntelligenceRecord, SecurityFlags


# =============================================================================
# PCAP-NG Block Builders
# =============================================================================

BYTE_ORDER_MAGIC = 0x1A2B3C4D


def _pad(data: bytes) -> bytes:
    return data + b"\x00" * (-len(data) % 4)


def make_block(type_code: int, body: bytes, trailer: int | None = None) -> bytes:
    """Frame a block body with its type, length and trailing length."""
    body = _pad(body)
    length = 12 + len(body)
    return (
        struct.pack("<II", type_code, length)
        + body
        + struct.pack("<I", length if trailer is None else trailer)
    )


def section_header(section_length: int = -1) -> bytes:
    return make_block(0x0A0D0D0A, struct.pack("<IHHq", BYTE_ORDER_MAGIC, 1, 0, section_length))


def interface_description(link_type: int = 1, snap_length: int = 65535) -> bytes:
    return make_block(0x00000001, struct.pack("<HHI", link_type, 0, snap_length))


def enhanced_packet(
    frame: bytes,
    timestamp_us: int = 1_700_000_000_000_000,
    interface_id: int = 0,
    captured_length: int | None = None,
) -> bytes:
    captured = len(frame) if captured_length is None else captured_length
    header = struct.pack(
        "<IIIII",
        interface_id,
        timestamp_us >> 32,
        timestamp_us & 0xFFFFFFFF,
        captured,
        len(frame),
    )
    return make_block(0x00000006, header + frame)


def simple_packet(frame: bytes) -> bytes:
    return make_block(0x00000003, struct.pack("<I", len(frame)) + frame)


def capture(*blocks: bytes) -> bytes:
    """A section header followed by an Ethernet interface and the given blocks."""
    return section_header() + interface_description() + b"".join(blocks)


# =============================================================================
# Frame Builders
# =============================================================================

SRC_MAC = b"\x00\x11\x22\x33\x44\x55"
DST_MAC = b"\x66\x77\x88\x99\xaa\xbb"


def ipv4_frame(src: str, dst: str, protocol: int = dpkt.ip.IP_PROTO_TCP) -> bytes:
    """Ethernet II frame carrying an IPv4 header."""
    ip = dpkt.ip.IP(
        src=socket.inet_aton(src),
        dst=socket.inet_aton(dst),
        p=protocol,
        ttl=64,
        data=b"",
    )
    eth = dpkt.ethernet.Ethernet(
        src=SRC_MAC,
        dst=DST_MAC,
        type=dpkt.ethernet.ETH_TYPE_IP,
        data=ip,
    )
    return bytes(eth)


def arp_frame() -> bytes:
    """Ethernet II frame carrying an ARP request."""
    eth = dpkt.ethernet.Ethernet(
        src=SRC_MAC,
        dst=b"\xff" * 6,
        type=dpkt.ethernet.ETH_TYPE_ARP,
        data=dpkt.arp.ARP(),
    )
    return bytes(eth)


# =============================================================================
# Intelligence Helpers
# =============================================================================


def located_record(source: str = "abstractapi", **flags: bool) -> IntelligenceRecord:
    """A full intelligence record with the given security flags."""
    return IntelligenceRecord.located(
        source=source,
        security=SecurityFlags(**flags),
        latitude=37.386,
        longitude=-122.0838,
        country="United States",
        city="Mountain View",
        region="California",
        isp="Google LLC",
        asn="GOOGLE",
        asn_number=15169,
    )


def make_provider(name: str, result=None, side_effect=None, configured: bool = True) -> MagicMock:
    """Provider double whose lookup() is an AsyncMock."""
    provider = MagicMock(spec=IntelligenceProvider)
    provider.name = name
    provider.is_configured = configured
    provider.lookup = AsyncMock(return_value=result, side_effect=side_effect)
    return provider


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cache_path(tmp_path: Path) -> Path:
    """Location of a fresh intelligence cache file."""
    return tmp_path / "cache" / "ip_intelligence.db"


@pytest.fixture
def cache(cache_path: Path):
    """An empty intelligence cache, closed after the test."""
    cache = IntelligenceCache(cache_path)
    yield cache
    cache.close()
