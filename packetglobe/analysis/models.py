"""
PacketGlobe Data Models

Immutable block records produced by the PCAP-NG decoder and the traffic
structures built from them. Uses __slots__ for memory efficiency when a
capture holds hundreds of thousands of blocks.
"""

import heapq
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar


# =============================================================================
# Enums
# =============================================================================


class BlockType(str, Enum):
    """PCAP-NG block kinds understood by the decoder."""

    SECTION_HEADER = "Section Header Block"
    INTERFACE_DESCRIPTION = "Interface Description Block"
    ENHANCED_PACKET = "Enhanced Packet Block"
    SIMPLE_PACKET = "Simple Packet Block"
    UNKNOWN = "Unknown Block"


# =============================================================================
# Header Sub-structures
# =============================================================================


@dataclass(frozen=True, slots=True)
class FieldParseError:
    """
    Recoverable parse failure for a single header inside a block.

    Stored in place of the header so decoding can continue with the next block.
    """

    field: str
    """Which header failed ("ethernet" or "ipv4")."""

    message: str
    """Human-readable reason."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"field": self.field, "error": self.message}


@dataclass(frozen=True, slots=True)
class EthernetHeader:
    """Ethernet II header fields."""

    destination_mac: str
    source_mac: str
    ether_type: int
    ether_type_name: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "destination_mac": self.destination_mac,
            "source_mac": self.source_mac,
            "ether_type": self.ether_type,
            "ether_type_name": self.ether_type_name,
        }


@dataclass(frozen=True, slots=True)
class IPv4Header:
    """IPv4 header fields extracted from a captured frame."""

    version: int
    header_length: int
    """Header length in bytes (IHL * 4)."""

    total_length: int
    ttl: int
    protocol: int
    protocol_name: str
    source_ip: str
    destination_ip: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "version": self.version,
            "header_length": self.header_length,
            "total_length": self.total_length,
            "ttl": self.ttl,
            "protocol": self.protocol,
            "protocol_name": self.protocol_name,
            "source_ip": self.source_ip,
            "destination_ip": self.destination_ip,
        }


def _sub_dict(value: EthernetHeader | IPv4Header | FieldParseError | None) -> dict | None:
    return value.to_dict() if value is not None else None


# =============================================================================
# Blocks
# =============================================================================


@dataclass(frozen=True, slots=True, kw_only=True)
class Block:
    """
    One decoded PCAP-NG block.

    Subclasses add the fields specific to each block type.
    """

    block_type: ClassVar[BlockType] = BlockType.UNKNOWN

    offset: int
    """Byte position of the block in the source buffer."""

    type_code: int
    """Raw 32-bit block type code."""

    type_name: str
    """Display name, e.g. "Enhanced Packet Block"."""

    total_length: int
    """Declared block length including header and trailer."""

    trailer_mismatch: bool = False
    """True when the trailing length word disagrees with total_length."""

    @property
    def type(self) -> BlockType:
        """Kind of block."""
        return self.block_type

    def _details(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        data = {
            "offset": self.offset,
            "type": self.type_name,
            "type_code": self.type_code,
            "total_length": self.total_length,
            "trailer_mismatch": self.trailer_mismatch,
        }
        data.update(self._details())
        return data


@dataclass(frozen=True, slots=True, kw_only=True)
class SectionHeaderBlock(Block):
    """Section Header Block (start of a capture section)."""

    block_type: ClassVar[BlockType] = BlockType.SECTION_HEADER

    byte_order_magic: int | None = None
    major_version: int | None = None
    minor_version: int | None = None
    section_length: int | None = None
    """-1 when the section length is unspecified."""

    parse_error: FieldParseError | None = None

    @property
    def byte_order(self) -> str | None:
        """Byte order label derived from the byte-order magic."""
        if self.byte_order_magic is None:
            return None
        return "Little Endian" if self.byte_order_magic == 0x1A2B3C4D else "Big Endian"

    def _details(self) -> dict[str, Any]:
        return {
            "byte_order": self.byte_order,
            "major_version": self.major_version,
            "minor_version": self.minor_version,
            "section_length": self.section_length,
            "parse_error": _sub_dict(self.parse_error),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class InterfaceDescriptionBlock(Block):
    """Interface Description Block."""

    block_type: ClassVar[BlockType] = BlockType.INTERFACE_DESCRIPTION

    link_type: int | None = None
    link_type_name: str | None = None
    snap_length: int | None = None
    parse_error: FieldParseError | None = None

    def _details(self) -> dict[str, Any]:
        return {
            "link_type": self.link_type,
            "link_type_name": self.link_type_name,
            "snap_length": self.snap_length,
            "parse_error": _sub_dict(self.parse_error),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class PacketBlock(Block):
    """Common fields for blocks carrying a captured frame."""

    captured_length: int = 0
    original_length: int = 0

    ethernet: EthernetHeader | FieldParseError | None = None
    """None when the frame is too short to hold an Ethernet header."""

    ipv4: IPv4Header | FieldParseError | None = None
    """None when the frame is not IPv4."""

    parse_error: FieldParseError | None = None

    @property
    def timestamp(self) -> float | None:
        """Capture time in Unix seconds, if the block records one."""
        return None

    @property
    def valid_ipv4(self) -> IPv4Header | None:
        """The IPv4 header if it parsed successfully."""
        return self.ipv4 if isinstance(self.ipv4, IPv4Header) else None

    def _details(self) -> dict[str, Any]:
        return {
            "captured_length": self.captured_length,
            "original_length": self.original_length,
            "ethernet": _sub_dict(self.ethernet),
            "ipv4": _sub_dict(self.ipv4),
            "parse_error": _sub_dict(self.parse_error),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class EnhancedPacketBlock(PacketBlock):
    """Enhanced Packet Block (per-interface, timestamped)."""

    block_type: ClassVar[BlockType] = BlockType.ENHANCED_PACKET

    interface_id: int = 0
    timestamp_high: int = 0
    timestamp_low: int = 0

    @property
    def timestamp_raw(self) -> int:
        """64-bit timestamp in microseconds since the epoch."""
        return (self.timestamp_high << 32) | self.timestamp_low

    @property
    def timestamp(self) -> float:
        """Capture time in Unix seconds."""
        return self.timestamp_raw / 1_000_000

    def _details(self) -> dict[str, Any]:
        data = PacketBlock._details(self)
        data.update({
            "interface_id": self.interface_id,
            "timestamp": self.timestamp,
            "timestamp_iso": _iso(self.timestamp),
        })
        return data


@dataclass(frozen=True, slots=True, kw_only=True)
class SimplePacketBlock(PacketBlock):
    """Simple Packet Block (no interface id, no timestamp)."""

    block_type: ClassVar[BlockType] = BlockType.SIMPLE_PACKET


@dataclass(frozen=True, slots=True, kw_only=True)
class UnknownBlock(Block):
    """Any block type the decoder does not interpret."""

    raw_data: bytes = b""
    """First bytes of the block body, kept for diagnostics."""

    def _details(self) -> dict[str, Any]:
        return {"raw_data": self.raw_data.hex()}


# =============================================================================
# Decoder Progress
# =============================================================================


@dataclass
class DecodeProgress:
    """Progress information for the streaming decoder."""

    offset: int
    total_size: int
    block_count: int

    @property
    def progress(self) -> float:
        """Fraction of the buffer consumed (0.0 - 1.0)."""
        if self.total_size == 0:
            return 1.0
        return min(1.0, self.offset / self.total_size)


# =============================================================================
# Endpoint Traffic
# =============================================================================


@dataclass(slots=True)
class TrafficEntry:
    """One packet observed for an endpoint, seen from that endpoint's side."""

    timestamp: float | None
    protocol: str
    peer: str
    """The other end of the packet."""

    sequence: int
    """Position of the packet among all tracked packets."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "timestamp": self.timestamp,
            "protocol": self.protocol,
            "peer": self.peer,
            "sequence": self.sequence,
        }


@dataclass
class EndpointTraffic:
    """Incoming and outgoing traffic of a single IP, in observation order."""

    incoming: list[TrafficEntry] = field(default_factory=list)
    """Packets where this IP was the destination."""

    outgoing: list[TrafficEntry] = field(default_factory=list)
    """Packets where this IP was the source."""

    @property
    def packet_count(self) -> int:
        """Total packets in both directions."""
        return len(self.incoming) + len(self.outgoing)

    def first_packets(self, limit: int = 5) -> list[dict[str, Any]]:
        """
        Preview the first packets, both directions merged in observation order.

        Capture timestamps are not used for ordering; they can be missing
        (Simple Packet Blocks) or out of order.
        """
        outgoing = [("outgoing", entry) for entry in self.outgoing[:limit]]
        incoming = [("incoming", entry) for entry in self.incoming[:limit]]
        merged = heapq.merge(outgoing, incoming, key=lambda item: item[1].sequence)
        return [
            {"direction": direction, **entry.to_dict()}
            for direction, entry in itertools.islice(merged, limit)
        ]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "incoming": [entry.to_dict() for entry in self.incoming],
            "outgoing": [entry.to_dict() for entry in self.outgoing],
        }


# =============================================================================
# Helper Functions
# =============================================================================


def _iso(timestamp: float) -> str | None:
    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return None
