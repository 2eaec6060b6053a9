"""
PacketGlobe PCAP-NG Block Decoder

Walks a PCAP-NG buffer block by block and extracts Ethernet and IPv4 headers
from captured frames. Malformed headers are recorded on the block as
FieldParseError values; only structural damage to the block chain aborts
decoding.
"""

import asyncio
import socket
import struct
from typing import AsyncGenerator, Callable, Iterator

import dpkt
import structlog

from packetglobe.analysis.cancellation import raise_if_cancelled
from packetglobe.analysis.models import (
    Block,
    DecodeProgress,
    EnhancedPacketBlock,
    EthernetHeader,
    FieldParseError,
    InterfaceDescriptionBlock,
    IPv4Header,
    SectionHeaderBlock,
    SimplePacketBlock,
    UnknownBlock,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

PCAPNG_MAGIC = 0x0A0D0D0A

BLOCK_SECTION_HEADER = 0x0A0D0D0A
BLOCK_INTERFACE_DESCRIPTION = 0x00000001
BLOCK_SIMPLE_PACKET = 0x00000003
BLOCK_NAME_RESOLUTION = 0x00000004
BLOCK_INTERFACE_STATISTICS = 0x00000005
BLOCK_ENHANCED_PACKET = 0x00000006

# type + length + trailing length
MIN_BLOCK_LENGTH = 12
MAX_BLOCK_LENGTH = 1_000_000

# Bytes kept from blocks the decoder does not interpret
RAW_DATA_LIMIT = 100

ETHERNET_HEADER_LENGTH = 14
IPV4_MIN_HEADER_LENGTH = 20
ETH_TYPE_IPV4 = 0x0800

BLOCK_TYPE_NAMES: dict[int, str] = {
    BLOCK_SECTION_HEADER: "Section Header Block",
    BLOCK_INTERFACE_DESCRIPTION: "Interface Description Block",
    BLOCK_ENHANCED_PACKET: "Enhanced Packet Block",
    BLOCK_SIMPLE_PACKET: "Simple Packet Block",
    BLOCK_INTERFACE_STATISTICS: "Interface Statistics Block",
    BLOCK_NAME_RESOLUTION: "Name Resolution Block",
}

LINK_TYPE_NAMES: dict[int, str] = {
    1: "Ethernet",
    6: "IEEE 802.5 Token Ring",
    105: "IEEE 802.11 Wireless",
    127: "IEEE 802.11 Radiotap",
}

ETHER_TYPE_NAMES: dict[int, str] = {
    0x0800: "IPv4",
    0x0806: "ARP",
    0x86DD: "IPv6",
    0x8100: "802.1Q VLAN",
}

IP_PROTOCOL_NAMES: dict[int, str] = {
    1: "ICMP",
    2: "IGMP",
    4: "IP-in-IP",
    6: "TCP",
    17: "UDP",
    41: "IPv6",
    47: "GRE",
    50: "ESP",
    51: "AH",
    89: "OSPF",
}


# =============================================================================
# Errors
# =============================================================================


class FormatError(ValueError):
    """
    Fatal structural error in a PCAP-NG buffer.

    Raised for a missing magic number, a buffer too small to hold a block,
    or a block length that is out of range or runs past the buffer.
    """

    def __init__(self, reason: str, offset: int):
        super().__init__(f"{reason} (offset {offset})")
        self.reason = reason
        self.offset = offset


# =============================================================================
# Name Lookups
# =============================================================================


def block_type_name(type_code: int) -> str:
    """Convert a block type code to a display name."""
    return BLOCK_TYPE_NAMES.get(type_code, f"Unknown Block (0x{type_code:08x})")


def link_type_name(link_type: int) -> str:
    """Convert a link type to a display name."""
    return LINK_TYPE_NAMES.get(link_type, f"Unknown ({link_type})")


def ether_type_name(ether_type: int) -> str:
    """Convert an EtherType to a display name."""
    return ETHER_TYPE_NAMES.get(ether_type, f"Unknown (0x{ether_type:x})")


def protocol_name(protocol: int) -> str:
    """Convert an IP protocol number to a display name."""
    return IP_PROTOCOL_NAMES.get(protocol, f"Unknown ({protocol})")


# =============================================================================
# Block Iteration
# =============================================================================


def iter_blocks(
    buffer: bytes | bytearray | memoryview,
    max_block_length: int = MAX_BLOCK_LENGTH,
) -> Iterator[Block]:
    """
    Decode a PCAP-NG buffer lazily, starting at offset 0 on every call.

    Args:
        buffer: Complete capture file contents
        max_block_length: Largest block length accepted

    Yields:
        One Block per PCAP-NG block, in file order

    Raises:
        FormatError: If the buffer is not PCAP-NG or a block is malformed
    """
    view = memoryview(buffer).cast("B")
    total_size = len(view)

    if total_size < MIN_BLOCK_LENGTH:
        raise FormatError("File too small to be a valid PCAP-NG file", 0)

    (magic,) = struct.unpack_from("<I", view, 0)
    if magic != PCAPNG_MAGIC:
        raise FormatError("Invalid PCAP-NG file - missing magic number", 0)

    offset = 0
    while offset < total_size:
        if offset + MIN_BLOCK_LENGTH > total_size:
            logger.warning(
                "trailing_bytes_ignored",
                offset=offset,
                remaining=total_size - offset,
            )
            return

        block = _decode_block(view, offset, max_block_length)
        yield block
        offset += block.total_length


async def decode_blocks(
    buffer: bytes | bytearray | memoryview,
    progress_callback: Callable[[DecodeProgress], None] | None = None,
    yield_every: int = 50,
    cancel_event: asyncio.Event | None = None,
    max_block_length: int = MAX_BLOCK_LENGTH,
) -> AsyncGenerator[Block, None]:
    """
    Decode a PCAP-NG buffer, yielding to the event loop periodically.

    Args:
        buffer: Complete capture file contents
        progress_callback: Called before each block with the current offset
        yield_every: Number of blocks between cooperative yields
        cancel_event: Checked at every yield; set it to stop decoding
        max_block_length: Largest block length accepted

    Yields:
        Decoded blocks in file order
    """
    total_size = len(buffer)
    block_count = 0
    mismatches = 0

    logger.info("block_decode_starting", total_size=total_size)

    for block in iter_blocks(buffer, max_block_length):
        if progress_callback:
            progress_callback(DecodeProgress(
                offset=block.offset,
                total_size=total_size,
                block_count=block_count,
            ))

        yield block

        block_count += 1
        if block.trailer_mismatch:
            mismatches += 1

        if yield_every > 0 and block_count % yield_every == 0:
            # Yield to event loop
            await asyncio.sleep(0)
            raise_if_cancelled(cancel_event, "decoding")

    if progress_callback:
        progress_callback(DecodeProgress(
            offset=total_size,
            total_size=total_size,
            block_count=block_count,
        ))

    logger.info(
        "block_decode_complete",
        blocks=block_count,
        trailer_mismatches=mismatches,
    )


# =============================================================================
# Block Parsing
# =============================================================================


def _decode_block(view: memoryview, offset: int, max_block_length: int) -> Block:
    """Decode the block at offset after validating its length."""
    type_code, block_length = struct.unpack_from("<II", view, offset)

    if block_length < MIN_BLOCK_LENGTH or block_length > max_block_length:
        raise FormatError(f"Invalid block length: {block_length}", offset)

    if offset + block_length > len(view):
        raise FormatError("Block extends beyond file boundary", offset)

    (trailer_length,) = struct.unpack_from("<I", view, offset + block_length - 4)
    trailer_mismatch = trailer_length != block_length
    if trailer_mismatch:
        logger.warning(
            "trailer_length_mismatch",
            offset=offset,
            declared=block_length,
            trailer=trailer_length,
        )

    common = {
        "offset": offset,
        "type_code": type_code,
        "type_name": block_type_name(type_code),
        "total_length": block_length,
        "trailer_mismatch": trailer_mismatch,
    }
    body = view[offset + 8 : offset + block_length - 4]

    parser = _BODY_PARSERS.get(type_code)
    if parser is None:
        return UnknownBlock(raw_data=bytes(body[:RAW_DATA_LIMIT]), **common)
    return parser(body, common)


def _parse_section_header(body: memoryview, common: dict) -> SectionHeaderBlock:
    try:
        magic, major, minor, section_length = struct.unpack_from("<IHHq", body, 0)
    except struct.error:
        return SectionHeaderBlock(
            parse_error=FieldParseError("section_header", "Block too short for section header"),
            **common,
        )
    return SectionHeaderBlock(
        byte_order_magic=magic,
        major_version=major,
        minor_version=minor,
        section_length=section_length,
        **common,
    )


def _parse_interface_description(body: memoryview, common: dict) -> InterfaceDescriptionBlock:
    try:
        link_type, _reserved, snap_length = struct.unpack_from("<HHI", body, 0)
    except struct.error:
        return InterfaceDescriptionBlock(
            parse_error=FieldParseError("interface_description", "Block too short for interface fields"),
            **common,
        )
    return InterfaceDescriptionBlock(
        link_type=link_type,
        link_type_name=link_type_name(link_type),
        snap_length=snap_length,
        **common,
    )


def _parse_enhanced_packet(body: memoryview, common: dict) -> EnhancedPacketBlock:
    try:
        interface_id, ts_high, ts_low, captured, original = struct.unpack_from("<IIIII", body, 0)
    except struct.error:
        return EnhancedPacketBlock(
            parse_error=FieldParseError("enhanced_packet", "Block too short for packet fields"),
            **common,
        )

    ethernet = ipv4 = None
    if captured >= ETHERNET_HEADER_LENGTH:
        ethernet, ipv4 = _parse_frame(body[20 : 20 + captured])

    return EnhancedPacketBlock(
        interface_id=interface_id,
        timestamp_high=ts_high,
        timestamp_low=ts_low,
        captured_length=captured,
        original_length=original,
        ethernet=ethernet,
        ipv4=ipv4,
        **common,
    )


def _parse_simple_packet(body: memoryview, common: dict) -> SimplePacketBlock:
    try:
        (original,) = struct.unpack_from("<I", body, 0)
    except struct.error:
        return SimplePacketBlock(
            parse_error=FieldParseError("simple_packet", "Block too short for packet fields"),
            **common,
        )

    captured = min(original, len(body) - 4)
    ethernet = ipv4 = None
    if original >= ETHERNET_HEADER_LENGTH:
        ethernet, ipv4 = _parse_frame(body[4 : 4 + captured])

    return SimplePacketBlock(
        captured_length=captured,
        original_length=original,
        ethernet=ethernet,
        ipv4=ipv4,
        **common,
    )


_BODY_PARSERS: dict[int, Callable[[memoryview, dict], Block]] = {
    BLOCK_SECTION_HEADER: _parse_section_header,
    BLOCK_INTERFACE_DESCRIPTION: _parse_interface_description,
    BLOCK_ENHANCED_PACKET: _parse_enhanced_packet,
    BLOCK_SIMPLE_PACKET: _parse_simple_packet,
}


# =============================================================================
# Frame Parsing
# =============================================================================


def _parse_frame(
    frame: memoryview,
) -> tuple[EthernetHeader | FieldParseError, IPv4Header | FieldParseError | None]:
    """Parse the Ethernet header and, for IPv4 frames, the IPv4 header."""
    try:
        eth = dpkt.ethernet.Ethernet(bytes(frame))
    except dpkt.UnpackError:
        return FieldParseError("ethernet", "Not enough data for Ethernet header"), None

    ethernet = _ethernet_header(eth)
    if eth.type != ETH_TYPE_IPV4:
        return ethernet, None

    # dpkt leaves a payload it could not decode as raw bytes
    if isinstance(eth.data, dpkt.ip.IP):
        return ethernet, _ipv4_header(eth.data)
    return ethernet, _ipv4_failure(bytes(eth.data))


def parse_ethernet(frame: bytes | memoryview) -> EthernetHeader | FieldParseError:
    """Parse an Ethernet II header at the start of a frame."""
    try:
        eth = dpkt.ethernet.Ethernet(bytes(frame))
    except dpkt.UnpackError:
        return FieldParseError("ethernet", "Not enough data for Ethernet header")
    return _ethernet_header(eth)


def parse_ipv4(frame: bytes | memoryview, start: int = 0) -> IPv4Header | FieldParseError:
    """Parse an IPv4 header beginning at start."""
    raw = bytes(frame[start:])
    try:
        ip = dpkt.ip.IP(raw)
    except dpkt.UnpackError:
        return _ipv4_failure(raw)
    return _ipv4_header(ip)


def _ethernet_header(eth: dpkt.ethernet.Ethernet) -> EthernetHeader:
    return EthernetHeader(
        destination_mac=_format_mac(eth.dst),
        source_mac=_format_mac(eth.src),
        ether_type=eth.type,
        ether_type_name=ether_type_name(eth.type),
    )


def _ipv4_header(ip: dpkt.ip.IP) -> IPv4Header | FieldParseError:
    if ip.v != 4:
        return FieldParseError("ipv4", f"Invalid IP version: {ip.v}")

    return IPv4Header(
        version=ip.v,
        header_length=ip.hl * 4,
        total_length=ip.len,
        ttl=ip.ttl,
        protocol=ip.p,
        protocol_name=protocol_name(ip.p),
        source_ip=socket.inet_ntoa(ip.src),
        destination_ip=socket.inet_ntoa(ip.dst),
    )


def _ipv4_failure(raw: bytes) -> FieldParseError:
    """Explain why dpkt could not decode an IPv4 payload."""
    if len(raw) < IPV4_MIN_HEADER_LENGTH:
        return FieldParseError("ipv4", "Not enough data for IPv4 header")
    version = raw[0] >> 4
    if version != 4:
        return FieldParseError("ipv4", f"Invalid IP version: {version}")
    return FieldParseError("ipv4", "Malformed IPv4 header")


def _format_mac(raw: bytes) -> str:
    return ":".join(f"{octet:02x}" for octet in raw)
