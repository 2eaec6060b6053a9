"""
PacketGlobe Analysis Module

Core capture analysis: PCAP-NG block decoding, address classification,
endpoint tracking and summary metrics.
"""

from packetglobe.analysis.cancellation import AnalysisCancelled
from packetglobe.analysis.classifier import (
    AddressClass,
    classify,
    is_multicast,
    is_private,
    is_public,
    is_special,
)
from packetglobe.analysis.decoder import FormatError, decode_blocks, iter_blocks
from packetglobe.analysis.models import (
    Block,
    BlockType,
    DecodeProgress,
    EndpointTraffic,
    EnhancedPacketBlock,
    EthernetHeader,
    FieldParseError,
    InterfaceDescriptionBlock,
    IPv4Header,
    PacketBlock,
    SectionHeaderBlock,
    SimplePacketBlock,
    TrafficEntry,
    UnknownBlock,
)
from packetglobe.analysis.summary import CaptureSummary, summarize
from packetglobe.analysis.tracker import EndpointTracker

__all__ = [
    "AnalysisCancelled",
    "AddressClass",
    "classify",
    "is_multicast",
    "is_private",
    "is_public",
    "is_special",
    "FormatError",
    "decode_blocks",
    "iter_blocks",
    "Block",
    "BlockType",
    "DecodeProgress",
    "EndpointTraffic",
    "EnhancedPacketBlock",
    "EthernetHeader",
    "FieldParseError",
    "InterfaceDescriptionBlock",
    "IPv4Header",
    "PacketBlock",
    "SectionHeaderBlock",
    "SimplePacketBlock",
    "TrafficEntry",
    "UnknownBlock",
    "CaptureSummary",
    "summarize",
    "EndpointTracker",
]
