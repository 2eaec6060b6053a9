"""
PacketGlobe Summary Aggregator

Derives capture-level counts from the decoded blocks and the traffic index.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from packetglobe.analysis.models import Block, BlockType, EndpointTraffic


@dataclass(frozen=True)
class CaptureSummary:
    """Capture-level metrics."""

    total_blocks: int = 0
    total_packets: int = 0
    total_interfaces: int = 0
    unique_ips: int = 0
    block_counts: dict[str, int] = field(default_factory=dict)
    """Block type display name -> count."""

    file_size: int = 0
    """Sum of declared block lengths."""

    trailer_mismatches: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "total_blocks": self.total_blocks,
            "total_packets": self.total_packets,
            "total_interfaces": self.total_interfaces,
            "unique_ips": self.unique_ips,
            "block_counts": dict(self.block_counts),
            "file_size": self.file_size,
            "trailer_mismatches": self.trailer_mismatches,
        }


_PACKET_TYPES = (BlockType.ENHANCED_PACKET, BlockType.SIMPLE_PACKET)


def summarize(
    blocks: Iterable[Block],
    endpoint_index: Mapping[str, EndpointTraffic],
) -> CaptureSummary:
    """
    Compute summary metrics.

    Args:
        blocks: All decoded blocks
        endpoint_index: Traffic index built by the EndpointTracker

    Returns:
        CaptureSummary (all zeros for empty input)
    """
    block_counts: Counter[str] = Counter()
    total_blocks = total_packets = total_interfaces = 0
    file_size = mismatches = 0

    for block in blocks:
        total_blocks += 1
        block_counts[block.type_name] += 1
        file_size += block.total_length

        if block.type in _PACKET_TYPES:
            total_packets += 1
        elif block.type == BlockType.INTERFACE_DESCRIPTION:
            total_interfaces += 1

        if block.trailer_mismatch:
            mismatches += 1

    return CaptureSummary(
        total_blocks=total_blocks,
        total_packets=total_packets,
        total_interfaces=total_interfaces,
        unique_ips=len(endpoint_index),
        block_counts=dict(block_counts),
        file_size=file_size,
        trailer_mismatches=mismatches,
    )
