"""
PacketGlobe Capture Session

Runs one capture through the whole pipeline:
decode -> track endpoints -> enrich -> summarize.

Each analyze() call builds its own tracker; the only state shared across
calls is the intelligence cache handed in by the caller.
"""

import asyncio
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping

import structlog

from packetglobe.analysis.decoder import MAX_BLOCK_LENGTH, decode_blocks
from packetglobe.analysis.models import (
    Block,
    DecodeProgress,
    EndpointTraffic,
    InterfaceDescriptionBlock,
    PacketBlock,
)
from packetglobe.analysis.summary import CaptureSummary, summarize
from packetglobe.analysis.tracker import EndpointTracker
from packetglobe.enrichment.cache import IntelligenceCache
from packetglobe.enrichment.models import IntelligenceRecord
from packetglobe.enrichment.pipeline import (
    EnrichmentCallback,
    EnrichmentPipeline,
    EnrichmentStats,
)

logger = structlog.get_logger(__name__)


PREVIEW_PACKETS = 5


@dataclass(frozen=True)
class CaptureAnalysis:
    """Final, read-only result of analyzing one capture."""

    blocks: tuple[Block, ...]
    interfaces: tuple[InterfaceDescriptionBlock, ...]
    packets: tuple[PacketBlock, ...]
    ip_cache: Mapping[str, IntelligenceRecord]
    """Intelligence records for this capture's addresses."""

    ip_traffic_index: Mapping[str, EndpointTraffic]
    summary: CaptureSummary
    enrichment: EnrichmentStats | None = None
    """None when enrichment was disabled."""

    def endpoints(self, preview: int = PREVIEW_PACKETS) -> list[dict[str, Any]]:
        """Per-address view: intelligence record, packet counts and a preview."""
        endpoints = []
        for ip, traffic in self.ip_traffic_index.items():
            record = self.ip_cache.get(ip)
            endpoints.append({
                "ip": ip,
                "packets_in": len(traffic.incoming),
                "packets_out": len(traffic.outgoing),
                "first_packets": traffic.first_packets(preview),
                "intelligence": record.to_dict() if record else None,
            })
        return endpoints

    def to_dict(self, include_blocks: bool = True) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        data: dict[str, Any] = {
            "summary": self.summary.to_dict(),
            "interfaces": [block.to_dict() for block in self.interfaces],
            "endpoints": self.endpoints(),
            "ip_cache": {ip: record.to_dict() for ip, record in self.ip_cache.items()},
            "enrichment": self.enrichment.to_dict() if self.enrichment else None,
        }
        if include_blocks:
            data["blocks"] = [block.to_dict() for block in self.blocks]
        return data


class CaptureSession:
    """
    Analysis context holding the intelligence cache and pipeline.

    Usage:
        session = CaptureSession(cache)
        analysis = await session.analyze(buffer)
    """

    def __init__(
        self,
        cache: IntelligenceCache,
        pipeline: EnrichmentPipeline | None = None,
        yield_every: int = 50,
        enrich: bool = True,
        max_block_length: int = MAX_BLOCK_LENGTH,
    ):
        """
        Initialize the session.

        Args:
            cache: Intelligence cache (shared across analyses)
            pipeline: Enrichment pipeline (built over the cache if omitted)
            yield_every: Blocks decoded between cooperative yields
            enrich: Run enrichment after decoding
            max_block_length: Largest block length accepted by the decoder
        """
        self.cache = cache
        self.pipeline = pipeline or EnrichmentPipeline(cache)
        self.yield_every = yield_every
        self.enrich = enrich
        self.max_block_length = max_block_length

    async def analyze(
        self,
        buffer: bytes | bytearray | memoryview,
        progress_callback: Callable[[DecodeProgress], None] | None = None,
        enrichment_callback: EnrichmentCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CaptureAnalysis:
        """
        Analyze a complete PCAP-NG buffer.

        Enrichment starts only after decoding has finished.

        Raises:
            FormatError: If the file is malformed (no partial result is returned)
            AnalysisCancelled: If cancel_event is set during decoding or enrichment
        """
        tracker = EndpointTracker()
        blocks: list[Block] = []
        interfaces: list[InterfaceDescriptionBlock] = []
        packets: list[PacketBlock] = []

        async for block in decode_blocks(
            buffer,
            progress_callback=progress_callback,
            yield_every=self.yield_every,
            cancel_event=cancel_event,
            max_block_length=self.max_block_length,
        ):
            blocks.append(block)
            if isinstance(block, InterfaceDescriptionBlock):
                interfaces.append(block)
            elif isinstance(block, PacketBlock):
                packets.append(block)
                tracker.track(block)

        logger.info(
            "capture_decoded",
            blocks=len(blocks),
            packets=len(packets),
            tracked_packets=tracker.tracked_packets,
            unique_ips=len(tracker.index),
        )

        stats = None
        if self.enrich:
            stats = await self.pipeline.run(
                tracker.unique_ips,
                progress_callback=enrichment_callback,
                cancel_event=cancel_event,
            )

        index = tracker.index
        return CaptureAnalysis(
            blocks=tuple(blocks),
            interfaces=tuple(interfaces),
            packets=tuple(packets),
            ip_cache=self.cache.snapshot(index),
            ip_traffic_index=MappingProxyType(index),
            summary=summarize(blocks, index),
            enrichment=stats,
        )
