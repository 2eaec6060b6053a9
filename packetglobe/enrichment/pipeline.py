"""
PacketGlobe Enrichment Pipeline

Produces an IntelligenceRecord for every address seen in a capture:
1. Private / multicast / reserved addresses - marker record, no network
2. Cached non-error record - skipped
3. Primary provider (Abstract API), then fallback provider (ipapi.co)
4. Both failed - error record with a Safe threat level

Requests are strictly sequential with a fixed delay between them. Pipelines
that share a RequestThrottle never overlap their requests.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

import structlog

from packetglobe.analysis.cancellation import raise_if_cancelled
from packetglobe.analysis.classifier import AddressClass, classify
from packetglobe.config import settings
from packetglobe.enrichment.abstractapi import AbstractAPIProvider
from packetglobe.enrichment.base import IntelligenceProvider, ProviderError
from packetglobe.enrichment.cache import IntelligenceCache, PersistenceError
from packetglobe.enrichment.ipapi import IpapiProvider
from packetglobe.enrichment.models import IntelligenceRecord, ThreatLevel

logger = structlog.get_logger(__name__)


FAILED_LOOKUP_MESSAGE = "Failed to fetch intelligence"


# =============================================================================
# Data Models
# =============================================================================


class EnrichmentOutcome(str, Enum):
    """How the record for an address was obtained."""

    SPECIAL = "special"
    CACHED = "cached"
    PRIMARY = "primary"
    FALLBACK = "fallback"
    FAILED = "failed"


@dataclass
class EnrichmentStats:
    """Statistics from an enrichment run."""

    total: int = 0
    processed: int = 0
    special: int = 0
    cached: int = 0
    primary: int = 0
    fallback: int = 0
    failed: int = 0
    network_requests: int = 0
    flushes: int = 0
    persistence_errors: int = 0
    duration_seconds: float = 0.0

    def count(self, outcome: EnrichmentOutcome) -> None:
        """Increment the counter for an outcome."""
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)
        self.processed += 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "total": self.total,
            "processed": self.processed,
            "special": self.special,
            "cached": self.cached,
            "primary": self.primary,
            "fallback": self.fallback,
            "failed": self.failed,
            "network_requests": self.network_requests,
            "flushes": self.flushes,
            "persistence_errors": self.persistence_errors,
            "duration_seconds": self.duration_seconds,
        }


# =============================================================================
# Progress Callbacks
# =============================================================================


@dataclass
class EnrichmentProgress:
    """Progress update for UI callbacks."""

    current: int
    total: int
    ip: str
    outcome: EnrichmentOutcome
    threat_level: ThreatLevel


EnrichmentCallback = Callable[[EnrichmentProgress], None]


# =============================================================================
# Request Throttle
# =============================================================================


class RequestThrottle:
    """
    Process-wide gate for provider requests.

    Requests run one at a time. A request that follows another within
    `delay` seconds waits the full delay before it starts.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._last_request: float | None = None
        self._lock = asyncio.Lock()

    async def run(self, call: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Await call(*args) once the previous request is done and the delay has passed."""
        async with self._lock:
            loop = asyncio.get_running_loop()
            if self._last_request is not None and self.delay > 0:
                if loop.time() - self._last_request < self.delay:
                    logger.debug("request_throttle_wait", seconds=self.delay)
                    await asyncio.sleep(self.delay)
            try:
                return await call(*args)
            finally:
                self._last_request = loop.time()


# =============================================================================
# Pipeline
# =============================================================================


class EnrichmentPipeline:
    """
    Sequential intelligence enrichment over a durable cache.

    The pipeline never raises for provider or storage failures: provider
    errors trigger the fallback and then an error record, storage errors are
    logged and counted in the stats.
    """

    def __init__(
        self,
        cache: IntelligenceCache,
        primary: IntelligenceProvider | None = None,
        fallback: IntelligenceProvider | None = None,
        request_delay: float | None = None,
        flush_every: int | None = None,
        throttle: RequestThrottle | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            cache: Intelligence cache to read and write
            primary: Primary provider (defaults to Abstract API)
            fallback: Fallback provider (defaults to ipapi.co)
            request_delay: Seconds between network requests (defaults to settings)
            flush_every: Cache writes between flushes (defaults to settings)
            throttle: Request gate shared with other pipelines (defaults to a
                private one using request_delay)
        """
        self.cache = cache
        self.primary = primary or AbstractAPIProvider()
        self.fallback = fallback or IpapiProvider()
        self.flush_every = flush_every if flush_every is not None else settings.cache_flush_interval
        if throttle is None:
            throttle = RequestThrottle(
                request_delay if request_delay is not None else settings.request_delay_seconds
            )
        self.throttle = throttle

        self._writes = 0

    async def run(
        self,
        ips: Iterable[str],
        progress_callback: EnrichmentCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> EnrichmentStats:
        """
        Enrich addresses in the given order.

        Args:
            ips: Unique addresses in discovery order
            progress_callback: Called once per address
            cancel_event: Checked before each address

        Returns:
            EnrichmentStats for this run

        Raises:
            AnalysisCancelled: If cancel_event is set (the cache is flushed first)
        """
        ips = list(ips)
        stats = EnrichmentStats(total=len(ips))
        start_time = time.time()
        self._writes = 0

        logger.info(
            "enrichment_started",
            addresses=len(ips),
            primary=self.primary.name,
            fallback=self.fallback.name,
            primary_configured=self.primary.is_configured,
        )

        for i, ip in enumerate(ips):
            if cancel_event is not None and cancel_event.is_set():
                await self._flush(stats)
                logger.info("enrichment_cancelled", processed=stats.processed, total=stats.total)
                raise_if_cancelled(cancel_event, "enrichment")

            record, outcome = await self._enrich(ip, stats)
            stats.count(outcome)

            if outcome != EnrichmentOutcome.CACHED:
                self.cache.set(ip, record)
                self._writes += 1
                if self.flush_every > 0 and self._writes % self.flush_every == 0:
                    await self._flush(stats)

            if progress_callback:
                progress_callback(EnrichmentProgress(
                    current=i + 1,
                    total=len(ips),
                    ip=ip,
                    outcome=outcome,
                    threat_level=record.threat_level,
                ))

        await self._flush(stats)
        stats.duration_seconds = round(time.time() - start_time, 2)

        logger.info(
            "enrichment_complete",
            total=stats.total,
            special=stats.special,
            cached=stats.cached,
            primary=stats.primary,
            fallback=stats.fallback,
            failed=stats.failed,
            persistence_errors=stats.persistence_errors,
            duration=stats.duration_seconds,
        )

        return stats

    async def _enrich(
        self,
        ip: str,
        stats: EnrichmentStats,
    ) -> tuple[IntelligenceRecord, EnrichmentOutcome]:
        address_class = classify(ip)
        if address_class != AddressClass.PUBLIC:
            return IntelligenceRecord.for_address_class(address_class), EnrichmentOutcome.SPECIAL

        cached = self.cache.get(ip)
        if cached is not None and not cached.is_error:
            return cached, EnrichmentOutcome.CACHED

        result = await self._request(self.primary, ip, stats)
        if not isinstance(result, ProviderError):
            return result, EnrichmentOutcome.PRIMARY

        logger.info(
            "provider_lookup_failed",
            ip=ip,
            provider=result.provider,
            error_type=result.error_type,
            error=result.message,
        )

        fallback_result = await self._request(self.fallback, ip, stats)
        if not isinstance(fallback_result, ProviderError):
            return fallback_result, EnrichmentOutcome.FALLBACK

        logger.warning(
            "all_providers_failed",
            ip=ip,
            primary_error=result.message,
            fallback_error=fallback_result.message,
        )
        return IntelligenceRecord.failed(FAILED_LOOKUP_MESSAGE), EnrichmentOutcome.FAILED

    async def _request(
        self,
        provider: IntelligenceProvider,
        ip: str,
        stats: EnrichmentStats,
    ) -> IntelligenceRecord | ProviderError:
        """Query a provider through the shared request throttle."""
        if not provider.is_configured:
            return ProviderError(
                provider=provider.name,
                error_type="not_configured",
                message="API key not configured",
            )

        stats.network_requests += 1
        return await self.throttle.run(provider.lookup, ip)

    async def _flush(self, stats: EnrichmentStats) -> None:
        try:
            if await asyncio.to_thread(self.cache.flush):
                stats.flushes += 1
        except PersistenceError as e:
            stats.persistence_errors += 1
            logger.warning("cache_persist_skipped", error=str(e))
