"""
Tests for the enrichment pipeline.
"""

import asyncio
import threading
from unittest.mock import AsyncMock, patch

import pytest

from conftest import located_record, make_provider
from packetglobe.analysis.cancellation import AnalysisCancelled
from packetglobe.enrichment.base import ProviderError
from packetglobe.enrichment.cache import IntelligenceCache
from packetglobe.enrichment.models import IntelligenceRecord, RecordKind, ThreatLevel
from packetglobe.enrichment.pipeline import (
    FAILED_LOOKUP_MESSAGE,
    EnrichmentOutcome,
    EnrichmentPipeline,
    RequestThrottle,
)


def _error(provider: str, error_type: str = "http_500") -> ProviderError:
    return ProviderError(provider=provider, error_type=error_type, message="API Error: 500")


def _pipeline(cache, primary, fallback, flush_every: int = 10) -> EnrichmentPipeline:
    return EnrichmentPipeline(
        cache,
        primary=primary,
        fallback=fallback,
        request_delay=0,
        flush_every=flush_every,
    )


def _public_ips(count: int) -> list[str]:
    return [f"8.8.{i // 250}.{i % 250 + 1}" for i in range(count)]


class TestSpecialAddresses:
    """Tests for addresses that never reach a provider."""

    @pytest.mark.asyncio
    async def test_no_network_for_special(self, cache):
        primary = make_provider("abstractapi", result=located_record())
        fallback = make_provider("ipapi", result=located_record("ipapi"))
        pipeline = _pipeline(cache, primary, fallback)

        stats = await pipeline.run(["10.0.0.1", "224.0.0.251", "203.0.113.5"])

        primary.lookup.assert_not_awaited()
        fallback.lookup.assert_not_awaited()
        assert stats.special == 3
        assert stats.network_requests == 0
        assert cache.get("10.0.0.1").kind == RecordKind.PRIVATE
        assert cache.get("224.0.0.251").kind == RecordKind.MULTICAST
        assert cache.get("203.0.113.5").kind == RecordKind.SPECIAL


class TestProviderChain:
    """Tests for primary / fallback ordering."""

    @pytest.mark.asyncio
    async def test_primary_success(self, cache):
        record = located_record(is_proxy=True)
        primary = make_provider("abstractapi", result=record)
        fallback = make_provider("ipapi")
        pipeline = _pipeline(cache, primary, fallback)

        stats = await pipeline.run(["8.8.8.8"])

        primary.lookup.assert_awaited_once_with("8.8.8.8")
        fallback.lookup.assert_not_awaited()
        assert stats.primary == 1
        assert cache.get("8.8.8.8") == record

    @pytest.mark.asyncio
    async def test_fallback_on_primary_error(self, cache):
        primary = make_provider("abstractapi", result=_error("abstractapi"))
        fallback = make_provider("ipapi", result=located_record("ipapi"))
        pipeline = _pipeline(cache, primary, fallback)

        stats = await pipeline.run(["8.8.8.8"])

        fallback.lookup.assert_awaited_once_with("8.8.8.8")
        assert stats.fallback == 1
        assert stats.network_requests == 2
        assert cache.get("8.8.8.8").source == "ipapi"

    @pytest.mark.asyncio
    async def test_unconfigured_primary_goes_straight_to_fallback(self, cache):
        primary = make_provider("abstractapi", configured=False)
        fallback = make_provider("ipapi", result=located_record("ipapi"))
        pipeline = _pipeline(cache, primary, fallback)

        stats = await pipeline.run(["8.8.8.8"])

        primary.lookup.assert_not_awaited()
        assert stats.fallback == 1
        assert stats.network_requests == 1

    @pytest.mark.asyncio
    async def test_both_fail(self, cache):
        primary = make_provider("abstractapi", result=_error("abstractapi", "timeout"))
        fallback = make_provider("ipapi", result=_error("ipapi", "api_error"))
        pipeline = _pipeline(cache, primary, fallback)

        stats = await pipeline.run(["8.8.8.8"])

        record = cache.get("8.8.8.8")
        assert stats.failed == 1
        assert record.is_error
        assert record.error == FAILED_LOOKUP_MESSAGE
        assert record.threat_level == ThreatLevel.SAFE


class TestCacheInteraction:
    """Tests for cache reuse and flushing."""

    @pytest.mark.asyncio
    async def test_second_run_uses_cache(self, cache):
        """A warm cache produces no network requests and identical records."""
        primary = make_provider("abstractapi", result=located_record())
        fallback = make_provider("ipapi")
        pipeline = _pipeline(cache, primary, fallback)
        ips = ["8.8.8.8", "1.1.1.1", "10.0.0.1"]

        await pipeline.run(ips)
        first = dict(cache.snapshot())
        primary.lookup.reset_mock()

        stats = await pipeline.run(ips)

        primary.lookup.assert_not_awaited()
        assert stats.cached == 2
        assert stats.special == 1
        assert stats.network_requests == 0
        assert dict(cache.snapshot()) == first

    @pytest.mark.asyncio
    async def test_cached_error_is_retried(self, cache):
        cache.set("8.8.8.8", IntelligenceRecord.failed(FAILED_LOOKUP_MESSAGE))
        primary = make_provider("abstractapi", result=located_record())
        fallback = make_provider("ipapi")
        pipeline = _pipeline(cache, primary, fallback)

        stats = await pipeline.run(["8.8.8.8"])

        primary.lookup.assert_awaited_once()
        assert stats.primary == 1
        assert not cache.get("8.8.8.8").is_error

    @pytest.mark.asyncio
    async def test_flush_batching(self, cache_path):
        """25 writes with a batch of 10 flush at 10, 20 and at the end."""
        cache = IntelligenceCache(cache_path)
        primary = make_provider("abstractapi", result=located_record())
        fallback = make_provider("ipapi")
        pipeline = _pipeline(cache, primary, fallback, flush_every=10)

        stats = await pipeline.run(_public_ips(25))
        cache.close()

        assert stats.flushes == 3
        assert stats.primary == 25

        reopened = IntelligenceCache(cache_path)
        try:
            assert len(reopened) == 25
        finally:
            reopened.close()

    @pytest.mark.asyncio
    async def test_persistence_errors_are_counted(self, tmp_path):
        cache = IntelligenceCache(tmp_path)
        primary = make_provider("abstractapi", result=located_record())
        fallback = make_provider("ipapi")
        pipeline = _pipeline(cache, primary, fallback, flush_every=2)

        stats = await pipeline.run(_public_ips(4))

        assert stats.processed == 4
        assert stats.persistence_errors == 3
        assert stats.flushes == 0
        assert len(cache) == 4
        cache.close()

    @pytest.mark.asyncio
    async def test_flush_runs_off_event_loop_thread(self, cache_path, monkeypatch):
        """SQLite writes happen in a worker thread, not on the event loop."""
        cache = IntelligenceCache(cache_path)
        flush = cache.flush
        flush_threads = []

        def recording_flush():
            flush_threads.append(threading.get_ident())
            return flush()

        monkeypatch.setattr(cache, "flush", recording_flush)
        primary = make_provider("abstractapi", result=located_record())
        fallback = make_provider("ipapi")
        pipeline = _pipeline(cache, primary, fallback, flush_every=2)

        stats = await pipeline.run(_public_ips(4))
        cache.close()

        assert stats.flushes == 2
        assert len(flush_threads) == 3
        assert threading.get_ident() not in flush_threads


class TestRateLimiting:
    """Tests for the fixed delay between network requests."""

    @pytest.mark.asyncio
    async def test_delay_between_requests(self, cache):
        primary = make_provider("abstractapi", result=located_record())
        fallback = make_provider("ipapi")
        pipeline = EnrichmentPipeline(
            cache, primary=primary, fallback=fallback, request_delay=0.1,
        )

        with patch("packetglobe.enrichment.pipeline.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await pipeline.run(["8.8.8.8", "10.0.0.1", "1.1.1.1", "9.9.9.9"])

        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.1)

    @pytest.mark.asyncio
    async def test_delay_before_fallback(self, cache):
        primary = make_provider("abstractapi", result=_error("abstractapi"))
        fallback = make_provider("ipapi", result=located_record("ipapi"))
        pipeline = EnrichmentPipeline(
            cache, primary=primary, fallback=fallback, request_delay=0.1,
        )

        with patch("packetglobe.enrichment.pipeline.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await pipeline.run(["8.8.8.8"])

        assert sleep.await_count == 1


class TestProgressAndCancellation:
    """Tests for callbacks and cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_progress_in_order(self, cache):
        primary = make_provider("abstractapi", result=located_record(is_abuse=True))
        fallback = make_provider("ipapi")
        pipeline = _pipeline(cache, primary, fallback)
        updates = []

        await pipeline.run(["10.0.0.1", "8.8.8.8"], progress_callback=updates.append)

        assert [(u.current, u.total, u.ip) for u in updates] == [
            (1, 2, "10.0.0.1"),
            (2, 2, "8.8.8.8"),
        ]
        assert updates[0].outcome == EnrichmentOutcome.SPECIAL
        assert updates[1].outcome == EnrichmentOutcome.PRIMARY
        assert updates[1].threat_level == ThreatLevel.CRITICAL

    @pytest.mark.asyncio
    async def test_cancellation_flushes_completed_work(self, cache_path):
        cache = IntelligenceCache(cache_path)
        primary = make_provider("abstractapi", result=located_record())
        fallback = make_provider("ipapi")
        pipeline = _pipeline(cache, primary, fallback, flush_every=100)
        cancel_event = asyncio.Event()

        def on_progress(progress):
            if progress.current == 3:
                cancel_event.set()

        with pytest.raises(AnalysisCancelled):
            await pipeline.run(
                _public_ips(10),
                progress_callback=on_progress,
                cancel_event=cancel_event,
            )
        cache.close()

        assert primary.lookup.await_count == 3

        reopened = IntelligenceCache(cache_path)
        try:
            assert len(reopened) == 3
        finally:
            reopened.close()


class TestSharedThrottle:
    """Tests for pipelines sharing one request throttle."""

    @pytest.mark.asyncio
    async def test_concurrent_pipelines_never_overlap_requests(self, cache):
        """Two analyses running at once still issue one request at a time."""
        in_flight = 0
        peak = 0

        async def slow_lookup(ip):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return located_record()

        throttle = RequestThrottle(0)
        pipelines = []
        for _ in range(2):
            primary = make_provider("abstractapi", side_effect=slow_lookup)
            pipelines.append(EnrichmentPipeline(
                cache,
                primary=primary,
                fallback=make_provider("ipapi"),
                throttle=throttle,
            ))

        results = await asyncio.gather(
            pipelines[0].run(["8.8.8.8", "8.8.4.4", "1.1.1.1"]),
            pipelines[1].run(["9.9.9.9", "1.0.0.1", "208.67.222.222"]),
        )

        assert peak == 1
        assert [stats.primary for stats in results] == [3, 3]

    @pytest.mark.asyncio
    async def test_delay_applies_across_pipelines(self, cache):
        throttle = RequestThrottle(0.1)
        first = EnrichmentPipeline(
            cache,
            primary=make_provider("abstractapi", result=located_record()),
            fallback=make_provider("ipapi"),
            throttle=throttle,
        )
        second = EnrichmentPipeline(
            cache,
            primary=make_provider("abstractapi", result=located_record()),
            fallback=make_provider("ipapi"),
            throttle=throttle,
        )

        with patch("packetglobe.enrichment.pipeline.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await first.run(["8.8.8.8"])
            await second.run(["1.1.1.1"])

        sleep.assert_awaited_once_with(0.1)
