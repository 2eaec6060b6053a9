"""
PacketGlobe REST API Routes

Defines the REST API endpoints for capture analysis and live reads of the
IP intelligence cache.
"""

import asyncio
import ipaddress
import time
import uuid
from pathlib import Path
from typing import Annotated

import httpx
import structlog
from fastapi import APIRouter, BackgroundTasks, File, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field

from packetglobe.analysis.cancellation import AnalysisCancelled
from packetglobe.analysis.decoder import FormatError
from packetglobe.analysis.models import DecodeProgress
from packetglobe.config import settings
from packetglobe.enrichment.abstractapi import AbstractAPIProvider
from packetglobe.enrichment.cache import IntelligenceCache
from packetglobe.enrichment.ipapi import IpapiProvider
from packetglobe.enrichment.pipeline import EnrichmentPipeline, EnrichmentProgress, RequestThrottle
from packetglobe.session import CaptureSession

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["analysis"])

VALID_EXTENSIONS = {".pcapng"}

# Share of overall progress given to decoding; enrichment takes the rest
DECODE_PROGRESS_SHARE = 0.5


# =============================================================================
# Request/Response Models
# =============================================================================


class AnalysisResponse(BaseModel):
    """Response after initiating an analysis."""

    analysis_id: str = Field(..., description="Unique analysis identifier")
    status: str = Field(..., description="Current analysis status")
    message: str = Field(..., description="Status message")


class AnalysisStatus(BaseModel):
    """Current status of an analysis."""

    analysis_id: str
    status: str  # "pending", "decoding", "enriching", "complete", "error", "cancelled"
    phase: str  # Current phase description
    progress: float  # 0.0 - 1.0
    blocks_processed: int
    addresses_enriched: int
    total_addresses: int | None
    elapsed_seconds: float
    error: str | None = None
    error_offset: int | None = None


class IntelligenceSnapshot(BaseModel):
    """Live view of the intelligence cache."""

    count: int
    stats: dict
    records: dict[str, dict]


# =============================================================================
# In-Memory Analysis Store
# =============================================================================

# Simple in-memory storage for analysis jobs
_analyses: dict[str, dict] = {}


def _get_analysis(analysis_id: str) -> dict:
    if analysis_id not in _analyses:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return _analyses[analysis_id]


# =============================================================================
# Analysis Endpoints
# =============================================================================


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze_upload(
    request: Request,
    background_tasks: BackgroundTasks,
    file: Annotated[UploadFile, File(description="PCAP-NG file to analyze")],
) -> AnalysisResponse:
    """
    Upload and analyze a PCAP-NG capture.

    Returns an analysis ID that can be used to check status and retrieve results.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    suffix = Path(file.filename).suffix.lower()
    if suffix not in VALID_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type. Accepted: {', '.join(sorted(VALID_EXTENSIONS))}",
        )

    analysis_id = str(uuid.uuid4())
    temp_path = settings.ensure_temp_dir() / f"{analysis_id}{suffix}"

    size = 0
    try:
        # Stream file to disk to handle large files
        with open(temp_path, "wb") as f:
            while chunk := await file.read(1024 * 1024):  # 1MB chunks
                size += len(chunk)
                if size > settings.max_upload_size:
                    break
                f.write(chunk)
    except OSError as e:
        logger.error("file_upload_failed", analysis_id=analysis_id, error=str(e))
        temp_path.unlink(missing_ok=True)
        raise HTTPException(status_code=500, detail="Failed to save uploaded file")

    if size > settings.max_upload_size:
        temp_path.unlink(missing_ok=True)
        logger.warning("upload_too_large", analysis_id=analysis_id, limit=settings.max_upload_size)
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds maximum size of {settings.max_upload_size} bytes",
        )

    logger.info(
        "file_uploaded",
        analysis_id=analysis_id,
        filename=file.filename,
        size_bytes=size,
    )

    _analyses[analysis_id] = {
        "id": analysis_id,
        "status": "pending",
        "phase": "Queued for processing",
        "progress": 0.0,
        "blocks_processed": 0,
        "addresses_enriched": 0,
        "total_addresses": None,
        "elapsed_seconds": 0.0,
        "original_filename": file.filename,
        "cancel_event": asyncio.Event(),
        "results": None,
        "error": None,
        "error_offset": None,
    }

    background_tasks.add_task(
        run_analysis,
        analysis_id,
        temp_path,
        request.app.state.cache,
        request.app.state.http_client,
        request.app.state.request_throttle,
    )

    return AnalysisResponse(
        analysis_id=analysis_id,
        status="pending",
        message=f"Analysis started for {file.filename}",
    )


@router.get("/analysis/{analysis_id}", response_model=AnalysisStatus)
async def get_analysis_status(analysis_id: str) -> AnalysisStatus:
    """Get the current status and progress of an analysis."""
    analysis = _get_analysis(analysis_id)

    return AnalysisStatus(
        analysis_id=analysis["id"],
        status=analysis["status"],
        phase=analysis["phase"],
        progress=analysis["progress"],
        blocks_processed=analysis["blocks_processed"],
        addresses_enriched=analysis["addresses_enriched"],
        total_addresses=analysis["total_addresses"],
        elapsed_seconds=analysis["elapsed_seconds"],
        error=analysis["error"],
        error_offset=analysis["error_offset"],
    )


@router.get("/analysis/{analysis_id}/results")
async def get_analysis_results(analysis_id: str) -> dict:
    """Get the full results of a completed analysis."""
    analysis = _get_analysis(analysis_id)

    if analysis["status"] != "complete":
        raise HTTPException(
            status_code=400,
            detail=f"Analysis not complete. Current status: {analysis['status']}",
        )

    if analysis["results"] is None:
        raise HTTPException(status_code=500, detail="Results not available")

    return analysis["results"]


@router.delete("/analysis/{analysis_id}", response_model=AnalysisResponse)
async def cancel_analysis(analysis_id: str) -> AnalysisResponse:
    """Request cancellation of a running analysis."""
    analysis = _get_analysis(analysis_id)

    if analysis["status"] in ("complete", "error", "cancelled"):
        raise HTTPException(
            status_code=409,
            detail=f"Analysis already finished. Current status: {analysis['status']}",
        )

    analysis["cancel_event"].set()
    logger.info("analysis_cancel_requested", analysis_id=analysis_id)

    return AnalysisResponse(
        analysis_id=analysis_id,
        status=analysis["status"],
        message="Cancellation requested",
    )


# =============================================================================
# Intelligence Endpoints
# =============================================================================


@router.get("/intelligence", response_model=IntelligenceSnapshot)
async def list_intelligence(request: Request) -> IntelligenceSnapshot:
    """
    Read the whole intelligence cache.

    Safe to poll while an enrichment run is writing.
    """
    cache: IntelligenceCache = request.app.state.cache
    snapshot = cache.snapshot()

    return IntelligenceSnapshot(
        count=len(snapshot),
        stats=cache.stats,
        records={ip: record.to_dict() for ip, record in snapshot.items()},
    )


@router.get("/intelligence/{ip}")
async def get_intelligence(request: Request, ip: str) -> dict:
    """Read the intelligence record for one IPv4 address."""
    try:
        ipaddress.IPv4Address(ip)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid IPv4 address: {ip}")

    record = request.app.state.cache.peek(ip)
    if record is None:
        raise HTTPException(status_code=404, detail="No intelligence for this address")

    return {"ip": ip, **record.to_dict()}


# =============================================================================
# Background Task
# =============================================================================


async def run_analysis(
    analysis_id: str,
    file_path: Path,
    cache: IntelligenceCache,
    http_client: httpx.AsyncClient | None = None,
    throttle: RequestThrottle | None = None,
) -> None:
    """
    Background task to run the full analysis pipeline.

    Phases:
    1. Decode PCAP-NG blocks and track endpoints
    2. Enrich endpoints with IP intelligence
    3. Summarize
    """
    logger.info("analysis_starting", analysis_id=analysis_id, file_path=str(file_path))

    analysis = _analyses[analysis_id]
    start_time = time.time()

    def update_decode_progress(progress: DecodeProgress) -> None:
        analysis["status"] = "decoding"
        analysis["phase"] = "Decoding PCAP-NG blocks"
        analysis["progress"] = progress.progress * DECODE_PROGRESS_SHARE
        analysis["blocks_processed"] = progress.block_count
        analysis["elapsed_seconds"] = time.time() - start_time

    def update_enrichment_progress(progress: EnrichmentProgress) -> None:
        analysis["status"] = "enriching"
        analysis["phase"] = f"Enriching {progress.ip}"
        analysis["progress"] = DECODE_PROGRESS_SHARE + (
            (1 - DECODE_PROGRESS_SHARE) * progress.current / max(progress.total, 1)
        )
        analysis["addresses_enriched"] = progress.current
        analysis["total_addresses"] = progress.total
        analysis["elapsed_seconds"] = time.time() - start_time

    pipeline = EnrichmentPipeline(
        cache,
        primary=AbstractAPIProvider(client=http_client),
        fallback=IpapiProvider(client=http_client),
        throttle=throttle,
    )
    session = CaptureSession(
        cache,
        pipeline=pipeline,
        yield_every=settings.decoder_yield_interval,
        max_block_length=settings.max_block_length,
    )

    try:
        buffer = file_path.read_bytes()

        result = await session.analyze(
            buffer,
            progress_callback=update_decode_progress,
            enrichment_callback=update_enrichment_progress,
            cancel_event=analysis["cancel_event"],
        )

        analysis["results"] = result.to_dict(include_blocks=False)
        analysis["status"] = "complete"
        analysis["phase"] = "Analysis complete"
        analysis["progress"] = 1.0

        logger.info(
            "analysis_complete",
            analysis_id=analysis_id,
            blocks=result.summary.total_blocks,
            packets=result.summary.total_packets,
            unique_ips=result.summary.unique_ips,
        )

    except FormatError as e:
        logger.warning("analysis_format_error", analysis_id=analysis_id, error=str(e), offset=e.offset)
        analysis["status"] = "error"
        analysis["phase"] = "Invalid PCAP-NG file"
        analysis["error"] = str(e)
        analysis["error_offset"] = e.offset

    except AnalysisCancelled:
        logger.info("analysis_cancelled", analysis_id=analysis_id)
        analysis["status"] = "cancelled"
        analysis["phase"] = "Analysis cancelled"

    except OSError as e:
        logger.error("analysis_read_failed", analysis_id=analysis_id, error=str(e))
        analysis["status"] = "error"
        analysis["phase"] = "Failed to read uploaded file"
        analysis["error"] = str(e)

    except Exception as e:
        logger.error("analysis_failed", analysis_id=analysis_id, error=str(e), exc_info=True)
        analysis["status"] = "error"
        analysis["phase"] = "Analysis failed"
        analysis["error"] = str(e)

    finally:
        analysis["elapsed_seconds"] = time.time() - start_time
        file_path.unlink(missing_ok=True)
