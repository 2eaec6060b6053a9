#!/usr/bin/env python3
"""
PacketGlobe CLI - Command Line Interface

Analyze a PCAP-NG capture from the terminal. Pass a file to analyze it
directly, or a directory to pick one of the captures it contains.

Usage:
    packetglobe capture.pcapng
    packetglobe /path/to/captures
    packetglobe                 # Scans the current directory
"""

import argparse
import asyncio
import json
import sys
import time
from datetime import datetime
from pathlib import Path

from packetglobe.analysis.cancellation import AnalysisCancelled
from packetglobe.analysis.decoder import FormatError
from packetglobe.analysis.models import DecodeProgress
from packetglobe.config import settings
from packetglobe.enrichment.cache import IntelligenceCache
from packetglobe.enrichment.pipeline import EnrichmentPipeline, EnrichmentProgress
from packetglobe.logging_config import configure_logging
from packetglobe.output.console import PacketGlobeConsole, format_bytes, get_console
from packetglobe.session import CaptureAnalysis, CaptureSession

CAPTURE_EXTENSIONS = {".pcapng"}


# =============================================================================
# Directory Scanning
# =============================================================================


def scan_directory(directory: Path) -> list[dict]:
    """
    Scan directory for PCAP-NG files.

    Args:
        directory: Path to scan

    Returns:
        List of file info dictionaries, newest first
    """
    files = []

    if not directory.exists():
        return []

    for path in directory.iterdir():
        if path.is_file() and path.suffix.lower() in CAPTURE_EXTENSIONS:
            stat = path.stat()
            files.append({
                "name": path.name,
                "path": path,
                "size": stat.st_size,
                "size_human": format_bytes(stat.st_size),
                "mtime": stat.st_mtime,
                "modified": datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M"),
            })

    files.sort(key=lambda x: x["mtime"], reverse=True)
    return files


def select_file(directory: Path, console: PacketGlobeConsole) -> Path | None:
    """List captures in a directory and prompt for one."""
    console.print_directory_scan(directory)
    files = scan_directory(directory)

    if not files:
        console.print_error(f"No PCAP-NG files found in {directory}")
        return None

    console.print_capture_table(files)

    while True:
        selection = console.prompt_file_selection(len(files))

        if selection.lower() == "q":
            console.console.print("\n[dim]Goodbye![/dim]")
            return None

        try:
            index = int(selection) - 1
        except ValueError:
            console.print_error("Please enter a number or 'q' to quit")
            continue

        if 0 <= index < len(files):
            return files[index]["path"]
        console.print_error(f"Invalid selection. Please enter 1-{len(files)}")


# =============================================================================
# Analysis Runner
# =============================================================================


async def run_analysis(
    file_path: Path,
    console: PacketGlobeConsole,
    cache: IntelligenceCache,
    enrich: bool = True,
) -> CaptureAnalysis:
    """
    Run the full analysis pipeline with console output.

    Args:
        file_path: Path to the capture
        console: Console instance for output
        cache: Intelligence cache
        enrich: Run IP intelligence enrichment

    Returns:
        The completed CaptureAnalysis
    """
    start_time = time.time()
    buffer = file_path.read_bytes()

    console.print_decoding_start(file_path.name, len(buffer))

    progress = console.create_progress()
    decode_task = progress.add_task("[cyan]Decoding blocks...", total=100, blocks=0)
    enrichment_started = False

    def update_progress(prog: DecodeProgress) -> None:
        """Callback to update the progress bar."""
        progress.update(decode_task, completed=prog.progress * 100, blocks=prog.block_count)
        if prog.offset >= prog.total_size:
            progress.stop()

    def print_enrichment(prog: EnrichmentProgress) -> None:
        """Callback printing one line per enriched address."""
        nonlocal enrichment_started
        if not enrichment_started:
            enrichment_started = True
            console.print_enrichment_start(prog.total, session.pipeline.primary.is_configured)
        console.print_enrichment_progress(prog)

    session = CaptureSession(
        cache,
        pipeline=EnrichmentPipeline(cache),
        yield_every=settings.decoder_yield_interval,
        enrich=enrich,
        max_block_length=settings.max_block_length,
    )

    progress.start()
    try:
        result = await session.analyze(
            buffer,
            progress_callback=update_progress,
            enrichment_callback=print_enrichment,
        )
    finally:
        progress.stop()

    console.print_decoding_complete(
        blocks=result.summary.total_blocks,
        packets=result.summary.total_packets,
        unique_ips=result.summary.unique_ips,
    )

    if result.enrichment is None:
        console.print_enrichment_skipped("disabled with --no-enrich")
    else:
        console.print_enrichment_stats(result.enrichment.to_dict())

    console.print_endpoints(result.endpoints())
    console.print_analysis_complete(time.time() - start_time, result.summary.to_dict())

    return result


# =============================================================================
# Main Entry Point
# =============================================================================


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="PacketGlobe - PCAP-NG endpoint mapping with IP intelligence",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    packetglobe capture.pcapng             # Analyze a single file
    packetglobe /path/to/captures          # Pick a capture from a directory
    packetglobe capture.pcapng -o out.json # Save results to JSON file
    packetglobe capture.pcapng --no-enrich # Decode only, no API calls
""",
    )

    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Capture file or directory to scan (default: current directory)",
    )

    parser.add_argument(
        "-o", "--output",
        type=str,
        help="Save analysis results to JSON file",
    )

    parser.add_argument(
        "--no-enrich",
        action="store_true",
        help="Skip IP intelligence lookups",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    args = parser.parse_args()

    configure_logging(level="DEBUG" if args.verbose else "WARNING", log_format="console")

    console = get_console()
    console.print_banner()

    path = Path(args.path).expanduser().resolve()

    if not path.exists():
        console.print_error(f"Path not found: {path}")
        return 1

    if path.is_dir():
        selected = select_file(path, console)
        if selected is None:
            return 0 if scan_directory(path) else 1
        path = selected

    console.print_separator()
    console.console.print(f"[bold bright_white]🔍 ANALYZING:[/bold bright_white] {path.name}")

    cache = IntelligenceCache(settings.cache_path)

    try:
        result = asyncio.run(run_analysis(path, console, cache, enrich=not args.no_enrich))

        if args.output:
            output_path = Path(args.output)
            with open(output_path, "w") as f:
                json.dump(result.to_dict(), f, indent=2, default=str)
            console.print_success(f"Results saved to {output_path}")

        return 0

    except FormatError as e:
        console.print_analysis_error(e.reason, e.offset)
        return 1
    except OSError as e:
        console.print_analysis_error(f"Failed to read capture: {e}")
        return 1
    except (KeyboardInterrupt, AnalysisCancelled):
        console.console.print("\n\n[yellow]Analysis interrupted by user[/yellow]")
        return 130
    finally:
        cache.close()


if __name__ == "__main__":
    sys.exit(main())
