"""
PacketGlobe Console Output Module

Rich console formatting for the CLI interface.
"""

from pathlib import Path
from typing import Any

from rich.box import DOUBLE, ROUNDED
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

from packetglobe.enrichment.models import IntelligenceRecord, RecordKind, ThreatLevel
from packetglobe.enrichment.pipeline import EnrichmentOutcome, EnrichmentProgress


# =============================================================================
# Constants
# =============================================================================

VERSION = "0.1.0"

# Phase icons
PHASE_ICONS = {
    "decoding": "📦",
    "enrichment": "🌐",
    "summary": "📊",
    "complete": "✅",
    "error": "❌",
}

OUTCOME_LABELS = {
    EnrichmentOutcome.SPECIAL: "[dim]local[/dim]",
    EnrichmentOutcome.CACHED: "[cyan]cached[/cyan]",
    EnrichmentOutcome.PRIMARY: "[green]abstractapi[/green]",
    EnrichmentOutcome.FALLBACK: "[yellow]ipapi (fallback)[/yellow]",
    EnrichmentOutcome.FAILED: "[red]lookup failed[/red]",
}

KIND_LABELS = {
    RecordKind.PRIVATE: "Private",
    RecordKind.MULTICAST: "Multicast",
    RecordKind.SPECIAL: "Reserved",
}


# =============================================================================
# Console Display Class
# =============================================================================


class PacketGlobeConsole:
    """Rich console interface for the PacketGlobe CLI."""

    def __init__(self, console: Console | None = None):
        """Initialize the console."""
        self.console = console or Console()
        self._width = self.console.width

    def print_banner(self) -> None:
        """Print the PacketGlobe banner."""
        title = Text()
        title.append("🌍 PacketGlobe", style="cyan bold")
        title.append(f"  v{VERSION}", style="bright_white")

        description = """[bold cyan]PCAP-NG endpoint mapping with IP intelligence[/bold cyan]

  [yellow]•[/yellow] [white]Block Decoding[/white] - Section, interface and packet blocks
  [yellow]•[/yellow] [white]Endpoint Tracking[/white] - Per-IP incoming and outgoing traffic
  [yellow]•[/yellow] [white]Geolocation[/white] - Abstract IP Intelligence with ipapi.co fallback
  [yellow]•[/yellow] [white]Threat Scoring[/white] - VPN, proxy, Tor, hosting and abuse flags"""

        self.console.print(Panel(
            description,
            title=title,
            border_style="bright_blue",
            padding=(1, 2),
        ))
        self.console.print()

    def print_separator(self, style: str = "dim") -> None:
        """Print a horizontal separator line."""
        self.console.print("─" * self._width, style=style)

    def print_phase_header(self, phase: str, title: str, description: str = "") -> None:
        """Print a phase header with icon and description."""
        icon = PHASE_ICONS.get(phase, "▶")

        self.console.print()
        self.console.print(f"{'═' * self._width}", style="bright_blue")
        self.console.print(f" {icon} [bold bright_white]{title}[/bold bright_white]")
        if description:
            self.console.print(f"    [dim]{description}[/dim]")
        self.console.print(f"{'═' * self._width}", style="bright_blue")
        self.console.print()

    def print_success(self, text: str) -> None:
        """Print a success message."""
        self.console.print(f"  [green]✓[/green] {text}")

    def print_warning(self, text: str) -> None:
        """Print a warning message."""
        self.console.print(f"  [yellow]⚠[/yellow] {text}")

    def print_error(self, text: str) -> None:
        """Print an error message."""
        self.console.print(f"  [red]✗[/red] {text}")

    def print_info(self, text: str) -> None:
        """Print an info message."""
        self.console.print(f"  [cyan]ℹ[/cyan] {text}")

    # =========================================================================
    # Directory and File Listing
    # =========================================================================

    def print_directory_scan(self, directory: Path) -> None:
        """Print directory scanning message."""
        self.console.print(f"[dim]📁 Scanning directory:[/dim] [bright_white]{directory}[/bright_white]")
        self.console.print()

    def print_capture_table(self, files: list[dict]) -> None:
        """Print table of capture files found."""
        table = Table(
            title="Available PCAP-NG Files",
            box=ROUNDED,
            border_style="bright_blue",
            header_style="bold bright_white",
            title_style="bold cyan",
        )

        table.add_column("#", style="bright_yellow", justify="center", width=4)
        table.add_column("Filename", style="bright_white", min_width=30)
        table.add_column("Size", style="bright_green", justify="right", width=12)
        table.add_column("Modified", style="dim", width=20)

        for i, f in enumerate(files, 1):
            table.add_row(str(i), f["name"], f["size_human"], f["modified"])

        self.console.print(table)
        self.console.print()

    def prompt_file_selection(self, max_num: int) -> str:
        """Prompt user to select a file."""
        return self.console.input(
            f"[bold bright_white]Select a file to analyze (1-{max_num})[/bold bright_white] or [dim]'q' to quit[/dim]: "
        )

    # =========================================================================
    # Decoding
    # =========================================================================

    def create_progress(self) -> Progress:
        """Create a progress bar for block decoding."""
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(bar_width=40),
            TaskProgressColumn(),
            TextColumn("•"),
            TextColumn("[bright_cyan]{task.fields[blocks]:,}[/bright_cyan] blocks"),
            TextColumn("•"),
            TimeElapsedColumn(),
            console=self.console,
            transient=False,
        )

    def print_decoding_start(self, filename: str, size: int) -> None:
        """Print decoding start message."""
        self.print_phase_header(
            "decoding",
            "PHASE 1: Decoding PCAP-NG Blocks",
            f"Reading {filename} ({format_bytes(size)})",
        )

    def print_decoding_complete(self, blocks: int, packets: int, unique_ips: int) -> None:
        """Print decoding completion summary."""
        self.console.print()
        self.print_success("Decoding complete!")

        table = Table(box=None, show_header=False, padding=(0, 2))
        table.add_column("Label", style="dim")
        table.add_column("Value", style="bright_white")

        table.add_row("Blocks", f"{blocks:,}")
        table.add_row("Packets", f"{packets:,}")
        table.add_row("Unique IPs", f"{unique_ips:,}")

        self.console.print(table)

    # =========================================================================
    # Enrichment
    # =========================================================================

    def print_enrichment_start(self, total_ips: int, primary_configured: bool) -> None:
        """Print enrichment phase start."""
        self.print_phase_header(
            "enrichment",
            "PHASE 2: IP Intelligence Enrichment",
            "Abstract IP Intelligence → ipapi.co fallback",
        )
        self.print_info(f"{total_ips} unique addresses to enrich")
        if not primary_configured:
            self.print_warning("ABSTRACTAPI_API_KEY not set, using ipapi.co only")
        self.console.print()

    def print_enrichment_skipped(self, reason: str) -> None:
        """Print enrichment skipped message."""
        self.print_phase_header("enrichment", "PHASE 2: IP Intelligence Enrichment")
        self.print_warning(f"Skipped: {reason}")

    def print_enrichment_progress(self, progress: EnrichmentProgress) -> None:
        """Print one enrichment line, colored by threat level."""
        level = progress.threat_level
        status = f"[{level.color}]● {level.label}[/{level.color}]"
        outcome = OUTCOME_LABELS[progress.outcome]
        self.console.print(
            f"  [{progress.current:3}/{progress.total}] {progress.ip:18} {status}  {outcome}"
        )

    def print_enrichment_stats(self, stats: dict) -> None:
        """Print enrichment run statistics."""
        self.console.print()
        self.print_success(
            f"Enrichment complete: {stats['primary']} primary, {stats['fallback']} fallback, "
            f"{stats['cached']} cached, {stats['special']} local, {stats['failed']} failed"
        )
        if stats.get("persistence_errors"):
            self.print_warning(
                f"Intelligence cache could not be saved ({stats['persistence_errors']} errors)"
            )

    # =========================================================================
    # Results
    # =========================================================================

    def print_endpoints(self, endpoints: list[dict[str, Any]], limit: int = 25) -> None:
        """Print the endpoint table, highest threat first."""
        self.print_phase_header("summary", "PHASE 3: Endpoints")

        if not endpoints:
            self.print_info("No IPv4 endpoints found in capture")
            return

        def threat_of(endpoint: dict) -> int:
            intel = endpoint.get("intelligence") or {}
            return ThreatLevel.from_value(intel.get("threat_level")).value

        ordered = sorted(endpoints, key=threat_of, reverse=True)

        table = Table(
            box=ROUNDED,
            border_style="bright_blue",
            header_style="bold bright_white",
        )
        table.add_column("IP", style="bright_white")
        table.add_column("Location")
        table.add_column("ISP / ASN", style="dim")
        table.add_column("In", justify="right")
        table.add_column("Out", justify="right")
        table.add_column("Threat")

        for endpoint in ordered[:limit]:
            intel = endpoint.get("intelligence")
            record = IntelligenceRecord.from_dict(intel) if intel else None
            table.add_row(
                endpoint["ip"],
                _location(record),
                _network(record),
                str(endpoint["packets_in"]),
                str(endpoint["packets_out"]),
                _threat(record),
            )

        self.console.print(table)
        if len(ordered) > limit:
            self.console.print(f"  [dim]... and {len(ordered) - limit} more[/dim]")

    def print_analysis_complete(self, elapsed: float, summary: dict) -> None:
        """Print analysis completion summary."""
        self.console.print()
        self.console.print(f"{'═' * self._width}", style="bright_green")
        self.console.print(" ✅ [bold bright_green]ANALYSIS COMPLETE[/bold bright_green]")
        self.console.print(f"{'═' * self._width}", style="bright_green")
        self.console.print()

        table = Table(
            title="Capture Summary",
            box=DOUBLE,
            border_style="bright_green",
            title_style="bold bright_white",
        )
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="bright_white", justify="right")

        table.add_row("Total Time", format_duration(elapsed))
        table.add_row("Blocks", f"{summary.get('total_blocks', 0):,}")
        table.add_row("Packets", f"{summary.get('total_packets', 0):,}")
        table.add_row("Interfaces", str(summary.get("total_interfaces", 0)))
        table.add_row("Unique IPs", f"{summary.get('unique_ips', 0):,}")
        table.add_row("Bytes Decoded", format_bytes(summary.get("file_size", 0)))
        if summary.get("trailer_mismatches"):
            table.add_row("Trailer Mismatches", f"[yellow]{summary['trailer_mismatches']}[/yellow]")

        for type_name, count in summary.get("block_counts", {}).items():
            table.add_row(f"  {type_name}", f"{count:,}")

        self.console.print(table)

    def print_analysis_error(self, error: str, offset: int | None = None) -> None:
        """Print analysis error."""
        self.console.print()
        self.console.print(f"{'═' * self._width}", style="red")
        self.console.print(f" {PHASE_ICONS['error']} [bold red]ANALYSIS FAILED[/bold red]")
        self.console.print(f"{'═' * self._width}", style="red")
        self.console.print()
        self.console.print(f"[red]{error}[/red]")
        if offset is not None:
            self.console.print(f"[dim]at byte offset {offset:,} (0x{offset:x})[/dim]")


# =============================================================================
# Formatting Helpers
# =============================================================================


def _location(record: IntelligenceRecord | None) -> str:
    if record is None:
        return "[dim]-[/dim]"
    if record.kind in KIND_LABELS:
        return f"[dim]{KIND_LABELS[record.kind]}[/dim]"
    if record.is_error:
        return f"[red]{record.error}[/red]"
    return f"{record.flag or ''} {record.city}, {record.country}".strip()


def _network(record: IntelligenceRecord | None) -> str:
    if record is None or record.kind != RecordKind.LOCATED:
        return ""
    return f"{record.isp} / {record.asn}"


def _threat(record: IntelligenceRecord | None) -> str:
    level = record.threat_level if record else ThreatLevel.SAFE
    return f"[{level.color}]{level.label}[/{level.color}]"


def format_bytes(bytes_count: int) -> str:
    """Format bytes to human readable string."""
    if bytes_count < 1024:
        return f"{bytes_count} B"
    elif bytes_count < 1024 ** 2:
        return f"{bytes_count / 1024:.1f} KB"
    elif bytes_count < 1024 ** 3:
        return f"{bytes_count / (1024 ** 2):.1f} MB"
    else:
        return f"{bytes_count / (1024 ** 3):.2f} GB"


def format_duration(seconds: float) -> str:
    """Format duration to human readable string."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        mins = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{mins}m {secs}s"
    else:
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        return f"{hours}h {mins}m"


# =============================================================================
# Singleton Instance
# =============================================================================

_console: PacketGlobeConsole | None = None


def get_console() -> PacketGlobeConsole:
    """Get the singleton console instance."""
    global _console
    if _console is None:
        _console = PacketGlobeConsole()
    return _console
