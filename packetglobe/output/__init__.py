"""
PacketGlobe Output

Terminal rendering for the CLI.
"""

from packetglobe.output.console import PacketGlobeConsole, format_bytes, format_duration, get_console

__all__ = [
    "PacketGlobeConsole",
    "format_bytes",
    "format_duration",
    "get_console",
]
