"""
PacketGlobe Cooperative Cancellation

Long decodes and enrichment runs check an asyncio.Event at their
suspension points and stop by raising AnalysisCancelled.
"""

import asyncio


class AnalysisCancelled(Exception):
    """Raised when a caller cancels a running analysis."""


def raise_if_cancelled(cancel_event: asyncio.Event | None, stage: str) -> None:
    """Raise AnalysisCancelled if the event has been set."""
    if cancel_event is not None and cancel_event.is_set():
        raise AnalysisCancelled(f"Analysis cancelled during {stage}")
