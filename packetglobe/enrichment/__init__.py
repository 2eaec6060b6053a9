"""
PacketGlobe IP Intelligence Enrichment

Geolocation and threat-intelligence lookups from:
- Abstract IP Intelligence (primary)
- ipapi.co (fallback)

Results are kept in a durable SQLite-backed cache.
"""

from packetglobe.enrichment.abstractapi import AbstractAPIProvider
from packetglobe.enrichment.base import IntelligenceProvider, ProviderError
from packetglobe.enrichment.cache import IntelligenceCache, PersistenceError
from packetglobe.enrichment.ipapi import IpapiProvider
from packetglobe.enrichment.models import (
    IntelligenceRecord,
    RecordKind,
    SecurityFlags,
    ThreatLevel,
    calculate_threat_level,
)
from packetglobe.enrichment.pipeline import (
    EnrichmentOutcome,
    EnrichmentPipeline,
    EnrichmentProgress,
    EnrichmentStats,
    RequestThrottle,
)

__all__ = [
    "AbstractAPIProvider",
    "IpapiProvider",
    "IntelligenceProvider",
    "ProviderError",
    "IntelligenceCache",
    "PersistenceError",
    "IntelligenceRecord",
    "RecordKind",
    "SecurityFlags",
    "ThreatLevel",
    "calculate_threat_level",
    "EnrichmentOutcome",
    "EnrichmentPipeline",
    "EnrichmentProgress",
    "EnrichmentStats",
    "RequestThrottle",
]
