"""
PacketGlobe Enrichment Data Models

Defines the intelligence record stored per IP and the threat scoring
derived from provider security flags.
"""

from dataclasses import dataclass, field, fields
from enum import Enum, IntEnum
from typing import Any, Mapping

from packetglobe.analysis.classifier import AddressClass


class ThreatLevel(IntEnum):
    """Ordered threat classification of an IP."""

    SAFE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def color(self) -> str:
        """Display color (hex)."""
        return _THREAT_COLORS[self]

    @property
    def label(self) -> str:
        """Display name."""
        return _THREAT_LABELS[self]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"level": int(self), "color": self.color, "name": self.label}

    @classmethod
    def from_value(cls, value: Any) -> "ThreatLevel":
        """Parse a stored threat level (int or serialized dict)."""
        if isinstance(value, Mapping):
            value = value.get("level", 0)
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return cls.SAFE


_THREAT_COLORS = {
    ThreatLevel.SAFE: "#00ff41",
    ThreatLevel.LOW: "#7fff00",
    ThreatLevel.MEDIUM: "#ffff00",
    ThreatLevel.HIGH: "#ff8c00",
    ThreatLevel.CRITICAL: "#ff0000",
}

_THREAT_LABELS = {
    ThreatLevel.SAFE: "Safe",
    ThreatLevel.LOW: "Low Risk",
    ThreatLevel.MEDIUM: "Medium Risk",
    ThreatLevel.HIGH: "High Risk",
    ThreatLevel.CRITICAL: "Critical",
}


# Score contributed by each security flag
THREAT_WEIGHTS: dict[str, int] = {
    "is_abuse": 4,
    "is_tor": 3,
    "is_proxy": 2,
    "is_vpn": 1,
    "is_hosting": 1,
    "is_relay": 1,
}

# Checked in descending order, first match wins
THREAT_THRESHOLDS: list[tuple[int, ThreatLevel]] = [
    (4, ThreatLevel.CRITICAL),
    (3, ThreatLevel.HIGH),
    (2, ThreatLevel.MEDIUM),
    (1, ThreatLevel.LOW),
]


@dataclass(frozen=True)
class SecurityFlags:
    """Anonymization and abuse flags reported for an IP."""

    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False
    is_hosting: bool = False
    is_relay: bool = False
    is_mobile: bool = False
    is_abuse: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "SecurityFlags":
        """Build flags from a provider payload; missing flags are False."""
        if not data:
            return cls()
        return cls(**{f.name: bool(data.get(f.name)) for f in fields(cls)})

    @property
    def score(self) -> int:
        """Cumulative threat score."""
        return sum(weight for flag, weight in THREAT_WEIGHTS.items() if getattr(self, flag))

    def to_dict(self) -> dict[str, bool]:
        """Serialize to dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


def calculate_threat_level(security: SecurityFlags | Mapping[str, Any] | None) -> ThreatLevel:
    """
    Map security flags to a threat level.

    abuse +4, tor +3, proxy +2, vpn/hosting/relay +1 each; the total is
    compared against the thresholds without capping.
    """
    if security is None:
        return ThreatLevel.SAFE
    if not isinstance(security, SecurityFlags):
        security = SecurityFlags.from_mapping(security)

    score = security.score
    for minimum, level in THREAT_THRESHOLDS:
        if score >= minimum:
            return level
    return ThreatLevel.SAFE


class RecordKind(str, Enum):
    """What an intelligence record describes."""

    PRIVATE = "private"
    MULTICAST = "multicast"
    SPECIAL = "special"
    LOCATED = "located"
    ERROR = "error"


_ADDRESS_CLASS_KINDS = {
    AddressClass.PRIVATE: RecordKind.PRIVATE,
    AddressClass.MULTICAST: RecordKind.MULTICAST,
    AddressClass.SPECIAL: RecordKind.SPECIAL,
}

_MARKER_KEYS = {
    RecordKind.PRIVATE: "is_private",
    RecordKind.MULTICAST: "is_multicast",
    RecordKind.SPECIAL: "is_special",
}

_LOCATION_FIELDS = (
    "city",
    "region",
    "country",
    "latitude",
    "longitude",
    "isp",
    "asn",
    "asn_number",
    "timezone",
    "flag",
    "map_url",
    "source",
)


@dataclass(frozen=True)
class IntelligenceRecord:
    """
    Enrichment result for one IP.

    Non-public addresses get a marker record without any network lookup;
    failed lookups get an error record with a Safe threat level.
    """

    kind: RecordKind
    security: SecurityFlags = field(default_factory=SecurityFlags)
    threat_level: ThreatLevel = ThreatLevel.SAFE

    # Location data
    city: str | None = None
    region: str | None = None
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    # Network data
    isp: str | None = None
    asn: str | None = None
    asn_number: int | None = None

    # Additional data
    timezone: str | None = None
    flag: str | None = None
    map_url: str | None = None
    source: str | None = None

    error: str | None = None

    @classmethod
    def for_address_class(cls, address_class: AddressClass) -> "IntelligenceRecord":
        """Marker record for a private, multicast or reserved address."""
        return cls(kind=_ADDRESS_CLASS_KINDS[address_class])

    @classmethod
    def failed(cls, message: str) -> "IntelligenceRecord":
        """Error record with Safe defaults."""
        return cls(kind=RecordKind.ERROR, error=message)

    @classmethod
    def located(
        cls,
        *,
        source: str,
        security: SecurityFlags,
        latitude: float,
        longitude: float,
        **location: Any,
    ) -> "IntelligenceRecord":
        """Full record with threat level and map link derived from the data."""
        map_url = None
        if latitude and longitude:
            map_url = f"https://www.google.com/maps?q={latitude},{longitude}"

        return cls(
            kind=RecordKind.LOCATED,
            security=security,
            threat_level=calculate_threat_level(security),
            latitude=latitude,
            longitude=longitude,
            map_url=map_url,
            source=source,
            **location,
        )

    @property
    def is_error(self) -> bool:
        """True for failed lookups."""
        return self.kind == RecordKind.ERROR

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        data: dict[str, Any] = {}

        if self.kind in _MARKER_KEYS:
            data[_MARKER_KEYS[self.kind]] = True
        elif self.kind == RecordKind.ERROR:
            data["error"] = self.error
        else:
            data.update({name: getattr(self, name) for name in _LOCATION_FIELDS})

        data["security"] = self.security.to_dict()
        data["threat_level"] = self.threat_level.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IntelligenceRecord":
        """Rebuild a record serialized by to_dict."""
        security = SecurityFlags.from_mapping(data.get("security"))
        threat_level = ThreatLevel.from_value(data.get("threat_level", 0))

        for kind, key in _MARKER_KEYS.items():
            if data.get(key):
                return cls(kind=kind, security=security, threat_level=threat_level)

        if "error" in data:
            return cls(
                kind=RecordKind.ERROR,
                security=security,
                threat_level=threat_level,
                error=data.get("error"),
            )

        return cls(
            kind=RecordKind.LOCATED,
            security=security,
            threat_level=threat_level,
            **{name: data.get(name) for name in _LOCATION_FIELDS},
        )
