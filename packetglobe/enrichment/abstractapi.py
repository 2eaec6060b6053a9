"""
PacketGlobe Abstract API Client

Primary intelligence provider: Abstract IP Intelligence.
Returns geolocation, network ownership and anonymization flags in one call.
"""

from typing import Any

import httpx

from packetglobe.config import settings
from packetglobe.enrichment.base import IntelligenceProvider, ProviderError, to_float
from packetglobe.enrichment.models import IntelligenceRecord, SecurityFlags


class AbstractAPIProvider(IntelligenceProvider):
    """
    Abstract IP Intelligence client.

    Response layout (relevant parts):
        location.{country, city, region, latitude, longitude}
        company.name, asn.{name, asn}, security.{is_vpn, ...}
        timezone.name, flag.emoji
    """

    name = "abstractapi"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Abstract API key (defaults to settings)
            base_url: Endpoint URL (defaults to settings)
            client: Shared HTTP client
            timeout: Request timeout in seconds (defaults to settings)
        """
        super().__init__(
            client=client,
            timeout=timeout if timeout is not None else settings.provider_timeout,
        )
        self.api_key = api_key if api_key is not None else settings.abstractapi_api_key
        self.base_url = base_url or settings.abstractapi_url

    @property
    def is_configured(self) -> bool:
        """Check if API key is available."""
        return bool(self.api_key)

    def build_request(self, ip: str) -> tuple[str, dict[str, Any]]:
        return self.base_url, {"api_key": self.api_key, "ip_address": ip}

    def normalize(self, ip: str, data: dict[str, Any]) -> IntelligenceRecord | ProviderError:
        location = _section(data, "location")
        company = _section(data, "company")
        asn = _section(data, "asn")
        timezone = _section(data, "timezone")
        flag = _section(data, "flag")

        return IntelligenceRecord.located(
            source=self.name,
            security=SecurityFlags.from_mapping(_section(data, "security")),
            latitude=to_float(location.get("latitude")),
            longitude=to_float(location.get("longitude")),
            country=location.get("country") or "Unknown",
            city=location.get("city") or "Unknown",
            region=location.get("region") or "Unknown",
            isp=company.get("name") or "Unknown",
            asn=asn.get("name") or "Unknown",
            asn_number=asn.get("asn"),
            timezone=timezone.get("name") or "Unknown",
            flag=flag.get("emoji") or "🏳️",
        )


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    """Get a nested object from the response, tolerating nulls."""
    value = data.get(key)
    return value if isinstance(value, dict) else {}
