"""
PacketGlobe ipapi.co Client

Fallback geolocation provider. Works without a key on the free tier and
reports no anonymization flags, so its records always score Safe.
"""

from typing import Any

import httpx

from packetglobe.config import settings
from packetglobe.enrichment.base import IntelligenceProvider, ProviderError, to_float
from packetglobe.enrichment.models import IntelligenceRecord, SecurityFlags


class IpapiProvider(IntelligenceProvider):
    """ipapi.co JSON API client."""

    name = "ipapi"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        super().__init__(
            client=client,
            timeout=timeout if timeout is not None else settings.provider_timeout,
        )
        self.api_key = api_key if api_key is not None else settings.ipapi_api_key
        self.base_url = (base_url or settings.ipapi_url).rstrip("/")

    def build_request(self, ip: str) -> tuple[str, dict[str, Any]]:
        params = {"key": self.api_key} if self.api_key else {}
        return f"{self.base_url}/{ip}/json/", params

    def normalize(self, ip: str, data: dict[str, Any]) -> IntelligenceRecord | ProviderError:
        # ipapi.co answers rate limits and reserved ranges with 200 + error body
        if data.get("error"):
            return self._error(
                "api_error",
                data.get("reason") or data.get("message") or "ipapi.co lookup failed",
            )

        return IntelligenceRecord.located(
            source=self.name,
            security=SecurityFlags(),
            latitude=to_float(data.get("latitude")),
            longitude=to_float(data.get("longitude")),
            country=data.get("country_name") or "Unknown",
            city=data.get("city") or "Unknown",
            region=data.get("region") or "Unknown",
            isp=data.get("org") or "Unknown",
            asn=data.get("asn") or "Unknown",
            timezone=data.get("timezone") or "Unknown",
        )
