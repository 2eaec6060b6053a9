"""
PacketGlobe Intelligence Provider Interface

Defines the abstract provider used by the enrichment pipeline and the
error value providers return instead of raising.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from packetglobe.enrichment.models import IntelligenceRecord

logger = structlog.get_logger(__name__)


@dataclass
class ProviderError:
    """Failed lookup from an intelligence provider."""

    provider: str
    error_type: str
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        return f"{self.provider}: {self.message}"


class IntelligenceProvider(ABC):
    """
    Abstract base class for geolocation / threat-intelligence providers.

    Subclasses build the request and map the provider's JSON fields onto
    IntelligenceRecord. Transport, status and JSON failures are handled here.
    """

    name: str = "base"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        """
        Initialize the provider.

        Args:
            client: Shared HTTP client (a short-lived client is used per request if omitted)
            timeout: Request timeout in seconds
        """
        self._client = client
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        """Check if the provider can be queried."""
        return True

    @abstractmethod
    def build_request(self, ip: str) -> tuple[str, dict[str, Any]]:
        """Return the URL and query parameters for an IP lookup."""
        raise NotImplementedError

    @abstractmethod
    def normalize(self, ip: str, data: dict[str, Any]) -> IntelligenceRecord | ProviderError:
        """Map a provider response body onto an IntelligenceRecord."""
        raise NotImplementedError

    async def lookup(self, ip: str) -> IntelligenceRecord | ProviderError:
        """
        Look up an IP.

        Returns:
            IntelligenceRecord on success, ProviderError on any failure
        """
        if not self.is_configured:
            return self._error("not_configured", "API key not configured")

        url, params = self.build_request(ip)

        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, params=params, timeout=self.timeout)
        except httpx.TimeoutException:
            logger.warning("provider_timeout", provider=self.name, ip=ip)
            return self._error("timeout", f"Request timed out after {self.timeout} seconds")
        except httpx.RequestError as e:
            logger.warning("provider_request_error", provider=self.name, ip=ip, error=str(e))
            return self._error("network_error", str(e))

        if not response.is_success:
            message = _error_message(response) or f"API Error: {response.status_code}"
            logger.warning(
                "provider_http_error",
                provider=self.name,
                ip=ip,
                status=response.status_code,
            )
            return self._error(f"http_{response.status_code}", message, response.status_code)

        try:
            data = response.json()
        except ValueError:
            logger.warning("provider_malformed_json", provider=self.name, ip=ip)
            return self._error("malformed_json", "Response body is not valid JSON")

        if not isinstance(data, dict):
            return self._error("malformed_json", "Response body is not a JSON object")

        result = self.normalize(ip, data)
        if isinstance(result, IntelligenceRecord):
            logger.debug(
                "provider_lookup_complete",
                provider=self.name,
                ip=ip,
                country=result.country,
                threat_level=result.threat_level.label,
            )
        return result

    def _error(
        self,
        error_type: str,
        message: str,
        status_code: int | None = None,
    ) -> ProviderError:
        return ProviderError(
            provider=self.name,
            error_type=error_type,
            message=message,
            status_code=status_code,
        )


def _error_message(response: httpx.Response) -> str | None:
    """Extract an error message from an error response body, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message")
        return body.get("message") or body.get("reason")
    return None


def to_float(value: Any) -> float:
    """Parse a coordinate, defaulting to 0.0."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
