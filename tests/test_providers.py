"""
Tests for the intelligence provider clients.
"""

import httpx
import pytest

from packetglobe.enrichment.abstractapi import AbstractAPIProvider
from packetglobe.enrichment.base import ProviderError
from packetglobe.enrichment.ipapi import IpapiProvider
from packetglobe.enrichment.models import IntelligenceRecord, ThreatLevel


ABSTRACT_BODY = {
    "ip_address": "8.8.8.8",
    "security": {
        "is_vpn": False,
        "is_proxy": False,
        "is_tor": True,
        "is_hosting": True,
        "is_relay": False,
        "is_mobile": False,
        "is_abuse": False,
    },
    "asn": {"asn": 15169, "name": "Google LLC", "domain": "google.com"},
    "company": {"name": "Google", "domain": "google.com"},
    "location": {
        "city": "Mountain View",
        "region": "California",
        "country": "United States",
        "latitude": 37.386,
        "longitude": -122.0838,
    },
    "timezone": {"name": "America/Los_Angeles"},
    "flag": {"emoji": "🇺🇸"},
}

IPAPI_BODY = {
    "ip": "1.1.1.1",
    "city": "Sydney",
    "region": "New South Wales",
    "country_name": "Australia",
    "latitude": "-33.8688",
    "longitude": "151.209",
    "org": "CLOUDFLARENET",
    "asn": "AS13335",
    "timezone": "Australia/Sydney",
}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestAbstractAPIProvider:
    """Tests for the primary provider."""

    @pytest.mark.asyncio
    async def test_maps_response(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=ABSTRACT_BODY)

        async with _client(handler) as client:
            provider = AbstractAPIProvider(
                api_key="test-key",
                base_url="https://abstract.test/v1/",
                client=client,
            )
            record = await provider.lookup("8.8.8.8")

        assert isinstance(record, IntelligenceRecord)
        assert requests[0].url.params["api_key"] == "test-key"
        assert requests[0].url.params["ip_address"] == "8.8.8.8"
        assert record.source == "abstractapi"
        assert record.country == "United States"
        assert record.city == "Mountain View"
        assert record.isp == "Google"
        assert record.asn == "Google LLC"
        assert record.asn_number == 15169
        assert record.timezone == "America/Los_Angeles"
        assert record.flag == "🇺🇸"
        assert record.security.is_tor and record.security.is_hosting
        assert record.threat_level == ThreatLevel.CRITICAL
        assert record.map_url is not None

    @pytest.mark.asyncio
    async def test_not_configured(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with _client(handler) as client:
            provider = AbstractAPIProvider(api_key="", client=client)
            result = await provider.lookup("8.8.8.8")

        assert isinstance(result, ProviderError)
        assert result.error_type == "not_configured"

    @pytest.mark.asyncio
    async def test_http_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": {"message": "Too many requests"}})

        async with _client(handler) as client:
            provider = AbstractAPIProvider(api_key="k", client=client)
            result = await provider.lookup("8.8.8.8")

        assert isinstance(result, ProviderError)
        assert result.status_code == 429
        assert result.message == "Too many requests"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            provider = AbstractAPIProvider(api_key="k", client=client, timeout=1.0)
            result = await provider.lookup("8.8.8.8")

        assert isinstance(result, ProviderError)
        assert result.error_type == "timeout"

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            provider = AbstractAPIProvider(api_key="k", client=client)
            result = await provider.lookup("8.8.8.8")

        assert isinstance(result, ProviderError)
        assert result.error_type == "network_error"

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>oops</html>")

        async with _client(handler) as client:
            provider = AbstractAPIProvider(api_key="k", client=client)
            result = await provider.lookup("8.8.8.8")

        assert isinstance(result, ProviderError)
        assert result.error_type == "malformed_json"

    @pytest.mark.asyncio
    async def test_missing_sections_default(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ip_address": "8.8.8.8", "security": None})

        async with _client(handler) as client:
            provider = AbstractAPIProvider(api_key="k", client=client)
            record = await provider.lookup("8.8.8.8")

        assert record.country == "Unknown"
        assert record.latitude == 0.0
        assert record.map_url is None
        assert record.threat_level == ThreatLevel.SAFE


class TestIpapiProvider:
    """Tests for the fallback provider."""

    @pytest.mark.asyncio
    async def test_maps_response(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=IPAPI_BODY)

        async with _client(handler) as client:
            provider = IpapiProvider(api_key="", base_url="https://ipapi.test/", client=client)
            record = await provider.lookup("1.1.1.1")

        assert requests[0].url.host == "ipapi.test"
        assert requests[0].url.path == "/1.1.1.1/json/"
        assert "key" not in requests[0].url.params
        assert record.source == "ipapi"
        assert record.country == "Australia"
        assert record.isp == "CLOUDFLARENET"
        assert record.asn == "AS13335"
        assert record.latitude == pytest.approx(-33.8688)
        assert record.threat_level == ThreatLevel.SAFE
        assert not any(record.security.to_dict().values())

    @pytest.mark.asyncio
    async def test_api_key_sent_when_configured(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=IPAPI_BODY)

        async with _client(handler) as client:
            provider = IpapiProvider(api_key="paid", base_url="https://ipapi.test", client=client)
            await provider.lookup("1.1.1.1")

        assert requests[0].url.params["key"] == "paid"

    @pytest.mark.asyncio
    async def test_error_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"error": True, "reason": "RateLimited"})

        async with _client(handler) as client:
            provider = IpapiProvider(api_key="", client=client)
            result = await provider.lookup("1.1.1.1")

        assert isinstance(result, ProviderError)
        assert result.provider == "ipapi"
        assert result.message == "RateLimited"
