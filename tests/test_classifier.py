"""
Tests for the address classifier.
"""

import pytest

from packetglobe.analysis.classifier import (
    AddressClass,
    classify,
    is_multicast,
    is_private,
    is_public,
    is_special,
)


class TestPrivateRanges:
    """Tests for private address detection."""

    @pytest.mark.parametrize("ip", [
        "10.0.0.0",
        "10.255.255.255",
        "172.16.0.0",
        "172.31.255.255",
        "192.168.0.1",
        "127.0.0.1",
        "0.0.0.0",
        "169.254.10.20",
    ])
    def test_private(self, ip):
        assert is_private(ip) is True
        assert classify(ip) == AddressClass.PRIVATE

    @pytest.mark.parametrize("ip", [
        "172.15.255.255",
        "172.32.0.0",
        "11.0.0.0",
        "192.169.0.1",
        "169.253.255.255",
    ])
    def test_just_outside_private(self, ip):
        assert is_private(ip) is False


class TestMulticast:
    """Tests for multicast detection."""

    def test_boundaries(self):
        """First octet 224 to 239 is multicast."""
        assert is_multicast("223.255.255.255") is False
        assert is_multicast("224.0.0.0") is True
        assert is_multicast("239.255.255.255") is True
        assert is_multicast("240.0.0.0") is False

    def test_classify(self):
        assert classify("224.0.0.251") == AddressClass.MULTICAST


class TestSpecialRanges:
    """Tests for reserved / special-purpose ranges."""

    @pytest.mark.parametrize("ip", [
        "100.64.0.0",
        "100.127.255.255",
        "192.0.0.8",
        "192.0.2.1",
        "198.51.100.7",
        "203.0.113.200",
        "192.88.99.1",
        "198.18.0.0",
        "198.19.255.255",
        "240.0.0.1",
        "255.255.255.255",
    ])
    def test_special(self, ip):
        assert is_special(ip) is True
        assert is_public(ip) is False
        assert classify(ip) == AddressClass.SPECIAL

    def test_private_and_multicast_are_special(self):
        """Special covers private and multicast."""
        assert is_special("10.1.2.3") is True
        assert is_special("239.1.1.1") is True

    @pytest.mark.parametrize("ip", [
        "100.63.255.255",
        "100.128.0.0",
        "198.17.255.255",
        "198.20.0.0",
        "8.8.8.8",
        "1.1.1.1",
    ])
    def test_public(self, ip):
        assert is_public(ip) is True
        assert classify(ip) == AddressClass.PUBLIC

    def test_public_is_negation_of_special(self):
        for ip in ("8.8.8.8", "10.0.0.1", "224.0.0.1", "203.0.113.1", "100.64.1.1"):
            assert is_public(ip) is not is_special(ip)
