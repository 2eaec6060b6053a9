"""
PacketGlobe Address Classifier

Partitions IPv4 addresses into private, multicast, reserved/special and
public ranges. Only public addresses are sent to intelligence providers.
"""

import ipaddress
from enum import Enum


class AddressClass(str, Enum):
    """Classification of an IPv4 address."""

    PRIVATE = "private"
    MULTICAST = "multicast"
    SPECIAL = "special"
    PUBLIC = "public"


PRIVATE_RANGES = [
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",  # Loopback
    "0.0.0.0/8",  # "This" network
    "169.254.0.0/16",  # Link-local
]

MULTICAST_RANGES = [
    "224.0.0.0/4",  # 224.0.0.0 - 239.255.255.255
]

# Reserved ranges that are neither private nor multicast
SPECIAL_RANGES = [
    "100.64.0.0/10",  # Carrier-grade NAT
    "192.0.0.0/24",  # IETF protocol assignments
    "192.0.2.0/24",  # TEST-NET-1
    "198.51.100.0/24",  # TEST-NET-2
    "203.0.113.0/24",  # TEST-NET-3
    "192.88.99.0/24",  # 6to4 relay anycast
    "198.18.0.0/15",  # Benchmarking
    "240.0.0.0/4",  # Reserved, including broadcast
]

_PRIVATE_NETWORKS = [ipaddress.IPv4Network(cidr) for cidr in PRIVATE_RANGES]
_MULTICAST_NETWORKS = [ipaddress.IPv4Network(cidr) for cidr in MULTICAST_RANGES]
_SPECIAL_NETWORKS = [ipaddress.IPv4Network(cidr) for cidr in SPECIAL_RANGES]


def _in_any(ip: str, networks: list[ipaddress.IPv4Network]) -> bool:
    address = ipaddress.IPv4Address(ip)
    return any(address in network for network in networks)


def is_private(ip: str) -> bool:
    """Check if an address is private, loopback, link-local or 0.0.0.0/8."""
    return _in_any(ip, _PRIVATE_NETWORKS)


def is_multicast(ip: str) -> bool:
    """Check if an address is multicast (first octet 224-239)."""
    return _in_any(ip, _MULTICAST_NETWORKS)


def is_special(ip: str) -> bool:
    """Check if an address is private, multicast or otherwise reserved."""
    return is_private(ip) or is_multicast(ip) or _in_any(ip, _SPECIAL_NETWORKS)


def is_public(ip: str) -> bool:
    """Check if an address is globally routable."""
    return not is_special(ip)


def classify(ip: str) -> AddressClass:
    """
    Classify an address.

    Private wins over multicast, which wins over the other reserved ranges.
    """
    if is_private(ip):
        return AddressClass.PRIVATE
    if is_multicast(ip):
        return AddressClass.MULTICAST
    if _in_any(ip, _SPECIAL_NETWORKS):
        return AddressClass.SPECIAL
    return AddressClass.PUBLIC
