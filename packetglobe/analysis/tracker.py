"""
PacketGlobe Endpoint Tracker

Builds the per-IP traffic index from decoded packet blocks.
"""

from packetglobe.analysis.models import Block, EndpointTraffic, PacketBlock, TrafficEntry


class EndpointTracker:
    """
    Directional traffic index keyed by IP address.

    Entries are created on first sighting, so iteration order of the index
    is the order in which addresses were discovered.
    """

    def __init__(self) -> None:
        self._index: dict[str, EndpointTraffic] = {}
        self.tracked_packets = 0

    def track(self, block: Block) -> bool:
        """
        Record a packet block in the index.

        Both entries of a packet carry the same sequence number, so the
        directions of one endpoint can be merged back in observation order.

        Args:
            block: Any decoded block

        Returns:
            True if the block carried a valid IPv4 header and was recorded
        """
        if not isinstance(block, PacketBlock):
            return False

        ipv4 = block.valid_ipv4
        if ipv4 is None:
            return False

        src_ip = ipv4.source_ip
        dst_ip = ipv4.destination_ip

        source = self._index.get(src_ip)
        if source is None:
            source = self._index[src_ip] = EndpointTraffic()

        destination = self._index.get(dst_ip)
        if destination is None:
            destination = self._index[dst_ip] = EndpointTraffic()

        source.outgoing.append(TrafficEntry(
            timestamp=block.timestamp,
            protocol=ipv4.protocol_name,
            peer=dst_ip,
            sequence=self.tracked_packets,
        ))
        destination.incoming.append(TrafficEntry(
            timestamp=block.timestamp,
            protocol=ipv4.protocol_name,
            peer=src_ip,
            sequence=self.tracked_packets,
        ))

        self.tracked_packets += 1
        return True

    @property
    def index(self) -> dict[str, EndpointTraffic]:
        """The traffic index (IP -> EndpointTraffic)."""
        return self._index

    @property
    def unique_ips(self) -> list[str]:
        """Unique addresses in discovery order."""
        return list(self._index)

    def get(self, ip: str) -> EndpointTraffic | None:
        """Get the traffic recorded for an IP."""
        return self._index.get(ip)

    def first_packets(self, ip: str, limit: int = 5) -> list[dict]:
        """Preview the first packets seen for an IP, both directions merged."""
        traffic = self._index.get(ip)
        if traffic is None:
            return []
        return traffic.first_packets(limit)

    def to_dict(self) -> dict[str, dict]:
        """Serialize the whole index."""
        return {ip: traffic.to_dict() for ip, traffic in self._index.items()}
