"""P4Runtime packet-in decoding and verification."""


import asyncio
import logging
import struct
from netconform.lib.errors import InvalArgError, PacketMismatchError, SubscriptionError


logger = logging.getLogger(__name__)

METADATA_INGRESS_PORT = 1
METADATA_EGRESS_PORT = 2

ETHERNET_HEADER = struct.Struct("!6s6sH")
VLAN_TAG = struct.Struct("!HH")
VLAN_ETHER_TYPES = (0x8100, 0x88A8)

LLDP_MAC = "01:80:c2:00:00:0e"
LLDP_ETHER_TYPE = 0x88CC

DEFAULT_FETCH_TIMEOUT = 10


def format_mac(data):
    return ":".join(f"{b:02x}" for b in data)


class EthernetHeader:
    def __init__(self, dst_mac, src_mac, ether_type):
        self.dst_mac = dst_mac
        self.src_mac = src_mac
        self.ether_type = ether_type

    def __repr__(self):
        return f"EthernetHeader(dst={self.dst_mac}, src={self.src_mac}, type=0x{self.ether_type:04x})"


def decode_ethernet(data):
    """Decode the Ethernet header of a frame.

    802.1Q and 802.1ad tags are skipped. ether_type is the type of the encapsulated payload.

    Args:
        data (bytes): The frame.

    Returns:
        EthernetHeader: The decoded header.

    Raises:
        InvalArgError: The frame is too short.
    """
    if len(data) < ETHERNET_HEADER.size:
        raise InvalArgError(f"frame too short for an Ethernet header: {len(data)} bytes")
    dst, src, ether_type = ETHERNET_HEADER.unpack_from(data)
    offset = ETHERNET_HEADER.size
    while ether_type in VLAN_ETHER_TYPES:
        if len(data) < offset + VLAN_TAG.size:
            raise InvalArgError("frame too short for a VLAN tag")
        _, ether_type = VLAN_TAG.unpack_from(data, offset)
        offset += VLAN_TAG.size
    return EthernetHeader(format_mac(dst), format_mac(src), ether_type)


class PacketIn:
    """A packet-in message.

    Args:
        payload (bytes): The punted frame.
        metadata (dict): Metadata id to value.
    """

    def __init__(self, payload, metadata=None):
        self.payload = payload
        self.metadata = metadata if metadata is not None else {}

    @classmethod
    def from_message(cls, packet):
        """Build from a p4.v1.PacketIn message."""
        metadata = {m.metadata_id: m.value for m in packet.metadata}
        return cls(packet.payload, metadata)


class PacketTemplate:
    """Expected header fields of received packets. None matches anything."""

    def __init__(self, dst_mac=None, ether_type=None):
        self.dst_mac = dst_mac.lower() if dst_mac is not None else None
        self.ether_type = ether_type

    def matches(self, header):
        if self.dst_mac is not None and header.dst_mac != self.dst_mac:
            return False
        if self.ether_type is not None and header.ether_type != self.ether_type:
            return False
        return True


LLDP_TEMPLATE = PacketTemplate(LLDP_MAC, LLDP_ETHER_TYPE)


async def fetch_packets(stream, count, timeout):
    """Collect packet-ins from a stream channel.

    Args:
        stream (async iterator): Packet-ins as they arrive.
        count (int): Number of packets to collect.
        timeout (float): Seconds to wait for all of them.

    Returns:
        list: Packets received before the count was reached, the stream ended or the timeout elapsed.

    Raises:
        SubscriptionError: The stream failed.
    """
    packets = []
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    it = stream.__aiter__()
    try:
        while len(packets) < count:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                packet = await asyncio.wait_for(it.__anext__(), remaining)
            except asyncio.TimeoutError:
                break
            except StopAsyncIteration:
                logger.info("packet-in stream ended")
                break
            except Exception as e:
                raise SubscriptionError(
                    f"failed to receive packets. {type(e).__name__}: {e}"
                ) from e
            packets.append(packet)
    finally:
        aclose = getattr(it, "aclose", None)
        if aclose is not None:
            await aclose()
    logger.info("received %d/%d packets", len(packets), count)
    return packets


def _port(value):
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def verify_packets(packets, template, ingress_port=None, egress_ports=None):
    """Verify received packet-ins.

    Args:
        packets (list of PacketIn): Packets to verify.
        template (PacketTemplate): Expected header.
        ingress_port (str): Expected ingress port metadata. Not checked if None.
        egress_ports (list of str): Acceptable egress port metadata. Not checked if None.

    Raises:
        PacketMismatchError: No packet, or a packet does not match.
    """
    if not packets:
        raise PacketMismatchError("no packet to verify")
    for i, packet in enumerate(packets):
        try:
            header = decode_ethernet(packet.payload)
        except InvalArgError as e:
            raise PacketMismatchError(f"packet {i}: {e}") from e
        if not template.matches(header):
            raise PacketMismatchError(f"packet {i} is not matching the wanted packet: {header}")
        for mid, value in packet.metadata.items():
            if mid == METADATA_INGRESS_PORT and ingress_port is not None:
                if _port(value) != ingress_port:
                    raise PacketMismatchError(
                        f"packet {i}: ingress port {_port(value)} is not matching {ingress_port}"
                    )
            elif mid == METADATA_EGRESS_PORT and egress_ports is not None:
                if _port(value) not in egress_ports:
                    raise PacketMismatchError(
                        f"packet {i}: egress port {_port(value)} is not one of {egress_ports}"
                    )
    logger.info("verified %d packets", len(packets))


async def receive_packets(
    stream,
    count,
    template,
    ingress_port=None,
    egress_ports=None,
    timeout=DEFAULT_FETCH_TIMEOUT,
    expect_pass=True,
):
    """Receive the packet-ins of the traffic sent to the device and verify them.

    Args:
        stream (async iterator): Packet-ins of the stream channel.
        count (int): Number of packets sent by the traffic generator.
        template (PacketTemplate): Expected header.
        ingress_port (str): Expected ingress port metadata. Not checked if None.
        egress_ports (list of str): Acceptable egress port metadata. Not checked if None.
        timeout (float): Seconds to wait for the packets.
        expect_pass (bool): False when the client must not receive any packet, e.g. a backup controller.

    Returns:
        list of PacketIn: The received packets.

    Raises:
        InvalArgError: count is not positive.
        PacketMismatchError: The number of packets or a packet does not match.
        SubscriptionError: The stream failed.
    """
    if count <= 0:
        raise InvalArgError(f"packet count must be positive: {count}")
    packets = await fetch_packets(stream, count, timeout)
    if not expect_pass:
        if packets:
            raise PacketMismatchError(f"unexpected packets received: {len(packets)}")
        return packets
    if len(packets) != count:
        raise PacketMismatchError(f"not all the packets are received, want {count} have {len(packets)}")
    verify_packets(packets, template, ingress_port, egress_ports)
    return packets
