from __future__ import annotations

from scapy.all import ARP, IP, Ether, IPv6, Packet, Padding, Raw

from capture_agent_mcp.core.models import PacketRecord

# Layers that carry no protocol identity of their own.
_SKIP_LAYERS = (Raw, Padding)


def protocol_name(pkt: Packet) -> str:
    """
    Name of the highest layer scapy dissected, e.g. TCP, DNS, ICMPv6.

    No dissection happens here, the name comes from the layers scapy
    already built when the packet was read.
    """
    name = "Unknown"
    for cls in pkt.layers():
        if cls in _SKIP_LAYERS:
            continue
        name = cls.__name__
    if name.startswith("ICMPv6"):
        return "ICMPv6"
    if name == "Ether":
        return "Ethernet"
    return name


def endpoints(pkt: Packet) -> tuple:
    if IP in pkt:
        return pkt[IP].src, pkt[IP].dst
    if IPv6 in pkt:
        return pkt[IPv6].src, pkt[IPv6].dst
    if ARP in pkt:
        return pkt[ARP].psrc, pkt[ARP].pdst
    if Ether in pkt:
        return pkt[Ether].src, pkt[Ether].dst
    return "?", "?"


def decode_packet(pkt: Packet, row: int = -1) -> PacketRecord:
    """
    Turn a scapy packet into the PacketRecord the aggregator consumes.
    """
    src, dst = endpoints(pkt)
    size = getattr(pkt, "wirelen", None) or len(pkt)
    return PacketRecord(
        ts=float(pkt.time),
        protocol=protocol_name(pkt),
        src=str(src),
        dst=str(dst),
        size=int(size),
        row=row,
    )
