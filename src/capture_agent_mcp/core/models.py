from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class PacketRecord:
    """
    Decoded packet tuple that every packet source must output.

    This decouples aggregation from capture backends and dissectors.

    Fields:
      ts
        Unix time in seconds, when the packet was captured.

      protocol
        Highest protocol name the dissector recognised, such as TCP, UDP, DNS.

      src, dst
        Addresses as strings. IP when present, link layer address otherwise.

      size
        Captured frame length in bytes.

      row
        Index of the packet in the consumer packet list. Use -1 if the
        consumer does not track rows.
    """

    ts: float
    protocol: str
    src: str
    dst: str
    size: int
    row: int = -1

    def connection(self) -> Tuple[str, str]:
        return (self.src, self.dst)


@dataclass
class CaptureSession:
    """
    Live state of one capture, owned by the CaptureWorker.

    filter_expression always names the filter last installed successfully.
    link_type, net and netmask are resolved after the device opens.
    """

    interface: str
    filter_expression: str = ""
    promiscuous: bool = True
    link_type: Optional[int] = None
    net: int = 0
    netmask: int = 0


@dataclass
class PerSecondBucket:
    """
    Aggregate of every packet seen during one second of a session.

    second is relative to the session start. The bucket is created on the
    first packet of its second and becomes read only once finalized.
    """

    second: int
    protocol_counts: Dict[str, int] = field(default_factory=dict)
    # dict keys keep first seen order and reject duplicate pairs
    connections: Dict[Tuple[str, str], None] = field(default_factory=dict)
    packets: int = 0
    bytes: int = 0
    source_packets: Dict[str, int] = field(default_factory=dict)
    destination_packets: Dict[str, int] = field(default_factory=dict)
    source_fan_out: Dict[str, set] = field(default_factory=dict)
    destination_fan_in: Dict[str, set] = field(default_factory=dict)
    rows: List[int] = field(default_factory=list)
    rows_by_source: Dict[str, List[int]] = field(default_factory=dict)
    rows_by_destination: Dict[str, List[int]] = field(default_factory=dict)
    finalized: bool = False

    def add(self, protocol: str, src: str, dst: str, size: int, row: int = -1) -> None:
        if self.finalized:
            raise RuntimeError(f"bucket for second {self.second} is already finalized")

        self.protocol_counts[protocol] = self.protocol_counts.get(protocol, 0) + 1
        self.connections[(src, dst)] = None
        self.packets += 1
        self.bytes += max(int(size), 0)
        self.source_packets[src] = self.source_packets.get(src, 0) + 1
        self.destination_packets[dst] = self.destination_packets.get(dst, 0) + 1
        self.source_fan_out.setdefault(src, set()).add(dst)
        self.destination_fan_in.setdefault(dst, set()).add(src)

        if row >= 0:
            self.rows.append(row)
            self.rows_by_source.setdefault(src, []).append(row)
            self.rows_by_destination.setdefault(dst, []).append(row)

    @property
    def avg_packet_size(self) -> float:
        if self.packets <= 0:
            return 0.0
        return self.bytes / self.packets

    def to_dict(self) -> Dict[str, Any]:
        """
        Persisted shape of one second, see the session JSON document.
        """
        return {
            "second": self.second,
            "protocolCounts": dict(self.protocol_counts),
            "connections": [{"src": s, "dst": d} for s, d in self.connections],
            "avgPacketSize": self.avg_packet_size,
            "pps": float(self.packets),
            "bps": float(self.bytes),
        }


@dataclass
class FeatureSnapshot:
    """
    Read only view of a finalized bucket, as seen by the anomaly detector.

    new_connections and new_protocols are relative to the recent history
    window at the moment the bucket was finalized.
    """

    second: int = 0
    packets: float = 0.0
    bytes: float = 0.0
    avg_packet_size: float = 0.0
    unique_connections: int = 0
    new_connections: int = 0
    protocol_entropy: float = 0.0
    protocol_count: int = 0
    new_protocols: List[str] = field(default_factory=list)
    protocol_counts: Dict[str, int] = field(default_factory=dict)
    source_packets: Dict[str, int] = field(default_factory=dict)
    destination_packets: Dict[str, int] = field(default_factory=dict)
    source_fan_out: Dict[str, int] = field(default_factory=dict)
    destination_fan_in: Dict[str, int] = field(default_factory=dict)
    rows_by_source: Dict[str, List[int]] = field(default_factory=dict)
    rows_by_destination: Dict[str, List[int]] = field(default_factory=dict)
    packet_rows: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class AnomalyEvent:
    second: int
    score: float
    summary: str
    reasons: Tuple[str, ...]
    tags: Tuple[str, ...]
    details: Dict[str, Any]
    packet_rows: Tuple[int, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "second": self.second,
            "score": self.score,
            "summary": self.summary,
            "reasons": list(self.reasons),
            "tags": list(self.tags),
            "details": dict(self.details),
            "packetRows": list(self.packet_rows),
        }
