from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from capture_agent_mcp.core.models import FeatureSnapshot


@dataclass
class RuleHit:
    reason: str
    contribution: float
    tag: str
    rows: List[int] = field(default_factory=list)


@dataclass
class RuleThresholds:
    """
    Trigger points for the heuristic rules.

    Shares are fractions of the second's packets.
    """

    dominance_share: float = 0.65
    churn_min_new: int = 5
    churn_ratio: float = 0.6
    ddos_min_sources: int = 8
    ddos_min_packets: int = 40
    ddos_min_share: float = 0.35
    flood_min_destinations: int = 15
    flood_min_packets: int = 60
    flood_min_share: float = 0.25
    scan_min_destinations: int = 8
    scan_min_packets: int = 40
    top_source_share: float = 0.55
    top_source_min_packets: int = 30


def new_protocols(snap: FeatureSnapshot, threshold: float) -> List[RuleHit]:
    if not snap.new_protocols:
        return []
    return [
        RuleHit(
            reason=f"New protocol(s): {', '.join(snap.new_protocols)}",
            contribution=threshold + 0.4 * len(snap.new_protocols),
            tag="new-protocol",
            rows=snap.packet_rows,
        )
    ]


def dominant_protocols(snap: FeatureSnapshot, limits: RuleThresholds) -> List[str]:
    """
    Describe every protocol holding at least dominance_share of the packets,
    largest share first, as "TCP 97.5%".
    """
    total = snap.packets
    if not snap.protocol_counts or total <= 0.0:
        return []

    shares = sorted(
        ((name, count / total) for name, count in sorted(snap.protocol_counts.items())),
        key=lambda x: x[1],
        reverse=True,
    )

    out: List[str] = []
    for name, share in shares:
        if share < limits.dominance_share:
            break
        out.append(f"{name} {share * 100.0:.1f}%")
    return out


def protocol_dominance(snap: FeatureSnapshot, threshold: float, limits: RuleThresholds) -> List[RuleHit]:
    dominant = dominant_protocols(snap, limits)
    if not dominant:
        return []
    return [
        RuleHit(
            reason=f"Traffic dominated by {', '.join(dominant)}",
            contribution=threshold + 0.2 * len(dominant),
            tag="protocol-dominance",
            rows=snap.packet_rows,
        )
    ]


def connection_churn(
    snap: FeatureSnapshot,
    threshold: float,
    limits: RuleThresholds,
    details: Dict[str, Any],
) -> List[RuleHit]:
    if snap.unique_connections <= 0:
        return []

    churn = snap.new_connections / snap.unique_connections
    details["connectionChurn"] = churn

    if snap.new_connections > limits.churn_min_new and churn > limits.churn_ratio:
        return [
            RuleHit(
                reason=(
                    f"High connection churn ({snap.new_connections} new/"
                    f"{snap.unique_connections} total)"
                ),
                contribution=threshold + churn,
                tag="connection-churn",
                rows=snap.packet_rows,
            )
        ]
    return []


def ddos_targets(
    snap: FeatureSnapshot,
    threshold: float,
    limits: RuleThresholds,
) -> Tuple[List[RuleHit], List[Dict[str, Any]]]:
    """
    Destinations receiving a large share of the second from many sources.
    """
    hits: List[RuleHit] = []
    records: List[Dict[str, Any]] = []
    total = snap.packets
    if not snap.destination_fan_in or total <= 0.0:
        return hits, records

    for destination in sorted(snap.destination_fan_in):
        sources = snap.destination_fan_in[destination]
        packets = snap.destination_packets.get(destination, 0)
        if packets <= 0:
            continue
        share = packets / max(total, 1.0)
        if (
            sources >= limits.ddos_min_sources
            and packets >= limits.ddos_min_packets
            and share >= limits.ddos_min_share
        ):
            hits.append(
                RuleHit(
                    reason=f"Potential DDoS against {destination} ({sources} sources, {packets} packets)",
                    contribution=threshold + share * 2.5,
                    tag="ddos-target",
                    rows=snap.rows_by_destination.get(destination, []),
                )
            )
            records.append(
                {"destination": destination, "uniqueSources": sources, "packets": packets, "share": share}
            )
    return hits, records


def aggressive_sources(
    snap: FeatureSnapshot,
    threshold: float,
    limits: RuleThresholds,
) -> Tuple[List[RuleHit], List[Dict[str, Any]]]:
    """
    Sources that flood many destinations, or scan them below flood volume.
    A source that qualifies as a flood is not reported as a scan as well.
    """
    hits: List[RuleHit] = []
    records: List[Dict[str, Any]] = []
    total = snap.packets
    if not snap.source_fan_out or total <= 0.0:
        return hits, records

    for source in sorted(snap.source_fan_out):
        destinations = snap.source_fan_out[source]
        packets = snap.source_packets.get(source, 0)
        if packets <= 0:
            continue
        share = packets / max(total, 1.0)
        rows = snap.rows_by_source.get(source, [])

        if (
            destinations >= limits.flood_min_destinations
            and packets >= limits.flood_min_packets
            and share >= limits.flood_min_share
        ):
            hits.append(
                RuleHit(
                    reason=(
                        f"Single-source flood from {source} "
                        f"({destinations} destinations, {packets} packets)"
                    ),
                    contribution=threshold + share * 2.0,
                    tag="ddos-source",
                    rows=rows,
                )
            )
        elif destinations >= limits.scan_min_destinations and packets >= limits.scan_min_packets:
            hits.append(
                RuleHit(
                    reason=f"Possible scan from {source} ({destinations} destinations)",
                    contribution=threshold + destinations / 10.0,
                    tag="scan",
                    rows=rows,
                )
            )
        else:
            continue

        records.append(
            {"source": source, "uniqueDestinations": destinations, "packets": packets, "share": share}
        )
    return hits, records


def dominant_source(snap: FeatureSnapshot, threshold: float, limits: RuleThresholds) -> List[RuleHit]:
    total = snap.packets
    if not snap.source_packets or total <= 0.0:
        return []

    heavy_source = ""
    heavy_packets = 0
    for source in sorted(snap.source_packets):
        if snap.source_packets[source] > heavy_packets:
            heavy_packets = snap.source_packets[source]
            heavy_source = source

    share = heavy_packets / max(total, 1.0)
    if heavy_source and share >= limits.top_source_share and heavy_packets >= limits.top_source_min_packets:
        return [
            RuleHit(
                reason=f"Dominant source {heavy_source} ({share * 100.0:.1f}% of packets)",
                contribution=threshold + share * 1.5,
                tag="top-source",
                rows=snap.rows_by_source.get(heavy_source, []),
            )
        ]
    return []
