from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from capture_agent_mcp.core.capability_base import Capability, CapabilityContext
from capture_agent_mcp.core.errors import PersistenceError
from capture_agent_mcp.core.models import AnomalyEvent, FeatureSnapshot
from capture_agent_mcp.core.persistence import export_anomalies

from . import rules
from .baseline import AdaptiveMetric
from .rules import RuleHit, RuleThresholds

# (snapshot attribute, reason label, tag, alpha)
SIGNALS: List[Tuple[str, str, str, float]] = [
    ("packets", "Packet rate spike", "packet-rate", 0.15),
    ("bytes", "Byte throughput surge", "byte-throughput", 0.15),
    ("unique_connections", "Connection fan-out", "connection-fanout", 0.12),
    ("new_connections", "Burst of new connections", "new-connections", 0.12),
    ("protocol_entropy", "Protocol mix shift", "protocol-entropy", 0.1),
    ("avg_packet_size", "Packet size swing", "packet-size", 0.1),
]


class AnomalyEngine:
    """
    Scores one finalized second at a time.

    Two layers:
      1. Adaptive metrics, one EWMA baseline per signal. A signal adds a
         reason when its z-score magnitude exceeds threshold.
      2. Heuristic rules over the second's fan-in, fan-out and protocol mix.

    The event score is the largest contribution, not the sum.
    Not thread safe. Call observe() from the finalizing thread only.
    """

    def __init__(
        self,
        threshold: float = 2.8,
        warmup: int = 6,
        limits: Optional[RuleThresholds] = None,
    ):
        self.threshold = float(threshold)
        self.warmup = int(warmup)
        self.limits = limits or RuleThresholds()
        self._metrics: Dict[str, AdaptiveMetric] = {
            attr: AdaptiveMetric(alpha=alpha) for attr, _, _, alpha in SIGNALS
        }

    def metric(self, name: str) -> AdaptiveMetric:
        return self._metrics[name]

    def reset(self) -> None:
        for m in self._metrics.values():
            m.reset()

    def observe(self, snap: FeatureSnapshot) -> Optional[AnomalyEvent]:
        """
        Update every baseline with this second and return an event if any
        signal or rule fired, else None.
        """
        details: Dict[str, Any] = {
            "packetsPerSecond": snap.packets,
            "bytesPerSecond": snap.bytes,
            "avgPacketSize": snap.avg_packet_size,
            "uniqueConnections": snap.unique_connections,
            "newConnections": snap.new_connections,
            "protocolEntropy": snap.protocol_entropy,
            "protocolCount": snap.protocol_count,
        }
        if snap.new_protocols:
            details["newProtocols"] = list(snap.new_protocols)
        if snap.protocol_counts:
            details["protocolCounts"] = dict(snap.protocol_counts)

        hits: List[RuleHit] = []

        # ------------------------------------------------------------
        # Adaptive metrics
        #
        # Every metric is updated on every second, even when another one
        # already fired, so all baselines keep learning at the same pace.
        # ------------------------------------------------------------
        for attr, label, tag, _ in SIGNALS:
            value = float(getattr(snap, attr))
            score = abs(self._metrics[attr].update_and_score(value, self.warmup))
            if score > self.threshold:
                hits.append(RuleHit(f"{label} ({score:.2f}σ)", score, tag, snap.packet_rows))

        # ------------------------------------------------------------
        # Heuristic rules
        # ------------------------------------------------------------
        hits.extend(rules.new_protocols(snap, self.threshold))
        hits.extend(rules.protocol_dominance(snap, self.threshold, self.limits))
        hits.extend(rules.connection_churn(snap, self.threshold, self.limits, details))

        ddos_hits, ddos_targets = rules.ddos_targets(snap, self.threshold, self.limits)
        hits.extend(ddos_hits)

        source_hits, aggressive = rules.aggressive_sources(snap, self.threshold, self.limits)
        hits.extend(source_hits)

        hits.extend(rules.dominant_source(snap, self.threshold, self.limits))

        if ddos_targets:
            details["ddosTargets"] = ddos_targets
        if aggressive:
            details["aggressiveSources"] = aggressive

        if not hits:
            return None

        tags: List[str] = []
        rows: List[int] = []
        seen_rows = set()
        for h in hits:
            if h.tag and h.tag not in tags:
                tags.append(h.tag)
            for r in h.rows:
                if r not in seen_rows:
                    seen_rows.add(r)
                    rows.append(r)

        if tags:
            details["tags"] = list(tags)

        reasons = tuple(h.reason for h in hits)
        return AnomalyEvent(
            second=snap.second,
            score=max(h.contribution for h in hits),
            summary=f"Anomaly at {snap.second}s: {'; '.join(reasons)}",
            reasons=reasons,
            tags=tuple(tags),
            details=details,
            packet_rows=tuple(rows),
        )


class BaselineAnomalyCapability:
    """
    Protocol neutral capability.

    Provides the detector every new session is scored with, and tools to
    tune and export it.

    This adds value for operators without touching packet sources.
    """

    name = "baseline_anomaly"

    def __init__(self) -> None:
        self._threshold = 2.8
        self._warmup = 6
        self._limits = RuleThresholds()
        self._engines_built = 0

    def configure(
        self,
        threshold: Optional[float] = None,
        warmup: Optional[int] = None,
        dominance_share: Optional[float] = None,
        ddos_min_sources: Optional[int] = None,
        scan_min_destinations: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Settings apply to sessions started after the call.
        Arguments left as None keep their current value.
        """
        if threshold is not None:
            self._threshold = float(threshold)
        if warmup is not None:
            self._warmup = int(warmup)
        if dominance_share is not None:
            self._limits.dominance_share = float(dominance_share)
        if ddos_min_sources is not None:
            self._limits.ddos_min_sources = int(ddos_min_sources)
        if scan_min_destinations is not None:
            self._limits.scan_min_destinations = int(scan_min_destinations)

        return {
            "ok": True,
            "threshold": self._threshold,
            "warmup": self._warmup,
            "dominance_share": self._limits.dominance_share,
            "ddos_min_sources": self._limits.ddos_min_sources,
            "scan_min_destinations": self._limits.scan_min_destinations,
        }

    def build_engine(self) -> AnomalyEngine:
        self._engines_built += 1
        limits = RuleThresholds(**vars(self._limits))
        return AnomalyEngine(threshold=self._threshold, warmup=self._warmup, limits=limits)

    def export(self, ctx: CapabilityContext, session: str) -> Dict[str, Any]:
        agg = ctx.sessions.get(session)
        if agg is None:
            return {"ok": False, "error": f"no session recorded by {session}"}
        try:
            path = export_anomalies(ctx.config.anomalies_path, agg.session_start, agg.anomalies())
        except PersistenceError as exc:
            return {"ok": False, "error": str(exc)}
        return {"ok": True, "path": str(path), "count": len(agg.anomalies())}

    def register_tools(self, mcp: Any, ctx: CapabilityContext) -> None:
        """
        Install the detector factory and expose this capability as MCP tools.

        Tools:
          anomaly_configure
          anomaly_export
        """
        self._threshold = ctx.config.threshold
        self._warmup = ctx.config.warmup
        ctx.detector_factory = self.build_engine

        if mcp is None:
            # Allows direct use in unit tests without an MCP server object.
            return

        @mcp.tool()
        def anomaly_configure(
            threshold: Optional[float] = None,
            warmup: Optional[int] = None,
            dominance_share: Optional[float] = None,
            ddos_min_sources: Optional[int] = None,
            scan_min_destinations: Optional[int] = None,
        ) -> Dict[str, Any]:
            return self.configure(
                threshold=threshold,
                warmup=warmup,
                dominance_share=dominance_share,
                ddos_min_sources=ddos_min_sources,
                scan_min_destinations=scan_min_destinations,
            )

        @mcp.tool()
        def anomaly_export(session: str = "live_capture") -> Dict[str, Any]:
            return self.export(ctx, session)

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "threshold": self._threshold,
            "warmup": self._warmup,
            "engines_built": self._engines_built,
        }


def build_capability() -> Capability:
    return BaselineAnomalyCapability()
