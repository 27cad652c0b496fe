from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from scapy.error import Scapy_Exception
from scapy.utils import PcapReader

from capture_agent_mcp.core.aggregator import StatsAggregator
from capture_agent_mcp.core.capability_base import Capability, CapabilityContext
from capture_agent_mcp.core.errors import OutOfOrderTimestampError
from capture_agent_mcp.core.models import AnomalyEvent
from capture_agent_mcp.capabilities.live_capture.decoder import decode_packet

logger = logging.getLogger(__name__)


class PcapReplayCapability:
    """
    Offline replay of a capture file through the live pipeline.

    The session starts at the first packet's timestamp, so second 0 is the
    first second of the file. Everything runs on the calling thread.
    """

    name = "pcap_replay"

    def __init__(self) -> None:
        self._ctx: Optional[CapabilityContext] = None
        self._replays = 0
        self._last_path: Optional[str] = None
        self._last_error: Optional[str] = None

    def register_tools(self, mcp: Any, ctx: CapabilityContext) -> None:
        self._ctx = ctx

        if mcp is None:
            return

        @mcp.tool()
        def replay_pcap(path: str, persist: bool = True) -> Dict[str, Any]:
            return self.replay(path, persist=persist)

    def replay(self, path: str, persist: bool = True) -> Dict[str, Any]:
        if not self._ctx:
            return {"ok": False, "error": "capability not registered"}

        ctx = self._ctx
        agg: Optional[StatsAggregator] = None
        packets = 0
        dropped = 0
        out_of_order = 0

        def on_anomaly(event: AnomalyEvent) -> None:
            ctx.store.append(event)
            ctx.log(event.summary)

        self._last_path = path
        try:
            with PcapReader(path) as reader:
                for row, pkt in enumerate(reader):
                    rec = decode_packet(pkt, row=row)
                    if agg is None:
                        agg = StatsAggregator(
                            session_start=rec.ts,
                            detector=ctx.new_detector(),
                            history_window=ctx.config.history_window,
                            on_anomaly=on_anomaly,
                        )
                        ctx.sessions[self.name] = agg
                    packets += 1
                    try:
                        if not agg.record(rec):
                            dropped += 1
                    except OutOfOrderTimestampError as exc:
                        out_of_order += 1
                        logger.debug("Skipping out of order packet at row %d: %s", row, exc)
        except (OSError, Scapy_Exception) as exc:
            self._last_error = f"cannot read {path}: {exc}"
            logger.warning("Replay of %s failed: %s", path, exc)
            return {"ok": False, "error": self._last_error, "packets": packets}

        self._replays += 1
        self._last_error = None

        if agg is None:
            return {"ok": True, "packets": 0, "seconds": 0, "anomalies": 0, "persisted": False}

        agg.finalize_pending_data()
        out: Dict[str, Any] = {
            "ok": True,
            "packets": packets,
            "dropped": dropped,
            "out_of_order": out_of_order,
            "seconds": len(agg.buckets()),
            "anomalies": len(agg.anomalies()),
            "persisted": False,
        }
        if persist:
            out["persisted"] = agg.persist(ctx.config.sessions_dir)
            out["path"] = str(agg.last_file_path) if agg.last_file_path else None
            if agg.last_error:
                out["error"] = agg.last_error
        return out

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "replays": self._replays,
            "last_path": self._last_path,
            "last_error": self._last_error,
        }


def build_capability() -> Capability:
    return PcapReplayCapability()
