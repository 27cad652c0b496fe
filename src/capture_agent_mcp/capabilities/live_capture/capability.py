from __future__ import annotations

import functools
import logging
import time
from typing import Any, Dict, List, Optional

from capture_agent_mcp.core.aggregator import StatsAggregator
from capture_agent_mcp.core.capability_base import Capability, CapabilityContext
from capture_agent_mcp.core.errors import CaptureAgentError, OutOfOrderTimestampError
from capture_agent_mcp.core.models import AnomalyEvent
from capture_agent_mcp.core.worker import CaptureWorker, OpenHandle

from . import backend
from .backend import open_handle
from .decoder import decode_packet

logger = logging.getLogger(__name__)


class LiveCaptureCapability:
    """
    Live capture capability.

    Starts a CaptureWorker on an interface and feeds every packet, on the
    capture thread, through decode_packet into a StatsAggregator.

    The aggregator is only touched by the capture thread while it runs.
    stop() joins that thread before it finalizes or persists anything.
    """

    name = "live_capture"

    def __init__(self, open_handle: OpenHandle = open_handle):
        self._open_handle = open_handle
        self._ctx: Optional[CapabilityContext] = None
        self._worker: Optional[CaptureWorker] = None
        self._aggregator: Optional[StatsAggregator] = None

        self._row = 0
        self._recorded = 0
        self._dropped = 0
        self._out_of_order = 0
        self._anomalies = 0
        self._last_error: Optional[str] = None

    @property
    def aggregator(self) -> Optional[StatsAggregator]:
        return self._aggregator

    @property
    def worker(self) -> Optional[CaptureWorker]:
        return self._worker

    def register_tools(self, mcp: Any, ctx: CapabilityContext) -> None:
        self._ctx = ctx

        if mcp is None:
            return

        @mcp.tool()
        def list_interfaces() -> List[str]:
            return backend.list_interfaces()

        @mcp.tool()
        def start_capture(
            interface: Optional[str] = None,
            filter_expression: Optional[str] = None,
            promiscuous: Optional[bool] = None,
        ) -> str:
            return self.start(interface, filter_expression, promiscuous)

        @mcp.tool()
        def stop_capture(persist: bool = True) -> Dict[str, Any]:
            return self.stop(persist=persist)

        @mcp.tool()
        def update_filter(filter_expression: str) -> str:
            return self.update_filter(filter_expression)

        @mcp.tool()
        def persist_session() -> Dict[str, Any]:
            return self.persist()

    def start(
        self,
        interface: Optional[str] = None,
        filter_expression: Optional[str] = None,
        promiscuous: Optional[bool] = None,
    ) -> str:
        if not self._ctx:
            return "capability not registered"
        if self._worker is not None and self._worker.running:
            return "already running"

        cfg = self._ctx.config
        iface = interface or cfg.interface
        if not iface:
            return "no interface given and none configured"
        flt = cfg.filter_expression if filter_expression is None else filter_expression
        promisc = cfg.promiscuous if promiscuous is None else bool(promiscuous)

        self._row = 0
        self._recorded = 0
        self._dropped = 0
        self._out_of_order = 0
        self._anomalies = 0
        self._last_error = None

        self._aggregator = StatsAggregator(
            session_start=time.time(),
            detector=self._ctx.new_detector(),
            history_window=cfg.history_window,
            on_anomaly=self._on_anomaly,
        )
        self._ctx.sessions[self.name] = self._aggregator

        self._worker = CaptureWorker(
            self._open_handle,
            functools.partial(self._on_packet, self._aggregator),
            on_finished=self._on_finished,
            optimize=cfg.optimize_filter,
        )
        self._worker.start(iface, flt, promisc)
        return f"capture started on {iface}"

    def stop(self, persist: bool = True) -> Dict[str, Any]:
        if self._worker is None or self._aggregator is None or self._ctx is None:
            return {"ok": False, "error": "not running"}

        if not self._worker.stop(timeout=self._ctx.config.stop_timeout):
            return {"ok": False, "error": "capture thread did not exit in time"}

        self._aggregator.finalize_pending_data()
        out: Dict[str, Any] = {"ok": True, "status": self.status()}
        if persist:
            out.update(self.persist())
        return out

    def update_filter(self, filter_expression: str) -> str:
        if self._worker is None or not self._worker.update_filter(filter_expression):
            return "not running"
        return f"filter update to {filter_expression!r} requested"

    def persist(self) -> Dict[str, Any]:
        if self._aggregator is None or self._ctx is None:
            return {"persisted": False, "error": "no session"}
        if self._worker is not None and self._worker.running:
            return {"persisted": False, "error": "stop the capture before persisting"}

        ok = self._aggregator.persist(self._ctx.config.sessions_dir, finalize_pending=True)
        path = self._aggregator.last_file_path
        return {
            "persisted": ok,
            "path": str(path) if path else None,
            "error": self._aggregator.last_error,
        }

    def _on_packet(self, aggregator: StatsAggregator, raw: Any) -> None:
        # Runs on the capture thread, keep it short.
        rec = decode_packet(raw, row=self._row)
        self._row += 1
        try:
            if aggregator.record(rec):
                self._recorded += 1
            else:
                self._dropped += 1
        except OutOfOrderTimestampError as exc:
            self._out_of_order += 1
            logger.debug("Dropping out of order packet: %s", exc)

    def _on_anomaly(self, event: AnomalyEvent) -> None:
        self._anomalies += 1
        if self._ctx:
            self._ctx.store.append(event)
            self._ctx.log(event.summary)

    def _on_finished(self, error: Optional[CaptureAgentError]) -> None:
        if error is not None:
            self._last_error = str(error)
            if self._ctx:
                self._ctx.log(f"live capture ended with error: {error}")

    def status(self) -> Dict[str, Any]:
        worker = self._worker.status() if self._worker else {"state": "idle"}
        return {
            "name": self.name,
            "running": bool(self._worker and self._worker.running),
            "worker": worker,
            "recorded": self._recorded,
            "dropped": self._dropped,
            "out_of_order": self._out_of_order,
            "anomalies": self._anomalies,
            "open_second": self._aggregator.open_second if self._aggregator else None,
            "last_error": self._last_error,
        }


def build_capability() -> Capability:
    return LiveCaptureCapability()
