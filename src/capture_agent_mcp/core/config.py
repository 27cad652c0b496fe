from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_CAPABILITIES = [
    "capture_agent_mcp.capabilities.baseline_anomaly.capability:build_capability",
    "capture_agent_mcp.capabilities.live_capture.capability:build_capability",
    "capture_agent_mcp.capabilities.pcap_replay.capability:build_capability",
]


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AgentConfig:
    """
    Runtime configuration, passed explicitly to whoever needs it.

    sessions_dir
      Where session statistics JSON files are written.

    anomalies_dir
      Where anomaly exports are written. Defaults to sessions_dir/anomalies.

    interface, filter_expression, promiscuous
      Defaults for start_capture when the caller omits them.

    history_window, threshold, warmup
      Detector defaults. See the baseline_anomaly capability.

    stop_timeout
      Seconds stop_capture waits for the capture thread to exit.
    """

    sessions_dir: Path = Path("sessions")
    anomalies_dir: Optional[Path] = None
    interface: Optional[str] = None
    filter_expression: str = ""
    promiscuous: bool = True
    optimize_filter: bool = False
    history_window: int = 30
    threshold: float = 2.8
    warmup: int = 6
    stop_timeout: float = 5.0
    log_level: str = "INFO"
    log_file: Optional[str] = None
    capabilities: List[str] = field(default_factory=lambda: list(DEFAULT_CAPABILITIES))

    @property
    def anomalies_path(self) -> Path:
        if self.anomalies_dir is not None:
            return Path(self.anomalies_dir)
        return Path(self.sessions_dir) / "anomalies"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        """
        Build a config from CAPTURE_* environment variables.

        Example:
          export CAPTURE_SESSIONS_DIR=/var/lib/capture/sessions
          export CAPTURE_INTERFACE=eth0
          export CAPTURE_FILTER='tcp or udp'
          export CAPTURE_CAPABILITIES='[
            "capture_agent_mcp.capabilities.live_capture.capability:build_capability"
          ]'
        """
        env = os.environ if environ is None else environ
        cfg = cls()

        if env.get("CAPTURE_SESSIONS_DIR"):
            cfg.sessions_dir = Path(env["CAPTURE_SESSIONS_DIR"])
        if env.get("CAPTURE_ANOMALIES_DIR"):
            cfg.anomalies_dir = Path(env["CAPTURE_ANOMALIES_DIR"])
        if env.get("CAPTURE_INTERFACE"):
            cfg.interface = env["CAPTURE_INTERFACE"]
        if "CAPTURE_FILTER" in env:
            cfg.filter_expression = env["CAPTURE_FILTER"]
        if env.get("CAPTURE_PROMISCUOUS"):
            cfg.promiscuous = _as_bool(env["CAPTURE_PROMISCUOUS"])
        if env.get("CAPTURE_OPTIMIZE_FILTER"):
            cfg.optimize_filter = _as_bool(env["CAPTURE_OPTIMIZE_FILTER"])
        if env.get("CAPTURE_HISTORY_WINDOW"):
            cfg.history_window = int(env["CAPTURE_HISTORY_WINDOW"])
        if env.get("CAPTURE_THRESHOLD"):
            cfg.threshold = float(env["CAPTURE_THRESHOLD"])
        if env.get("CAPTURE_WARMUP"):
            cfg.warmup = int(env["CAPTURE_WARMUP"])
        if env.get("CAPTURE_STOP_TIMEOUT"):
            cfg.stop_timeout = float(env["CAPTURE_STOP_TIMEOUT"])
        if env.get("CAPTURE_LOG_LEVEL"):
            cfg.log_level = env["CAPTURE_LOG_LEVEL"]
        if env.get("CAPTURE_LOG_FILE"):
            cfg.log_file = env["CAPTURE_LOG_FILE"]
        if env.get("CAPTURE_CAPABILITIES"):
            imports = json.loads(env["CAPTURE_CAPABILITIES"])
            if not isinstance(imports, list):
                raise ValueError("CAPTURE_CAPABILITIES must be a JSON array of import strings")
            cfg.capabilities = [str(i) for i in imports]

        return cfg

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["sessions_dir"] = str(self.sessions_dir)
        out["anomalies_dir"] = str(self.anomalies_path)
        return out
