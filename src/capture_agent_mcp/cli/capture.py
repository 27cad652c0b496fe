from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from capture_agent_mcp.core.capability_base import CapabilityContext
from capture_agent_mcp.core.config import AgentConfig
from capture_agent_mcp.core.logging_config import setup_logging
from capture_agent_mcp.core.registry import CapabilityRegistry
from capture_agent_mcp.core.store import AnomalyLog

logger = logging.getLogger(__name__)


def load_headless(config: AgentConfig) -> Tuple[CapabilityRegistry, CapabilityContext]:
    """
    Load the configured capabilities without an MCP server.
    """
    registry = CapabilityRegistry()
    registry.load_from_import_paths(config.capabilities)
    ctx = CapabilityContext(store=AnomalyLog(), config=config, log=logger.info)
    for name in registry.list():
        registry.get(name).register_tools(None, ctx)
    return registry, ctx


def run_live(registry: CapabilityRegistry, args: argparse.Namespace) -> Dict[str, Any]:
    cap = registry.get("live_capture")
    msg = cap.start(args.interface, args.filter, not args.no_promisc)
    logger.info(msg)

    deadline = time.monotonic() + args.duration if args.duration else None
    try:
        while cap.status()["running"]:
            if deadline is not None and time.monotonic() >= deadline:
                break
            time.sleep(0.2)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping capture")

    return cap.stop(persist=not args.no_persist)


def run_replay(registry: CapabilityRegistry, args: argparse.Namespace) -> Dict[str, Any]:
    cap = registry.get("pcap_replay")
    return cap.replay(args.pcap, persist=not args.no_persist)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="capture-agent",
        description="Capture or replay traffic and report per second anomalies.",
    )
    p.add_argument("--sessions-dir", help="overrides CAPTURE_SESSIONS_DIR")
    p.add_argument("--log-level", help="overrides CAPTURE_LOG_LEVEL")
    p.add_argument("--no-persist", action="store_true", help="do not write the session file")
    sub = p.add_subparsers(dest="command", required=True)

    live = sub.add_parser("live", help="capture from a network interface")
    live.add_argument("--interface", "-i", help="overrides CAPTURE_INTERFACE")
    live.add_argument("--filter", "-f", default=None, help="BPF filter expression")
    live.add_argument("--duration", "-d", type=float, default=0.0, help="seconds to capture, 0 runs until Ctrl-C")
    live.add_argument("--no-promisc", action="store_true")

    replay = sub.add_parser("replay", help="replay a pcap file")
    replay.add_argument("pcap")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = AgentConfig.from_env()
    if args.sessions_dir:
        config.sessions_dir = Path(args.sessions_dir)
    if args.log_level:
        config.log_level = args.log_level
    setup_logging(config.log_level, config.log_file)

    registry, ctx = load_headless(config)
    if args.command == "live":
        result = run_live(registry, args)
    else:
        result = run_replay(registry, args)

    result["events"] = [e.to_dict() for e in ctx.store.all()]
    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())
