from capture_agent_mcp.cli.capture import build_parser, load_headless
from capture_agent_mcp.core.config import DEFAULT_CAPABILITIES
from capture_agent_mcp.core.models import AnomalyEvent
from capture_agent_mcp.core.registry import CapabilityRegistry
from capture_agent_mcp.core.server import CaptureMCPServer


class RecordingMCP:
    """
    Collects tool functions the way FastMCP.tool() registers them.
    """

    def __init__(self):
        self.tools = {}

    def tool(self):
        def decorator(fn):
            self.tools[fn.__name__] = fn
            return fn

        return decorator


def test_load_all_capabilities():
    reg = CapabilityRegistry()
    reg.load_from_import_paths(DEFAULT_CAPABILITIES)
    assert reg.list() == ["baseline_anomaly", "live_capture", "pcap_replay"]


def test_server_registers_core_and_capability_tools(config):
    mcp = RecordingMCP()
    CaptureMCPServer(config, mcp=mcp)

    assert set(mcp.tools) == {
        "list_capabilities",
        "capability_status",
        "recent_anomalies",
        "anomaly_tags",
        "list_sessions",
        "load_session",
        "anomaly_configure",
        "anomaly_export",
        "list_interfaces",
        "start_capture",
        "stop_capture",
        "update_filter",
        "persist_session",
        "replay_pcap",
    }
    assert mcp.tools["list_capabilities"]() == ["baseline_anomaly", "live_capture", "pcap_replay"]
    assert mcp.tools["capability_status"]("pcap_replay")["replays"] == 0


def test_core_tools_read_anomaly_log_and_sessions(config, tmp_path):
    mcp = RecordingMCP()
    server = CaptureMCPServer(config, mcp=mcp)
    server.store.append(
        AnomalyEvent(
            second=2,
            score=3.1,
            summary="Anomaly at 2s: Possible scan from 10.0.0.5 (9 destinations)",
            reasons=("Possible scan from 10.0.0.5 (9 destinations)",),
            tags=("scan",),
            details={},
            packet_rows=(1,),
        )
    )

    assert mcp.tools["anomaly_tags"]() == ["scan"]
    assert mcp.tools["recent_anomalies"](limit=5, tag="scan")[0]["second"] == 2
    assert mcp.tools["recent_anomalies"](tag="ddos-target") == []
    assert mcp.tools["list_sessions"]() == []
    assert mcp.tools["load_session"](str(tmp_path / "missing.json"))["ok"] is False


def test_baseline_detector_is_wired_into_sessions(config):
    server = CaptureMCPServer(config, mcp=RecordingMCP())
    assert server.ctx.detector_factory is not None


def test_headless_loading(config):
    registry, ctx = load_headless(config)
    assert registry.list() == ["baseline_anomaly", "live_capture", "pcap_replay"]
    assert ctx.new_detector() is not None

    args = build_parser().parse_args(["replay", "x.pcap"])
    assert args.command == "replay"
    assert args.pcap == "x.pcap"
