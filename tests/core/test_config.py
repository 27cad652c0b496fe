from pathlib import Path

import pytest

from capture_agent_mcp.core.config import DEFAULT_CAPABILITIES, AgentConfig


def test_defaults():
    cfg = AgentConfig()
    assert cfg.threshold == 2.8
    assert cfg.warmup == 6
    assert cfg.history_window == 30
    assert cfg.anomalies_path == Path("sessions") / "anomalies"
    assert cfg.capabilities == DEFAULT_CAPABILITIES


def test_from_env():
    cfg = AgentConfig.from_env(
        {
            "CAPTURE_SESSIONS_DIR": "/tmp/s",
            "CAPTURE_INTERFACE": "eth1",
            "CAPTURE_FILTER": "tcp",
            "CAPTURE_PROMISCUOUS": "no",
            "CAPTURE_THRESHOLD": "3.5",
            "CAPTURE_WARMUP": "10",
            "CAPTURE_CAPABILITIES": '["a.b:c"]',
        }
    )
    assert cfg.sessions_dir == Path("/tmp/s")
    assert cfg.interface == "eth1"
    assert cfg.filter_expression == "tcp"
    assert cfg.promiscuous is False
    assert cfg.threshold == 3.5
    assert cfg.warmup == 10
    assert cfg.capabilities == ["a.b:c"]
    assert cfg.to_dict()["anomalies_dir"] == str(Path("/tmp/s") / "anomalies")


def test_capabilities_must_be_a_list():
    with pytest.raises(ValueError):
        AgentConfig.from_env({"CAPTURE_CAPABILITIES": '"a.b:c"'})
