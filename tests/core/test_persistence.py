import json

import pytest

from capture_agent_mcp.core.aggregator import StatsAggregator
from capture_agent_mcp.core.errors import PersistenceError
from capture_agent_mcp.core.models import AnomalyEvent
from capture_agent_mcp.core.persistence import (
    export_anomalies,
    list_sessions,
    load_session,
    session_file_name,
    to_iso,
)

T0 = 1_700_000_000.0


def _aggregator():
    agg = StatsAggregator(T0)
    agg.record_packet(T0, "TCP", "10.0.0.1", "10.0.0.2", 100)
    agg.record_packet(T0 + 0.4, "UDP", "10.0.0.3", "10.0.0.4", 50)
    agg.record_packet(T0 + 1.2, "TCP", "10.0.0.1", "10.0.0.2", 80)
    return agg


def test_session_file_name_has_no_colons():
    name = session_file_name(T0, T0 + 5)
    assert ":" not in name
    assert name.endswith(".json")
    assert name.startswith(to_iso(T0).replace(":", "-"))


def test_persist_round_trip(tmp_path):
    agg = _aggregator()
    assert agg.persist(tmp_path, finalize_pending=True) is True
    path = agg.last_file_path
    assert path.parent == tmp_path

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert set(raw) == {"sessionStart", "sessionEnd", "perSecond"}

    doc = load_session(path)
    assert doc.session_start == pytest.approx(T0)
    assert doc.session_end == pytest.approx(T0 + 1.2)

    saved = [(b.second, b.packets, b.bytes, b.protocol_counts) for b in agg.buckets()]
    loaded = [(b.second, b.packets, b.bytes, b.protocol_counts) for b in doc.buckets]
    assert loaded == saved
    assert doc.to_dict()["perSecond"] == raw["perSecond"]


def test_persist_without_data_writes_nothing(tmp_path):
    agg = StatsAggregator(T0)
    assert agg.persist(tmp_path) is True
    assert agg.last_file_path is None
    assert list(tmp_path.iterdir()) == []


def test_new_file_replaces_previous(tmp_path):
    agg = _aggregator()
    agg.persist(tmp_path, finalize_pending=True)
    first = agg.last_file_path

    agg.record_packet(T0 + 3.5, "TCP", "10.0.0.1", "10.0.0.2", 80)
    agg.persist(tmp_path, finalize_pending=True)
    second = agg.last_file_path

    assert second != first
    assert second.exists()
    assert not first.exists()
    assert len(load_session(second).buckets) == 3


def test_failed_persist_keeps_previous_file(tmp_path):
    agg = _aggregator()
    agg.persist(tmp_path, finalize_pending=True)
    good = agg.last_file_path

    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    agg.record_packet(T0 + 4.0, "TCP", "10.0.0.1", "10.0.0.2", 80)

    assert agg.persist(blocker, finalize_pending=True) is False
    assert agg.last_error
    assert agg.last_file_path == good
    assert good.exists()
    assert len(agg.buckets()) == 3


def test_load_session_rejects_garbage(tmp_path):
    p = tmp_path / "broken.json"
    p.write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        load_session(p)
    with pytest.raises(PersistenceError):
        load_session(tmp_path / "missing.json")


def test_list_sessions_skips_exports_and_garbage(tmp_path):
    a = StatsAggregator(T0 + 100)
    a.record_packet(T0 + 100, "TCP", "A", "B", 60)
    a.persist(tmp_path, finalize_pending=True)
    b = _aggregator()
    b.persist(tmp_path, finalize_pending=True)

    (tmp_path / "junk.json").write_text("[]", encoding="utf-8")
    export_anomalies(tmp_path, T0, [])

    records = list_sessions(tmp_path)
    assert [r.path for r in records] == [b.last_file_path, a.last_file_path]
    assert list_sessions(tmp_path / "nowhere") == []


def test_export_anomalies(tmp_path):
    event = AnomalyEvent(
        second=4,
        score=3.5,
        summary="Anomaly at 4s: Packet rate spike (3.50σ)",
        reasons=("Packet rate spike (3.50σ)",),
        tags=("packet-rate",),
        details={"packetsPerSecond": 200.0},
        packet_rows=(7, 8),
    )
    path = export_anomalies(tmp_path / "anomalies", T0, [event])
    raw = json.loads(path.read_text(encoding="utf-8"))

    assert raw["sessionStart"] == to_iso(T0)
    assert raw["anomalies"][0]["packetRows"] == [7, 8]
    assert raw["anomalies"][0]["tags"] == ["packet-rate"]
