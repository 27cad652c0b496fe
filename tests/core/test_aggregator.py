import pytest

from capture_agent_mcp.core.aggregator import StatsAggregator, protocol_entropy
from capture_agent_mcp.core.errors import OutOfOrderTimestampError
from capture_agent_mcp.core.models import AnomalyEvent, PacketRecord

T0 = 1_700_000_000.0


class RecordingDetector:
    def __init__(self, fire_on=()):
        self.snapshots = []
        self.fire_on = set(fire_on)

    def observe(self, snap):
        self.snapshots.append(snap)
        if snap.second in self.fire_on:
            return AnomalyEvent(
                second=snap.second,
                score=3.0,
                summary=f"Anomaly at {snap.second}s: test",
                reasons=("test",),
                tags=("test",),
                details={},
                packet_rows=tuple(snap.packet_rows),
            )
        return None


class BrokenDetector:
    def observe(self, snap):
        raise ZeroDivisionError("bad detector")


def test_concrete_two_second_scenario():
    agg = StatsAggregator(T0)
    agg.record_packet(T0, "TCP", "A", "B", 100)
    agg.record_packet(T0, "UDP", "C", "D", 50)
    agg.record_packet(T0 + 1, "TCP", "A", "B", 80)
    agg.finalize_pending_data()

    b0, b1 = [b.to_dict() for b in agg.buckets()]
    assert b0["second"] == 0
    assert b0["pps"] == 2.0
    assert b0["bps"] == 150.0
    assert b0["protocolCounts"] == {"TCP": 1, "UDP": 1}
    assert b0["connections"] == [{"src": "A", "dst": "B"}, {"src": "C", "dst": "D"}]
    assert b0["avgPacketSize"] == 75.0
    assert b1["second"] == 1
    assert b1["pps"] == 1.0
    assert b1["bps"] == 80.0
    assert b1["protocolCounts"] == {"TCP": 1}


def test_bucket_count_matches_distinct_seconds():
    agg = StatsAggregator(T0)
    offsets = [0.1, 0.2, 0.9, 2.0, 2.5, 5.3, 5.4, 9.99]
    for off in offsets:
        agg.record_packet(T0 + off, "TCP", "A", "B", 60)
    agg.finalize_pending_data()

    assert [b.second for b in agg.buckets()] == [0, 2, 5, 9]
    assert all(b.finalized for b in agg.buckets())


def test_packets_before_session_start_are_dropped():
    agg = StatsAggregator(T0)
    assert agg.record_packet(T0 - 0.5, "TCP", "A", "B", 60) is False
    assert agg.dropped == 1
    assert agg.open_second is None


def test_out_of_order_packet_raises():
    agg = StatsAggregator(T0)
    agg.record_packet(T0 + 3.2, "TCP", "A", "B", 60)
    with pytest.raises(OutOfOrderTimestampError) as info:
        agg.record_packet(T0 + 1.0, "TCP", "A", "B", 60)
    assert info.value.second == 1
    assert info.value.open_second == 3


def test_late_packet_for_flushed_second_is_dropped():
    agg = StatsAggregator(T0)
    agg.record_packet(T0 + 1.5, "TCP", "A", "B", 60)
    agg.finalize_pending_data()
    assert agg.record_packet(T0 + 1.7, "TCP", "A", "B", 60) is False
    assert agg.buckets()[0].packets == 1


def test_finalize_is_idempotent_and_scores_each_bucket_once():
    det = RecordingDetector()
    agg = StatsAggregator(T0, detector=det)
    agg.record_packet(T0, "TCP", "A", "B", 60)
    agg.record_packet(T0 + 1, "TCP", "A", "B", 60)
    agg.finalize_pending_data()
    agg.finalize_pending_data()

    assert [s.second for s in det.snapshots] == [0, 1]
    assert len(agg.buckets()) == 2


def test_new_connections_and_protocols_use_history():
    det = RecordingDetector()
    agg = StatsAggregator(T0, detector=det)
    agg.record_packet(T0, "TCP", "A", "B", 60)
    agg.record_packet(T0 + 1, "TCP", "A", "B", 60)
    agg.record_packet(T0 + 1, "DNS", "A", "C", 60)
    agg.finalize_pending_data()

    first, second = det.snapshots
    assert first.new_connections == 1
    assert first.new_protocols == ["TCP"]
    assert second.new_connections == 1
    assert second.new_protocols == ["DNS"]
    assert second.unique_connections == 2
    assert second.protocol_entropy == pytest.approx(1.0)


def test_history_window_forgets_old_connections():
    det = RecordingDetector()
    agg = StatsAggregator(T0, detector=det, history_window=2)
    agg.record_packet(T0, "TCP", "A", "B", 60)
    agg.record_packet(T0 + 1, "TCP", "C", "D", 60)
    agg.record_packet(T0 + 2, "TCP", "E", "F", 60)
    agg.record_packet(T0 + 3, "TCP", "A", "B", 60)
    agg.finalize_pending_data()

    assert det.snapshots[-1].new_connections == 1


def test_events_reach_log_and_callback():
    seen = []
    agg = StatsAggregator(T0, detector=RecordingDetector(fire_on={1}), on_anomaly=seen.append)
    agg.record(PacketRecord(ts=T0, protocol="TCP", src="A", dst="B", size=60, row=0))
    agg.record(PacketRecord(ts=T0 + 1, protocol="TCP", src="A", dst="B", size=60, row=1))
    agg.finalize_pending_data()

    assert [e.second for e in agg.anomalies()] == [1]
    assert seen == agg.anomalies()
    assert seen[0].packet_rows == (1,)


def test_detector_failure_does_not_break_aggregation():
    agg = StatsAggregator(T0, detector=BrokenDetector())
    agg.record_packet(T0, "TCP", "A", "B", 60)
    agg.record_packet(T0 + 1, "TCP", "A", "B", 60)
    agg.finalize_pending_data()
    assert len(agg.buckets()) == 2
    assert agg.anomalies() == []


def test_protocol_entropy():
    assert protocol_entropy({}, 0) == 0.0
    assert protocol_entropy({"TCP": 4}, 4) == 0.0
    assert protocol_entropy({"TCP": 1, "UDP": 1, "DNS": 1, "ARP": 1}, 4) == pytest.approx(2.0)


def test_session_keeps_every_anomaly():
    seconds = 10_005
    agg = StatsAggregator(T0, detector=RecordingDetector(fire_on=range(seconds)))
    for s in range(seconds):
        agg.record_packet(T0 + s, "TCP", "A", "B", 60)
    agg.finalize_pending_data()

    events = agg.anomalies()
    assert len(agg.buckets()) == seconds
    assert len(events) == seconds
    assert events[0].second == 0
    assert events[-1].second == seconds - 1
