from capture_agent_mcp.core.models import AnomalyEvent
from capture_agent_mcp.core.store import AnomalyLog


def _event(second, *tags):
    return AnomalyEvent(
        second=second,
        score=3.0,
        summary=f"Anomaly at {second}s",
        reasons=("x",),
        tags=tuple(tags),
        details={},
        packet_rows=(),
    )


def test_recent_returns_newest_and_filters_by_tag():
    log = AnomalyLog()
    log.append(_event(1, "scan"))
    log.append(_event(2, "ddos-target"))
    log.append(_event(3, "scan", "top-source"))

    assert [e.second for e in log.recent(limit=2)] == [2, 3]
    assert [e.second for e in log.recent(tag="scan")] == [1, 3]
    assert log.tags() == ["scan", "ddos-target", "top-source"]


def test_log_is_bounded():
    log = AnomalyLog(maxlen=3)
    for s in range(5):
        log.append(_event(s))
    assert len(log) == 3
    assert [e.second for e in log.all()] == [2, 3, 4]

    log.clear()
    assert len(log) == 0
