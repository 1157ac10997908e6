import json

from services.execution_log import ExecutionLog, ExecutionLogEntry


def _entry(action="checkin", executed_at="2026-03-02T09:00:05+09:00", status="success"):
    return ExecutionLogEntry(
        action_type=action,
        scheduled_time="09:00",
        executed_at=executed_at,
        status=status,
        trigger="scheduled",
    )


def test_entries_newest_first():
    log = ExecutionLog()
    log.append(_entry("checkin"))
    log.append(_entry("checkout"))
    assert [e.action_type for e in log.entries()] == ["checkout", "checkin"]
    assert [e.action_type for e in log.entries(limit=1)] == ["checkout"]
    assert len(log) == 2


def test_for_day():
    log = ExecutionLog()
    log.append(_entry(executed_at="2026-03-01T09:00:00+09:00"))
    log.append(_entry(executed_at="2026-03-02T09:00:00+09:00"))
    assert len(log.for_day("2026-03-02")) == 1


def test_writes_json_lines(tmp_path):
    """path指定時はJSON Linesで追記すること"""
    path = tmp_path / "logs" / "executions.jsonl"
    log = ExecutionLog(str(path))
    log.append(_entry("checkin"))
    log.append(_entry("break_start", status="failure"))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    record = json.loads(lines[1])
    assert record["action_type"] == "break_start"
    assert record["status"] == "failure"
    assert record["error_message"] is None
