"""
Tests de la projection quotidienne.
"""
from datetime import date, datetime, timedelta, timezone

from models.execution import ExecutionLog, ExecutionStatus
from orchestrator.reporter import format_summary, summarize_day


DAY = date(2026, 1, 15)
T0 = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


def log(status, target="slack", action="send_notification", ms=0.0, offset=0):
    return ExecutionLog(
        action_id=f"a-{offset}",
        correlation_id="corr-1",
        action=action,
        target=target,
        status=status,
        execution_time=ms,
        timestamp=T0 + timedelta(seconds=offset),
        platform=target,
    )


def test_empty_day():
    summary = summarize_day(DAY, [])

    assert summary.total_executions == 0
    assert summary.success_rate == 0.0
    assert summary.slowest_execution is None
    assert summary.generated_at == datetime(2026, 1, 15, tzinfo=timezone.utc)


def test_counts_rates_and_extremes():
    logs = [
        log(ExecutionStatus.STARTED, offset=0),
        log(ExecutionStatus.SUCCESS, ms=100.0, offset=1),
        log(ExecutionStatus.STARTED, target="notion", action="create_task", offset=2),
        log(ExecutionStatus.FAILED, target="notion", action="create_task", ms=300.0, offset=3),
        log(ExecutionStatus.SUCCESS, target="notion", action="create_task", ms=200.0, offset=4),
    ]

    summary = summarize_day(DAY, logs)

    assert summary.total_executions == 5
    assert summary.by_status.started == 2
    assert summary.by_status.success == 2
    assert summary.by_status.failed == 1
    assert round(summary.success_rate, 2) == 66.67
    assert summary.avg_execution_time == 120.0
    assert summary.slowest_execution.execution_time == 300.0
    assert summary.fastest_execution.execution_time == 0.0
    assert summary.by_target["notion"].total == 3
    assert summary.by_target["notion"].success == 1
    assert summary.by_target["notion"].avg_execution_time == 500.0 / 3
    assert summary.by_action["send_notification"].success == 1
    assert summary.generated_at == T0 + timedelta(seconds=4)


def test_other_days_ignored():
    logs = [
        log(ExecutionStatus.SUCCESS, offset=0),
        log(ExecutionStatus.SUCCESS, offset=24 * 3600),
    ]

    assert summarize_day(DAY, logs).total_executions == 1


def test_same_input_same_output():
    logs = [log(ExecutionStatus.SUCCESS, ms=10.0), log(ExecutionStatus.FAILED, ms=20.0, offset=1)]

    assert summarize_day(DAY, logs) == summarize_day(DAY, list(reversed(logs)))


def test_format_summary():
    summary = summarize_day(DAY, [log(ExecutionStatus.SUCCESS, ms=100.0)])

    text = format_summary(summary)

    assert "2026-01-15" in text
    assert "slack" in text
    assert "100.0%" in text
