"""
DailyReporter — Projection du journal d'exécution sur une journée.

Le Reporter ne fait que COMPILER.
Il ne stocke rien : même entrée, même sortie, toujours.

Design decisions :
  - Le DailySummary est recalculé à partir des ExecutionLog à chaque appel
  - Aucun compteur incrémental, donc aucune dérive possible avec l'audit
  - `generated_at` est fixé au dernier log de la journée : deux appels
    sans nouveau log renvoient un résumé strictement identique
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timezone
from typing import Iterable

from models.execution import (
    ActionBreakdown,
    DailySummary,
    ExecutionLog,
    ExecutionStatus,
    StatusCounts,
    TargetBreakdown,
)


def summarize_day(day: date, logs: Iterable[ExecutionLog]) -> DailySummary:
    """
    Agrège les logs d'une journée (UTC).

    Les logs hors de la journée sont ignorés.
    """
    day_logs = sorted(
        (log for log in logs if log.day == day),
        key=lambda log: log.timestamp,
    )

    if not day_logs:
        return DailySummary(
            date=day,
            generated_at=datetime.combine(day, time.min, tzinfo=timezone.utc),
        )

    by_status = StatusCounts()
    by_target: dict[str, TargetBreakdown] = {}
    by_action: dict[str, ActionBreakdown] = {}
    target_times: dict[str, list[float]] = defaultdict(list)

    slowest = fastest = day_logs[0]
    total_time = 0.0

    for log in day_logs:
        setattr(by_status, log.status.value, getattr(by_status, log.status.value) + 1)

        total_time += log.execution_time
        if log.execution_time > slowest.execution_time:
            slowest = log
        if log.execution_time < fastest.execution_time:
            fastest = log

        target = by_target.setdefault(log.target, TargetBreakdown())
        target.total += 1
        target_times[log.target].append(log.execution_time)

        action = by_action.setdefault(log.action, ActionBreakdown())
        action.total += 1

        if log.status == ExecutionStatus.SUCCESS:
            target.success += 1
            action.success += 1
        elif log.status == ExecutionStatus.FAILED:
            target.failed += 1
            action.failed += 1

    for name, times in target_times.items():
        by_target[name].avg_execution_time = sum(times) / len(times)

    finished = by_status.success + by_status.failed
    success_rate = (by_status.success / finished) * 100 if finished else 0.0

    return DailySummary(
        date=day,
        total_executions=len(day_logs),
        by_status=by_status,
        by_target=dict(sorted(by_target.items())),
        by_action=dict(sorted(by_action.items())),
        avg_execution_time=total_time / len(day_logs),
        slowest_execution=slowest,
        fastest_execution=fastest,
        success_rate=success_rate,
        generated_at=day_logs[-1].timestamp,
    )


def format_summary(summary: DailySummary) -> str:
    """Version texte pour Slack / email."""
    lines = [
        f"📊 Exécutions du {summary.date.isoformat()}",
        f"Total : {summary.total_executions} — "
        f"✅ {summary.by_status.success} / ❌ {summary.by_status.failed} "
        f"(taux de succès {summary.success_rate:.1f}%)",
        f"Temps moyen : {summary.avg_execution_time:.0f}ms",
    ]
    if summary.by_target:
        lines.append("")
        lines.append("Par plateforme :")
        for name, t in summary.by_target.items():
            lines.append(
                f"  • {name} : {t.total} ({t.success} ok, {t.failed} ko), "
                f"{t.avg_execution_time:.0f}ms"
            )
    if summary.slowest_execution:
        s = summary.slowest_execution
        lines.append("")
        lines.append(f"Plus lente : {s.action} → {s.target} ({s.execution_time:.0f}ms)")
    return "\n".join(lines)
