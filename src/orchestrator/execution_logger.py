"""
ExecutionLogger — Piste d'audit du pipeline.

CHAQUE tentative est loggée : started, puis success ou failed.
C'est la source de vérité absolue pour le debug et les rapports.

Stockage :
  <log_dir>/executions/YYYY-MM-DD.jsonl   → un log par ligne, append-only
  <log_dir>/summaries/YYYY-MM-DD.json     → export dérivé, jamais relu

Design decisions :
  - Un log écrit n'est JAMAIS modifié ni supprimé
  - Un fichier par jour UTC : le résumé d'une journée ne lit qu'un fichier
  - Les résumés sont recalculés depuis le journal, jamais maintenus
  - Le flux temps réel ne rejoue pas le passé : on voit ce qui arrive
    après l'abonnement, rien d'autre
  - append() écrit de façon synchrone sur le thread appelant : une ligne
    JSONL en append, sans fsync. Sur le loop asyncio le coût est borné
    à une écriture par log
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from models.action import ExecutionResult, QueuedAction, QueueStats, utcnow
from models.execution import (
    DailySummary,
    ExecutionFilters,
    ExecutionLog,
    ExecutionStatus,
    FeedEvent,
)
from orchestrator.reporter import summarize_day
from services.utils import day_bounds, parse_day


logger = logging.getLogger("actionflow.orchestrator.execution_logger")

_CLOSED = object()


# ══════════════════════════════════════════════════════════════
# FLUX TEMPS RÉEL
# ══════════════════════════════════════════════════════════════


class FeedSubscription:
    """
    Abonnement au flux {log, queue_stats}.

    Séquence paresseuse, sans fin, non rejouable.
    Enregistré dès la création : rien de ce qui est loggé ensuite n'est perdu.

    Usage :
        async with execution_logger.stream_feed() as feed:
            async for event in feed:
                print(event.log.status, event.queue_stats.pending)
    """

    def __init__(self, owner: "ExecutionLogger") -> None:
        self._owner = owner
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    def _push(self, event: FeedEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def __aiter__(self) -> "FeedSubscription":
        return self

    async def __anext__(self) -> FeedEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "FeedSubscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# ══════════════════════════════════════════════════════════════
# LOGGER
# ══════════════════════════════════════════════════════════════


class ExecutionLogger:
    """
    Journal append-only + requêtes + résumés + flux.

    Usage :
        execution_logger = ExecutionLogger(log_dir="logs")
        execution_logger.record_start(action, attempt_number=1)
        execution_logger.record_success(action, result, attempt_number=1)

        execution_logger.query(ExecutionFilters(target="slack", limit=20))
        execution_logger.get_daily_summary("2026-01-15")

    log_dir=None → journal en mémoire (tests).
    """

    def __init__(
        self,
        log_dir: Path | str | None = None,
        cache_size: int = 100,
        stats_provider: Callable[[], QueueStats] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._log_dir = Path(log_dir) if log_dir is not None else None
        self._clock = clock
        self._stats_provider = stats_provider
        self._lock = threading.Lock()
        self._recent: deque[ExecutionLog] = deque(maxlen=cache_size)
        self._memory: list[ExecutionLog] = []
        self._subscribers: list[FeedSubscription] = []

    @property
    def executions_dir(self) -> Optional[Path]:
        return self._log_dir / "executions" if self._log_dir else None

    @property
    def summaries_dir(self) -> Optional[Path]:
        return self._log_dir / "summaries" if self._log_dir else None

    def set_stats_provider(self, provider: Callable[[], QueueStats]) -> None:
        self._stats_provider = provider

    def initialize(self) -> None:
        """Crée les répertoires et réchauffe le cache avec les derniers logs."""
        if self.executions_dir is None:
            return
        self.executions_dir.mkdir(parents=True, exist_ok=True)
        self.summaries_dir.mkdir(parents=True, exist_ok=True)

        recent: list[ExecutionLog] = []
        for path in reversed(self._day_files()):
            recent = self._read_file(path) + recent
            if len(recent) >= (self._recent.maxlen or 0):
                break
        with self._lock:
            self._recent.clear()
            self._recent.extend(recent)

        logger.info(
            f"Execution Logger initialized: {len(self._recent)} cached logs "
            f"({self.executions_dir})"
        )

    # ──────────────────────────────────────────────────────
    # APPEND
    # ──────────────────────────────────────────────────────

    def append(self, log: ExecutionLog) -> ExecutionLog:
        """Ajoute un log. Écriture sérialisée, une ligne par log."""
        with self._lock:
            if self.executions_dir is None:
                self._memory.append(log)
            else:
                self.executions_dir.mkdir(parents=True, exist_ok=True)
                path = self.executions_dir / f"{log.day.isoformat()}.jsonl"
                with open(path, "a", encoding="utf-8") as f:
                    f.write(log.model_dump_json() + "\n")
            self._recent.append(log)

        logger.debug(
            f"Execution logged: {log.action} → {log.target} [{log.status.value}]",
            extra={"action_id": log.action_id, "correlation_id": log.correlation_id},
        )
        self._publish(log)
        return log

    def _build(
        self,
        action: QueuedAction,
        status: ExecutionStatus,
        attempt_number: int,
        retried_from: str | None,
        execution_time: float = 0.0,
        result: Any = None,
        error: str | None = None,
    ) -> ExecutionLog:
        rr = action.reasoning_result
        return ExecutionLog(
            action_id=action.id,
            correlation_id=rr.correlation_id,
            action=rr.action,
            target=rr.target,
            params=rr.params,
            status=status,
            result=result,
            error=error,
            execution_time=execution_time,
            timestamp=self._clock(),
            retried_from=retried_from,
            attempt_number=attempt_number,
            platform=rr.target,
        )

    def record_start(
        self,
        action: QueuedAction,
        attempt_number: int,
        retried_from: str | None = None,
    ) -> ExecutionLog:
        return self.append(
            self._build(action, ExecutionStatus.STARTED, attempt_number, retried_from)
        )

    def record_success(
        self,
        action: QueuedAction,
        result: ExecutionResult,
        attempt_number: int,
        retried_from: str | None = None,
    ) -> ExecutionLog:
        return self.append(
            self._build(
                action,
                ExecutionStatus.SUCCESS,
                attempt_number,
                retried_from,
                execution_time=result.execution_time or 0.0,
                result=result.data,
            )
        )

    def record_failure(
        self,
        action: QueuedAction,
        error: str,
        attempt_number: int,
        retried_from: str | None = None,
        execution_time: float = 0.0,
    ) -> ExecutionLog:
        return self.append(
            self._build(
                action,
                ExecutionStatus.FAILED,
                attempt_number,
                retried_from,
                execution_time=execution_time,
                error=error,
            )
        )

    # ──────────────────────────────────────────────────────
    # READ
    # ──────────────────────────────────────────────────────

    def _day_files(self) -> list[Path]:
        if self.executions_dir is None or not self.executions_dir.exists():
            return []
        return sorted(self.executions_dir.glob("*.jsonl"))

    def _read_file(self, path: Path) -> list[ExecutionLog]:
        logs: list[ExecutionLog] = []
        try:
            with open(path, encoding="utf-8") as f:
                for line in f:
                    if not line.strip():
                        continue
                    try:
                        logs.append(ExecutionLog.model_validate_json(line))
                    except (ValueError, ValidationError):
                        logger.warning(f"Skipping corrupted log line in {path.name}")
        except FileNotFoundError:
            return []
        return logs

    def _load(self, start: date | None = None, end: date | None = None) -> list[ExecutionLog]:
        """Logs dans l'ordre d'écriture, bornés par jour si demandé."""
        if self.executions_dir is None:
            with self._lock:
                logs = list(self._memory)
            return [
                log for log in logs
                if (start is None or log.day >= start) and (end is None or log.day <= end)
            ]

        logs = []
        for path in self._day_files():
            try:
                day = date.fromisoformat(path.stem)
            except ValueError:
                continue
            if start is not None and day < start:
                continue
            if end is not None and day > end:
                continue
            logs.extend(self._read_file(path))
        return logs

    def query(self, filters: ExecutionFilters | None = None, **criteria: Any) -> list[ExecutionLog]:
        """
        Historique filtré, du plus récent au plus ancien.

        Usage :
            execution_logger.query(ExecutionFilters(status="failed"))
            execution_logger.query(target="slack", limit=10, offset=10)
        """
        if filters is None:
            filters = ExecutionFilters(**criteria)

        start = filters.start_date.date() if filters.start_date else None
        end = filters.end_date.date() if filters.end_date else None
        logs = self._load(start, end)

        matched = [(i, log) for i, log in enumerate(logs) if filters.matches(log)]
        matched.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        ordered = [log for _, log in matched]

        offset = filters.offset
        if filters.limit is None:
            return ordered[offset:]
        return ordered[offset:offset + filters.limit]

    def get_by_action_id(self, action_id: str) -> list[ExecutionLog]:
        """Toutes les entrées d'une action, dans l'ordre chronologique."""
        return list(reversed(self.query(ExecutionFilters(action_id=action_id))))

    def get_recent(self, count: int = 10) -> list[ExecutionLog]:
        with self._lock:
            recent = list(self._recent)
        return recent[-count:] if count > 0 else []

    # ──────────────────────────────────────────────────────
    # SUMMARIES
    # ──────────────────────────────────────────────────────

    def get_daily_summary(self, day: date | datetime | str | None = None) -> DailySummary:
        """Recalcule le résumé d'une journée depuis le journal."""
        target_day = parse_day(day)
        start, end = day_bounds(target_day)
        logs = self.query(ExecutionFilters(start_date=start, end_date=end))
        return summarize_day(target_day, logs)

    def export_daily_summary(self, day: date | datetime | str | None = None) -> Optional[Path]:
        """Écrit le résumé recalculé. Artefact dérivé, jamais relu."""
        summary = self.get_daily_summary(day)
        if self.summaries_dir is None:
            return None
        self.summaries_dir.mkdir(parents=True, exist_ok=True)
        path = self.summaries_dir / f"{summary.date.isoformat()}.json"
        path.write_text(summary.model_dump_json(indent=2), encoding="utf-8")
        logger.info(
            f"Daily summary generated for {summary.date}: "
            f"{summary.total_executions} executions, "
            f"{summary.success_rate:.2f}% success"
        )
        return path

    # ──────────────────────────────────────────────────────
    # FEED
    # ──────────────────────────────────────────────────────

    def stream_feed(self) -> FeedSubscription:
        """Nouvel abonné. Ne voit que les logs ajoutés à partir de maintenant."""
        subscription = FeedSubscription(self)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: FeedSubscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _publish(self, log: ExecutionLog) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        if not subscribers:
            return
        stats = self._stats_provider() if self._stats_provider else None
        event = FeedEvent(log=log, queue_stats=stats)
        for subscription in subscribers:
            subscription._push(event)
