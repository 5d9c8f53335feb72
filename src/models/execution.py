"""
ExecutionLog — Piste d'audit du pipeline.

UNE entrée par événement d'exécution (started / success / failed).
Jamais modifiée. Jamais supprimée.

Le DailySummary n'est qu'une PROJECTION de ces entrées :
il se recalcule, il ne se stocke pas.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.action import QueueStats, utcnow
from services.utils import normalize_date


class ExecutionStatus(str, Enum):
    """Statut d'une entrée de log."""
    STARTED = "started"
    SUCCESS = "success"
    FAILED = "failed"


class ExecutionLog(BaseModel):
    """Entrée immuable du journal d'exécution."""
    model_config = ConfigDict(frozen=True)

    action_id: str
    correlation_id: str
    action: str
    target: str
    params: dict[str, Any] = Field(default_factory=dict)
    status: ExecutionStatus
    result: Any = None
    error: str | None = None
    execution_time: float = Field(default=0.0, ge=0)  # ms
    timestamp: datetime = Field(default_factory=utcnow)
    retried_from: str | None = None
    attempt_number: int = Field(default=1, ge=0)
    platform: str = ""

    @property
    def day(self) -> date:
        return self.timestamp.date()


class ExecutionFilters(BaseModel):
    """Critères de recherche dans le journal."""
    action_id: str | None = None
    correlation_id: str | None = None
    status: ExecutionStatus | None = None
    target: str | None = None
    action: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int | None = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _to_utc(cls, v: Any) -> datetime | None:
        # Accepte ISO strings, epoch et datetimes naïfs
        return normalize_date(v)

    def matches(self, log: ExecutionLog) -> bool:
        if self.action_id and log.action_id != self.action_id:
            return False
        if self.correlation_id and log.correlation_id != self.correlation_id:
            return False
        if self.status and log.status != self.status:
            return False
        if self.target and log.target != self.target:
            return False
        if self.action and log.action != self.action:
            return False
        if self.start_date and log.timestamp < self.start_date:
            return False
        if self.end_date and log.timestamp > self.end_date:
            return False
        return True


class StatusCounts(BaseModel):
    started: int = 0
    success: int = 0
    failed: int = 0


class TargetBreakdown(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    avg_execution_time: float = 0.0


class ActionBreakdown(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0


class DailySummary(BaseModel):
    """Agrégats d'une journée, recalculés depuis le journal."""
    date: date
    total_executions: int = 0
    by_status: StatusCounts = Field(default_factory=StatusCounts)
    by_target: dict[str, TargetBreakdown] = Field(default_factory=dict)
    by_action: dict[str, ActionBreakdown] = Field(default_factory=dict)
    avg_execution_time: float = 0.0
    slowest_execution: Optional[ExecutionLog] = None
    fastest_execution: Optional[ExecutionLog] = None
    success_rate: float = 0.0  # 0-100
    generated_at: datetime = Field(default_factory=utcnow)


class FeedEvent(BaseModel):
    """Événement du flux temps réel."""
    log: ExecutionLog
    queue_stats: QueueStats | None = None
