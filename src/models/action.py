"""
Action — Unité de travail de la file d'orchestration.

Chaque décision du moteur de raisonnement devient une QueuedAction :
  - En attente (pending)
  - En cours (executing)
  - Terminée (completed / failed)

Machine à états :
  pending → executing → completed
                      → pending   (retry, attempts + 1)
                      → failed    (attempts >= max_attempts)

RIEN ne sort de la file sans trace.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


SNAPSHOT_VERSION = "1.0.0"

MIN_PRIORITY = 1
MAX_PRIORITY = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActionStatus(str, Enum):
    """Statut d'une action dans la file."""
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ActionStatus.COMPLETED, ActionStatus.FAILED)


class ReasoningMetadata(BaseModel):
    """Contexte optionnel attaché par le moteur de raisonnement."""
    signal_id: str | None = None
    source: str | None = None
    priority: int | None = None
    timestamp: datetime | None = None


class ReasoningResult(BaseModel):
    """
    Décision produite en amont.

    C'est le CONTRAT entre le raisonnement et l'orchestration.
    Le pipeline ne l'interprète pas : il la route.
    """
    correlation_id: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1, description="Ex: create_task, send_notification")
    target: str = Field(..., min_length=1, description="Plateforme : notion, trello, slack...")
    params: dict[str, Any] = Field(default_factory=dict)
    confidence: float | None = Field(default=None, ge=0, le=1)
    reasoning: str | None = None
    metadata: ReasoningMetadata | None = None


class QueuedAction(BaseModel):
    """
    Action persistée dans l'Action Store.

    `id` est immuable. `attempts` ne fait que croître.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    reasoning_result: ReasoningResult
    priority: int = Field(default=3, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    status: ActionStatus = ActionStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    last_attempt_at: datetime | None = None
    executed_at: datetime | None = None
    error: str | None = None
    # signal_id:action:target:sha256(params), posé si l'idempotence est active
    idempotency_key: str | None = None

    @property
    def correlation_id(self) -> str:
        return self.reasoning_result.correlation_id

    @property
    def target(self) -> str:
        return self.reasoning_result.target

    @property
    def sort_key(self) -> tuple[int, datetime]:
        """Priorité d'abord, puis FIFO dans la même bande."""
        return (self.priority, self.created_at)

    @property
    def wait_time_ms(self) -> float | None:
        if self.executed_at is None:
            return None
        return (self.executed_at - self.created_at).total_seconds() * 1000


class ExecutionResult(BaseModel):
    """Résultat renvoyé par une capacité d'exécution."""
    success: bool
    data: Any = None
    error: str | None = None
    execution_time: float | None = Field(default=None, ge=0)
    executor_used: str | None = None


class FieldRule(BaseModel):
    """Champ requis dans les params d'une action."""
    name: str
    kind: str = "str"  # "str", "list", "dict", "number", "any"


class ActionMapping(BaseModel):
    """
    Entrée de la table statique (action, target) → méthode d'exécution.

    Le Router résout ici. Aucun if/else par plateforme.
    """
    action: str
    target: str
    executor_method: str
    required_fields: list[FieldRule] = Field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.action, self.target)


class RateLimitConfig(BaseModel):
    """Fenêtre minimale entre deux dispatchs vers la même plateforme."""
    platform: str
    min_delay_ms: int = Field(default=0, ge=0)
    last_execution_time: float | None = None  # epoch ms, None = jamais exécuté


class QueueStats(BaseModel):
    """Photographie de la file, recalculée à chaque appel."""
    pending: int = 0
    executing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
    avg_wait_time: float = 0.0  # ms
    oldest_pending_age: Optional[float] = None  # ms
    duplicates_prevented: int = 0


class QueueSnapshot(BaseModel):
    """Format disque de l'Action Store."""
    actions: list[QueuedAction] = Field(default_factory=list)
    last_saved: datetime = Field(default_factory=utcnow)
    version: str = SNAPSHOT_VERSION
