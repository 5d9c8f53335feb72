"""
Actionflow Models — Contrats du pipeline.

  ReasoningResult → décision entrante, telle que produite en amont
  QueuedAction    → action persistée dans la file
  ExecutionResult → retour d'une capacité
  ExecutionLog    → trace de chaque tentative
  DailySummary    → projection d'une journée de logs

+ modèles de config (mapping, rate limit)
"""

from models.action import (
    ActionMapping,
    ActionStatus,
    ExecutionResult,
    FieldRule,
    QueuedAction,
    QueueSnapshot,
    QueueStats,
    RateLimitConfig,
    ReasoningMetadata,
    ReasoningResult,
)
from models.execution import (
    ActionBreakdown,
    DailySummary,
    ExecutionFilters,
    ExecutionLog,
    ExecutionStatus,
    FeedEvent,
    StatusCounts,
    TargetBreakdown,
)

__all__ = [
    # Queue
    "ReasoningResult",
    "ReasoningMetadata",
    "QueuedAction",
    "ActionStatus",
    "QueueStats",
    "QueueSnapshot",
    # Routing
    "ActionMapping",
    "FieldRule",
    "ExecutionResult",
    "RateLimitConfig",
    # Audit
    "ExecutionLog",
    "ExecutionStatus",
    "ExecutionFilters",
    "DailySummary",
    "StatusCounts",
    "TargetBreakdown",
    "ActionBreakdown",
    "FeedEvent",
]
