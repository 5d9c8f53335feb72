"""
Executor — Le pont entre les décisions et les plateformes.

Le raisonnement DÉCIDE. Le Router ROUTE. La capacité FAIT.

Flux :
  QueuedAction → ActionRouter.dispatch() → capacité → ExecutionResult

Le Router valide, résout, invoque. Il ne retente jamais
et ne connaît aucun SDK : seulement des capacités.
"""

from executor.errors import (
    ActionValidationError,
    ExecutorFailure,
    FieldError,
    InvalidTransitionError,
    OrchestrationError,
    StoreCorruptionError,
    UnmappedActionError,
)
from executor.mappings import ACTION_MAPPINGS
from executor.router import ActionRouter

__all__ = [
    "ActionRouter",
    "ACTION_MAPPINGS",
    "OrchestrationError",
    "UnmappedActionError",
    "ActionValidationError",
    "FieldError",
    "InvalidTransitionError",
    "ExecutorFailure",
    "StoreCorruptionError",
]
