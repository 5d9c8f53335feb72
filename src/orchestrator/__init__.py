"""
Actionflow Orchestrator — La boucle d'exécution.

Chaque décision devient une action durable, exécutée dans l'ordre,
au rythme de chaque plateforme, tracée à chaque tentative.

Modules :
  - store.py             → File de priorité durable (snapshot JSON)
  - rate_limiter.py      → Fenêtre minimale par plateforme
  - circuit_breaker.py   → Disjoncteur par plateforme
  - idempotency.py       → Clé de dédoublonnage des décisions
  - retry.py             → Retry Policy (fonction pure)
  - execution_logger.py  → Journal JSONL + flux temps réel
  - reporter.py          → Projection quotidienne → DailySummary
  - engine.py            → Orchestrator : loop, dispatch, transitions
"""

from orchestrator.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from orchestrator.engine import Orchestrator
from orchestrator.execution_logger import ExecutionLogger, FeedSubscription
from orchestrator.rate_limiter import RateLimitDecision, RateLimiter
from orchestrator.reporter import format_summary, summarize_day
from orchestrator.retry import RetryDecision, decide_retry
from orchestrator.store import ActionStore

__all__ = [
    "Orchestrator",
    "ActionStore",
    "RateLimiter",
    "RateLimitDecision",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "RetryDecision",
    "decide_retry",
    "ExecutionLogger",
    "FeedSubscription",
    "summarize_day",
    "format_summary",
]
