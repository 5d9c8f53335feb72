"""
Retry Policy — Fonction pure.

(attempts, max_attempts) → RETRY | EXHAUSTED

Pas de backoff ici : l'action retourne dans la file à sa priorité
d'origine et le RateLimiter l'espace naturellement.
"""

from __future__ import annotations

from enum import Enum


DEFAULT_MAX_ATTEMPTS = 3


class RetryDecision(str, Enum):
    RETRY = "retry"
    EXHAUSTED = "exhausted"


def decide_retry(attempts: int, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> RetryDecision:
    """
    Décide du sort d'une action après un échec.

    Args:
        attempts: tentatives effectuées, celle qui vient d'échouer incluse.
        max_attempts: plafond configuré (>= 1).
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    if attempts < 0:
        raise ValueError(f"attempts must be >= 0, got {attempts}")
    if attempts < max_attempts:
        return RetryDecision.RETRY
    return RetryDecision.EXHAUSTED
