"""
Exceptions du pipeline d'orchestration.

`recoverable` décide du chemin :
  - False → l'action termine en failed dès la première tentative
  - True  → la Retry Policy décide (re-enqueue ou failed)
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class OrchestrationError(Exception):
    def __init__(
        self,
        message: str,
        recoverable: bool = True,
        raw_error: Optional[Exception] = None,
    ):
        self.message = message
        self.recoverable = recoverable
        self.raw_error = raw_error
        super().__init__(message)


class UnmappedActionError(OrchestrationError):
    """Aucune capacité pour (action, target). Erreur de configuration."""

    def __init__(self, action: str, target: str, reason: str = "") -> None:
        self.action = action
        self.target = target
        message = f"No executor found for action '{action}' on target '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message=message, recoverable=False)


class FieldError(BaseModel):
    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.field}: {self.reason}"


class ActionValidationError(OrchestrationError):
    """Params invalides. L'exécuteur n'est jamais appelé."""

    def __init__(self, action: str, target: str, errors: list[FieldError]) -> None:
        self.action = action
        self.target = target
        self.errors = errors
        details = ", ".join(str(e) for e in errors)
        super().__init__(
            message=f"Validation failed for {action}:{target}: {details}",
            recoverable=False,
        )


class ExecutorFailure(OrchestrationError):
    """Échec côté plateforme (erreur, exception ou timeout)."""

    def __init__(
        self,
        message: str,
        timed_out: bool = False,
        raw_error: Optional[Exception] = None,
    ) -> None:
        self.timed_out = timed_out
        super().__init__(message=message, recoverable=True, raw_error=raw_error)


class InvalidTransitionError(OrchestrationError):
    """Transition hors machine à états (ex : completed → pending)."""

    def __init__(self, action_id: str, current: str, requested: str) -> None:
        self.action_id = action_id
        super().__init__(
            message=f"Action {action_id}: cannot go from {current} to {requested}",
            recoverable=False,
        )


class StoreCorruptionError(OrchestrationError):
    """Snapshot illisible. Le démarrage DOIT s'arrêter."""

    def __init__(self, path: str, reason: str, raw_error: Optional[Exception] = None) -> None:
        self.path = path
        super().__init__(
            message=f"Queue snapshot {path} is unreadable: {reason}",
            recoverable=False,
            raw_error=raw_error,
        )
