"""
ActionRouter — Routeur principal.

Reçoit une QueuedAction, résout la capacité, valide les params,
invoque, renvoie l'ExecutionResult tel quel.

Design decisions :
  - UN point d'entrée pour toutes les actions
  - Chaque (action, target) est mappé dans une table statique
  - Validation AVANT invocation : un param manquant n'est pas un échec plateforme
  - Aucun retry ici : c'est le rôle de l'Orchestrator + Retry Policy
  - Aucun rate limiting ici : l'Orchestrator gate avant le dispatch
  - Dry-run mode pour les tests et la mise en service
"""

from __future__ import annotations

import logging
import time
from numbers import Number
from typing import Any, Awaitable, Callable

from models.action import ActionMapping, ExecutionResult, FieldRule, QueuedAction
from executor.capabilities import CAPABILITIES
from executor.errors import ActionValidationError, FieldError, UnmappedActionError
from executor.mappings import build_mapping_index
from services.utils import elapsed_ms


logger = logging.getLogger("actionflow.executor.router")

ExecutorMethod = Callable[[dict[str, Any]], Awaitable[Any]]


def _check_field(rule: FieldRule, params: dict[str, Any]) -> FieldError | None:
    if rule.name not in params or params[rule.name] is None:
        return FieldError(field=rule.name, reason="missing")

    value = params[rule.name]
    if rule.kind == "str":
        if not isinstance(value, str):
            return FieldError(field=rule.name, reason="must be a string")
        if not value.strip():
            return FieldError(field=rule.name, reason="must not be empty")
    elif rule.kind == "list":
        if not isinstance(value, list):
            return FieldError(field=rule.name, reason="must be a list")
        if not value:
            return FieldError(field=rule.name, reason="must not be empty")
    elif rule.kind == "dict":
        if not isinstance(value, dict):
            return FieldError(field=rule.name, reason="must be an object")
    elif rule.kind == "number":
        if isinstance(value, bool) or not isinstance(value, Number):
            return FieldError(field=rule.name, reason="must be a number")
    return None


class ActionRouter:
    """
    Dispatch pur, isolé des effets de bord du scheduling.

    Usage :
        router = ActionRouter(executors={"notion": notion, "slack": slack})
        result = await router.dispatch(queued_action)

    Dry-run :
        router = ActionRouter(executors=..., dry_run=True)
        result = await router.dispatch(queued_action)  # valide sans exécuter
    """

    def __init__(
        self,
        executors: dict[str, Any] | None = None,
        mappings: list[ActionMapping] | None = None,
        dry_run: bool = False,
    ) -> None:
        self.dry_run = dry_run
        self._mappings = build_mapping_index(mappings)
        self._executors: dict[str, Any] = {}
        for target, executor in (executors or {}).items():
            self._check_capability(target.lower(), executor)
            self._executors[target.lower()] = executor

    # ──────────────────────────────────────────────────────
    # REGISTRY
    # ──────────────────────────────────────────────────────

    def register_executor(self, target: str, executor: Any) -> None:
        """Branche (ou remplace) la capacité d'une plateforme."""
        self._check_capability(target.lower(), executor)
        self._executors[target.lower()] = executor
        logger.info(f"Executor registered for {target}")

    def _check_capability(self, target: str, executor: Any) -> bool:
        """
        Vérifie l'executor contre le Protocol de la plateforme.

        Une capacité partielle est acceptée : les actions sans méthode
        échouent en UnmappedActionError au dispatch.
        """
        protocol = CAPABILITIES.get(target)
        if protocol is None or isinstance(executor, protocol):
            return True
        missing = sorted(
            m.executor_method for m in self._mappings.values()
            if m.target == target and not callable(getattr(executor, m.executor_method, None))
        )
        logger.warning(
            f"Executor for {target} does not implement {protocol.__name__}: "
            f"missing {missing}"
        )
        return False

    @property
    def supported_actions(self) -> list[str]:
        return sorted(f"{a}:{t}" for a, t in self._mappings)

    @property
    def targets(self) -> list[str]:
        return sorted({t for _, t in self._mappings})

    # ──────────────────────────────────────────────────────
    # RESOLVE + VALIDATE
    # ──────────────────────────────────────────────────────

    def resolve(self, action: str, target: str) -> ActionMapping:
        mapping = self._mappings.get((action, target.lower()))
        if mapping is None:
            raise UnmappedActionError(action, target)
        return mapping

    def validate(self, mapping: ActionMapping, params: dict[str, Any]) -> None:
        errors = [
            err for err in (_check_field(rule, params) for rule in mapping.required_fields)
            if err is not None
        ]
        if errors:
            raise ActionValidationError(mapping.action, mapping.target, errors)

    def _resolve_method(self, mapping: ActionMapping) -> ExecutorMethod:
        executor = self._executors.get(mapping.target)
        if executor is None:
            raise UnmappedActionError(
                mapping.action, mapping.target, "no capability registered"
            )
        method = getattr(executor, mapping.executor_method, None)
        if method is None or not callable(method):
            raise UnmappedActionError(
                mapping.action,
                mapping.target,
                f"capability has no method '{mapping.executor_method}'",
            )
        return method

    # ──────────────────────────────────────────────────────
    # DISPATCH
    # ──────────────────────────────────────────────────────

    async def dispatch(self, action: QueuedAction) -> ExecutionResult:
        """
        Route une action vers sa capacité.

        Raises:
            UnmappedActionError: pas de mapping ou pas de capacité.
            ActionValidationError: params invalides (exécuteur non appelé).
        Les exceptions de l'exécuteur remontent telles quelles.
        """
        rr = action.reasoning_result
        mapping = self.resolve(rr.action, rr.target)
        self.validate(mapping, rr.params)

        if self.dry_run:
            logger.info(f"Dry-run: {rr.action} → {rr.target}")
            return ExecutionResult(
                success=True,
                data={
                    "dry_run": True,
                    "action": rr.action,
                    "target": rr.target,
                    "params": rr.params,
                    "would_execute": mapping.executor_method,
                },
                execution_time=0.0,
                executor_used=f"{mapping.target}.{mapping.executor_method}",
            )

        method = self._resolve_method(mapping)
        logger.debug(
            f"Executor selected: {mapping.target}.{mapping.executor_method}",
            extra={"action_id": action.id, "correlation_id": rr.correlation_id},
        )

        started = time.perf_counter()
        raw = await method(rr.params)
        result = raw if isinstance(raw, ExecutionResult) else ExecutionResult.model_validate(raw)

        if result.execution_time is None:
            result = result.model_copy(update={"execution_time": elapsed_ms(started)})
        if result.executor_used is None:
            result = result.model_copy(
                update={"executor_used": f"{mapping.target}.{mapping.executor_method}"}
            )
        return result
