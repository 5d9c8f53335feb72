"""
ActionStore — Source de vérité des actions.

Responsabilités :
  1. Persister chaque action AVANT de rendre la main (crash-safe)
  2. Sélectionner la prochaine action (priorité, puis FIFO)
  3. Transitionner atomiquement pending → executing (un seul exécuteur)
  4. Appliquer la machine à états, rien d'autre
  5. Récupérer les actions interrompues au redémarrage

Design decisions :
  - Toutes les mutations passent par enqueue / dequeue_for_execution /
    requeue_for_retry / mark_terminal / remove
  - UN verrou, tenu le temps de la sélection + transition + écriture
  - Le snapshot est réécrit en entier (fichier temporaire + rename)
  - Les lecteurs reçoivent des copies, jamais l'état interne
  - Une transition dont l'écriture échoue est défaite : la mémoire ne
    devance jamais le disque (sauf release, qui rejoue la recovery)
  - Les écritures sont synchrones, sous le verrou, sur le thread appelant
    (donc sur le loop asyncio) : un snapshot de quelques centaines
    d'actions s'écrit en quelques ms. Au-delà, sortir le store du loop
    (asyncio.to_thread), le verrou le permet déjà
  - Idempotence optionnelle : une décision déjà pending, executing ou
    completed depuis moins que le TTL n'est pas remise en file
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from models.action import (
    MAX_PRIORITY,
    MIN_PRIORITY,
    SNAPSHOT_VERSION,
    ActionStatus,
    QueuedAction,
    QueueSnapshot,
    QueueStats,
    ReasoningResult,
    utcnow,
)
from executor.errors import InvalidTransitionError, StoreCorruptionError
from orchestrator.idempotency import idempotency_key


logger = logging.getLogger("actionflow.orchestrator.store")

# gate(platform) → True si le dispatch est autorisé maintenant
PlatformGate = Callable[[str], bool]


class ActionStore:
    """
    File de priorité durable.

    Usage :
        store = ActionStore("queue/actions.json")
        store.load()                      # crash recovery
        action_id = store.enqueue(result, priority=1)
        action = store.dequeue_for_execution(gate=limiter.allow)
        store.mark_terminal(action.id, ActionStatus.COMPLETED)

    path=None → store en mémoire (tests).
    idempotency_ttl_seconds=None → pas de dédoublonnage.
    """

    def __init__(
        self,
        path: Path | str | None = None,
        default_priority: int = 3,
        clock: Callable[[], datetime] = utcnow,
        idempotency_ttl_seconds: float | None = None,
    ) -> None:
        if idempotency_ttl_seconds is not None and idempotency_ttl_seconds < 0:
            raise ValueError(
                f"idempotency_ttl_seconds must be >= 0, got {idempotency_ttl_seconds}"
            )
        self._path = Path(path) if path is not None else None
        self.default_priority = default_priority
        self.idempotency_ttl_seconds = idempotency_ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()
        # Ordre d'insertion conservé : départage FIFO à created_at égal
        self._actions: dict[str, QueuedAction] = {}
        self._duplicates_prevented = 0

    @property
    def path(self) -> Optional[Path]:
        return self._path

    # ──────────────────────────────────────────────────────
    # PERSISTENCE
    # ──────────────────────────────────────────────────────

    def load(self) -> int:
        """
        Charge le snapshot et remet en pending les actions interrompues.

        Returns:
            Nombre d'actions récupérées (executing → pending).

        Raises:
            StoreCorruptionError: snapshot illisible. Ne JAMAIS ignorer.
        """
        if self._path is None or not self._path.exists():
            logger.info("No existing queue file found, starting fresh")
            return 0

        try:
            raw = self._path.read_text(encoding="utf-8")
            snapshot = QueueSnapshot.model_validate_json(raw)
        except (OSError, ValueError, ValidationError) as e:
            raise StoreCorruptionError(str(self._path), str(e), raw_error=e)

        if snapshot.version.split(".")[0] != SNAPSHOT_VERSION.split(".")[0]:
            raise StoreCorruptionError(
                str(self._path),
                f"unsupported snapshot version {snapshot.version}",
            )

        recovered = 0
        with self._lock:
            self._actions = {}
            for action in snapshot.actions:
                if action.id in self._actions:
                    raise StoreCorruptionError(str(self._path), f"duplicate action id {action.id}")
                if action.status == ActionStatus.EXECUTING:
                    # Tentative interrompue : pas comptée, attempts inchangé
                    action.status = ActionStatus.PENDING
                    recovered += 1
                    logger.info(
                        f"Recovered interrupted action {action.id}",
                        extra={"action_id": action.id, "correlation_id": action.correlation_id},
                    )
                self._actions[action.id] = action
            if recovered:
                self._save()

        logger.info(
            f"Queue loaded from disk: {len(snapshot.actions)} actions, "
            f"{recovered} recovered (last saved {snapshot.last_saved.isoformat()})"
        )
        return recovered

    def save(self) -> None:
        with self._lock:
            self._save()

    def _save(self) -> None:
        """Écrit le snapshot complet. Appelé sous verrou."""
        if self._path is None:
            return

        snapshot = QueueSnapshot(
            actions=list(self._actions.values()),
            last_saved=self._clock(),
        )
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        payload = json.dumps(snapshot.model_dump(mode="json"), indent=2)
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self._path)

    def _commit(self, previous: QueuedAction) -> None:
        """
        Persiste une transition déjà appliquée en mémoire.

        Si l'écriture échoue, `previous` reprend sa place et l'erreur
        remonte. Appelé sous verrou.
        """
        try:
            self._save()
        except OSError:
            self._actions[previous.id] = previous
            logger.exception(
                f"Failed to persist transition of action {previous.id}, rolled back",
                extra={"action_id": previous.id, "correlation_id": previous.correlation_id},
            )
            raise

    # ──────────────────────────────────────────────────────
    # ENQUEUE
    # ──────────────────────────────────────────────────────

    def _find_duplicate(self, key: str, now: datetime) -> Optional[QueuedAction]:
        """Action vivante ou récemment complétée de même clé. Appelé sous verrou."""
        ttl = timedelta(seconds=self.idempotency_ttl_seconds or 0)
        for action in self._actions.values():
            if action.idempotency_key != key:
                continue
            if action.status in (ActionStatus.PENDING, ActionStatus.EXECUTING):
                return action
            if (
                action.status == ActionStatus.COMPLETED
                and action.executed_at is not None
                and now - action.executed_at < ttl
            ):
                return action
        return None

    def enqueue(
        self,
        reasoning_result: ReasoningResult,
        priority: int | None = None,
    ) -> str:
        """
        Crée une action pending et la persiste avant de rendre l'id.

        Une priorité hors [1, 5] est ramenée à la priorité par défaut.
        Avec l'idempotence active, un doublon rend l'id de l'action
        existante sans rien créer. Un échec (failed) n'empêche pas
        de remettre la même décision en file.
        """
        if priority is None:
            priority = self.default_priority
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            logger.warning(
                f"Invalid priority {priority}, defaulting to {self.default_priority}"
            )
            priority = self.default_priority

        key = None
        if self.idempotency_ttl_seconds is not None:
            key = idempotency_key(reasoning_result)

        now = self._clock()
        action = QueuedAction(
            reasoning_result=reasoning_result,
            priority=priority,
            created_at=now,
            idempotency_key=key,
        )

        with self._lock:
            if key is not None:
                existing = self._find_duplicate(key, now)
                if existing is not None:
                    self._duplicates_prevented += 1
                    logger.info(
                        f"Duplicate action ignored: {reasoning_result.action} → "
                        f"{reasoning_result.target} already {existing.status.value} "
                        f"as {existing.id}",
                        extra={
                            "action_id": existing.id,
                            "correlation_id": reasoning_result.correlation_id,
                        },
                    )
                    return existing.id

            self._actions[action.id] = action
            try:
                self._save()
            except OSError:
                # Pas persisté = pas accepté
                del self._actions[action.id]
                logger.exception(f"Failed to persist enqueued action {action.id}")
                raise
            queue_size = self._count(ActionStatus.PENDING)

        logger.info(
            f"Action enqueued: {reasoning_result.action} → {reasoning_result.target} "
            f"(priority {priority}, {queue_size} pending)",
            extra={"action_id": action.id, "correlation_id": reasoning_result.correlation_id},
        )
        return action.id

    # ──────────────────────────────────────────────────────
    # SELECTION
    # ──────────────────────────────────────────────────────

    def _pending_in_order(self) -> list[QueuedAction]:
        pending = [a for a in self._actions.values() if a.status == ActionStatus.PENDING]
        return sorted(pending, key=lambda a: a.sort_key)

    def select_next(
        self,
        is_rate_limited: Callable[[str], bool] | None = None,
    ) -> Optional[QueuedAction]:
        """Prochaine action éligible, sans la réserver (lecture seule)."""
        with self._lock:
            for action in self._pending_in_order():
                if is_rate_limited is not None and is_rate_limited(action.target):
                    continue
                return action.model_copy(deep=True)
        return None

    def dequeue_for_execution(
        self,
        gate: PlatformGate | None = None,
    ) -> Optional[QueuedAction]:
        """
        Réserve atomiquement UNE action : pending → executing.

        `gate` est consulté sous le verrou, dans l'ordre de priorité,
        une seule fois par plateforme. Le premier passage accordé
        désigne l'action.
        """
        with self._lock:
            denied: set[str] = set()
            for action in self._pending_in_order():
                platform = action.target
                if platform in denied:
                    continue
                if gate is not None and not gate(platform):
                    denied.add(platform)
                    continue

                previous = action.model_copy(deep=True)
                action.status = ActionStatus.EXECUTING
                action.last_attempt_at = self._clock()
                self._commit(previous)

                logger.info(
                    f"Action dequeued: {action.reasoning_result.action} → {platform} "
                    f"(priority {action.priority}, attempts {action.attempts})",
                    extra={"action_id": action.id, "correlation_id": action.correlation_id},
                )
                return action.model_copy(deep=True)

            if denied:
                logger.debug(f"Rate limited platforms: {sorted(denied)}")
        return None

    # ──────────────────────────────────────────────────────
    # OUTCOMES
    # ──────────────────────────────────────────────────────

    def _require_executing(self, action_id: str, requested: ActionStatus) -> QueuedAction:
        action = self._actions.get(action_id)
        if action is None:
            raise KeyError(action_id)
        if action.status != ActionStatus.EXECUTING:
            raise InvalidTransitionError(action_id, action.status.value, requested.value)
        return action

    def requeue_for_retry(self, action_id: str, error: str) -> QueuedAction:
        """executing → pending, attempts + 1, priorité d'origine conservée."""
        with self._lock:
            action = self._require_executing(action_id, ActionStatus.PENDING)
            previous = action.model_copy(deep=True)
            action.attempts += 1
            action.status = ActionStatus.PENDING
            action.error = error
            self._commit(previous)
            return action.model_copy(deep=True)

    def release(self, action_id: str) -> bool:
        """
        executing → pending SANS compter de tentative.

        Pour une tentative abandonnée en cours de route (journal ou disque
        en échec). Même effet que la recovery au redémarrage : si
        l'écriture échoue, la mémoire garde pending, le disque garde
        executing, et le prochain load() aboutit au même état.

        Returns:
            False si l'action n'est pas (ou plus) executing.
        """
        with self._lock:
            action = self._actions.get(action_id)
            if action is None or action.status != ActionStatus.EXECUTING:
                return False
            action.status = ActionStatus.PENDING
            try:
                self._save()
            except OSError:
                logger.exception(
                    f"Failed to persist release of action {action_id}, "
                    f"disk still says executing",
                    extra={"action_id": action_id, "correlation_id": action.correlation_id},
                )
        logger.warning(
            f"Action {action_id} released back to pending",
            extra={"action_id": action_id, "correlation_id": action.correlation_id},
        )
        return True

    def mark_terminal(
        self,
        action_id: str,
        status: ActionStatus,
        error: str | None = None,
        count_attempt: bool = True,
    ) -> QueuedAction:
        """
        executing → completed | failed.

        count_attempt=False pour les rejets avant invocation
        (mapping absent, params invalides) : attempts inchangé.
        """
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")

        with self._lock:
            action = self._require_executing(action_id, status)
            previous = action.model_copy(deep=True)
            if count_attempt:
                action.attempts += 1
            action.status = status
            action.executed_at = self._clock()
            action.error = error if status == ActionStatus.FAILED else None
            self._commit(previous)
            return action.model_copy(deep=True)

    # ──────────────────────────────────────────────────────
    # REMOVAL (pending uniquement)
    # ──────────────────────────────────────────────────────

    def remove(self, action_id: str) -> bool:
        """Retire une action pending (doublon remplacé, etc.)."""
        with self._lock:
            action = self._actions.get(action_id)
            if action is None or action.status != ActionStatus.PENDING:
                return False
            del self._actions[action_id]
            self._save()
        logger.info(f"Pending action {action_id} removed")
        return True

    def clear_pending(self) -> int:
        """Retire toutes les actions pending. Les autres ne bougent pas."""
        with self._lock:
            pending_ids = [
                a.id for a in self._actions.values() if a.status == ActionStatus.PENDING
            ]
            for action_id in pending_ids:
                del self._actions[action_id]
            if pending_ids:
                self._save()
        logger.info(f"Queue cleared: {len(pending_ids)} pending actions removed")
        return len(pending_ids)

    # ──────────────────────────────────────────────────────
    # READ
    # ──────────────────────────────────────────────────────

    def get(self, action_id: str) -> Optional[QueuedAction]:
        with self._lock:
            action = self._actions.get(action_id)
            return action.model_copy(deep=True) if action else None

    def list_actions(self, status: ActionStatus | None = None) -> list[QueuedAction]:
        with self._lock:
            return [
                a.model_copy(deep=True)
                for a in self._actions.values()
                if status is None or a.status == status
            ]

    def pending_targets(self) -> set[str]:
        with self._lock:
            return {
                a.target for a in self._actions.values() if a.status == ActionStatus.PENDING
            }

    def has_pending(self) -> bool:
        with self._lock:
            return self._count(ActionStatus.PENDING) > 0

    def _count(self, status: ActionStatus) -> int:
        return sum(1 for a in self._actions.values() if a.status == status)

    def get_stats(self) -> QueueStats:
        """Compteurs live par statut + temps d'attente."""
        now = self._clock()
        with self._lock:
            actions = list(self._actions.values())

        counts = {status: 0 for status in ActionStatus}
        for a in actions:
            counts[a.status] += 1

        waits = [
            a.wait_time_ms for a in actions
            if a.status.is_terminal and a.wait_time_ms is not None
        ]
        pending = [a for a in actions if a.status == ActionStatus.PENDING]
        oldest_age = None
        if pending:
            oldest = min(a.created_at for a in pending)
            oldest_age = (now - oldest).total_seconds() * 1000

        return QueueStats(
            pending=counts[ActionStatus.PENDING],
            executing=counts[ActionStatus.EXECUTING],
            completed=counts[ActionStatus.COMPLETED],
            failed=counts[ActionStatus.FAILED],
            total=len(actions),
            avg_wait_time=sum(waits) / len(waits) if waits else 0.0,
            oldest_pending_age=oldest_age,
            duplicates_prevented=self._duplicates_prevented,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def __bool__(self) -> bool:
        # Un store vide reste un store : `store or ActionStore()` ne doit pas le remplacer
        return True

    def __repr__(self) -> str:
        return f"<ActionStore path={self._path} actions={len(self)}>"
