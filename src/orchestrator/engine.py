"""
Orchestrator — Le cœur du pipeline.

Responsabilités :
  1. Accepter les décisions du raisonnement (enqueue)
  2. Décider quoi part quand : priorité, FIFO, fenêtre par plateforme
  3. Dispatcher via le Router, sous timeout
  4. Appliquer la Retry Policy sur chaque échec
  5. Tracer CHAQUE tentative dans l'Execution Logger

Design decisions :
  - L'Orchestrator ne connaît PAS les plateformes, seulement le Router
  - La sélection + le gate rate limit + la transition executing
    se font dans le même verrou de l'ActionStore
  - Une action bloquée par le rate limit reste pending, elle n'est
    jamais comptée comme tentative
  - Le loop dort jusqu'au prochain événement utile (enqueue, fin de tâche,
    fin de fenêtre rate limit), jamais en attente active
  - Une erreur inattendue dans le loop est loggée, le loop continue
  - Le circuit breaker passe AVANT le rate limiter : un circuit ouvert
    laisse l'action pending sans consommer la fenêtre de la plateforme
  - Seuls les échecs d'exécuteur comptent pour le circuit. Un rejet
    (mapping absent, params invalides) ne dit rien de la plateforme
  - Une tentative qui casse en route (journal, disque) rend l'action
    à pending via release(), comme la recovery au redémarrage
  - Store et journal écrivent de façon synchrone sur le loop : des
    écritures courtes et locales. L'attente réseau, elle, est async
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import date
from typing import Any, Optional

from models.action import (
    ActionStatus,
    ExecutionResult,
    QueuedAction,
    QueueStats,
    ReasoningResult,
)
from models.execution import DailySummary, ExecutionFilters, ExecutionLog
from executor.errors import ActionValidationError, ExecutorFailure, UnmappedActionError
from executor.mappings import ACTION_MAPPINGS
from executor.router import ActionRouter
from executor.adapters.webhook import build_webhook_executors
from orchestrator.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from orchestrator.execution_logger import ExecutionLogger, FeedSubscription
from orchestrator.rate_limiter import RateLimiter
from orchestrator.retry import DEFAULT_MAX_ATTEMPTS, RetryDecision, decide_retry
from orchestrator.store import ActionStore
from services.config import Settings, get_settings
from services.utils import elapsed_ms


logger = logging.getLogger("actionflow.orchestrator.engine")


class Orchestrator:
    """
    Boucle de scheduling au-dessus de l'ActionStore.

    Usage :
        orchestrator = Orchestrator.from_settings()
        orchestrator.initialize()            # crash recovery
        await orchestrator.start()

        orchestrator.enqueue(reasoning_result, priority=1)
        ...
        await orchestrator.stop()

    Un seul passage (tests, cron) :
        processed = await orchestrator.process_queue()
    """

    def __init__(
        self,
        store: ActionStore,
        router: ActionRouter,
        rate_limiter: RateLimiter | None = None,
        execution_logger: ExecutionLogger | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        max_concurrent: int = 5,
        executor_timeout_seconds: float = 30.0,
        idle_interval_seconds: float = 1.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")

        self._store = store
        self._router = router
        self._rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self._execution_logger = (
            execution_logger if execution_logger is not None else ExecutionLogger()
        )
        self._circuit_breaker = (
            circuit_breaker if circuit_breaker is not None else CircuitBreaker()
        )
        self._execution_logger.set_stats_provider(self._store.get_stats)

        self.max_attempts = max_attempts
        self.max_concurrent = max_concurrent
        self.executor_timeout_seconds = executor_timeout_seconds
        self.idle_interval_seconds = idle_interval_seconds

        self._running = False
        self._paused = False
        self._wakeup: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: set[asyncio.Task] = set()
        self._owned_executors: list[Any] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        executors: dict[str, Any] | None = None,
    ) -> "Orchestrator":
        """
        Assemble le pipeline depuis la configuration.

        Sans `executors` explicites et avec EXECUTOR_WEBHOOK_URL défini,
        chaque plateforme est servie par un WebhookExecutor.
        """
        settings = settings or get_settings()

        owned: list[Any] = []
        if executors is None and settings.has_webhook_executor:
            executors = build_webhook_executors(
                base_url=settings.executor_webhook_url,
                mappings=ACTION_MAPPINGS,
                api_key=settings.executor_api_key,
                timeout_seconds=settings.executor_http_timeout_seconds,
            )
            owned = list(executors.values())

        orchestrator = cls(
            store=ActionStore(
                settings.queue_file_path,
                default_priority=settings.default_priority,
                idempotency_ttl_seconds=settings.idempotency_ttl_seconds,
            ),
            router=ActionRouter(executors=executors, dry_run=settings.dry_run),
            rate_limiter=RateLimiter(
                default_min_delay_ms=settings.default_min_delay_ms,
                limits=settings.rate_limits,
            ),
            execution_logger=ExecutionLogger(
                settings.log_dir,
                cache_size=settings.recent_log_cache_size,
            ),
            circuit_breaker=CircuitBreaker(
                CircuitBreakerConfig(
                    failure_threshold=settings.circuit_failure_threshold,
                    failure_window_ms=settings.circuit_failure_window_ms,
                    reset_timeout_ms=settings.circuit_reset_timeout_ms,
                    success_threshold=settings.circuit_success_threshold,
                )
            ),
            max_attempts=settings.max_attempts,
            max_concurrent=settings.max_concurrent_actions,
            executor_timeout_seconds=settings.executor_timeout_seconds,
        )
        orchestrator._owned_executors = owned
        return orchestrator

    # ──────────────────────────────────────────────────────
    # COLLABORATEURS
    # ──────────────────────────────────────────────────────

    @property
    def store(self) -> ActionStore:
        return self._store

    @property
    def router(self) -> ActionRouter:
        return self._router

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def execution_logger(self) -> ExecutionLogger:
        return self._execution_logger

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    # ──────────────────────────────────────────────────────
    # LIFECYCLE
    # ──────────────────────────────────────────────────────

    def initialize(self) -> int:
        """
        Recharge la file et le journal.

        Returns:
            Nombre d'actions interrompues remises en pending.

        Raises:
            StoreCorruptionError: le démarrage doit s'arrêter.
        """
        recovered = self._store.load()
        self._execution_logger.initialize()
        stats = self._store.get_stats()
        logger.info(
            f"Orchestrator initialized: {stats.pending} pending, "
            f"{recovered} recovered, max {self.max_concurrent} concurrent"
        )
        return recovered

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self) -> asyncio.Task:
        """Lance le loop en tâche de fond."""
        if self._loop_task is not None and not self._loop_task.done():
            logger.warning("Orchestrator already running")
            return self._loop_task
        self._loop_task = asyncio.create_task(self.run())
        # Laisse le loop démarrer avant de rendre la main
        await asyncio.sleep(0)
        return self._loop_task

    async def stop(self) -> None:
        """Arrête le loop. Les actions en cours vont au bout."""
        if not self._running and self._loop_task is None:
            return
        self._running = False
        self._wake()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        self._store.save()
        logger.info("Orchestrator stopped")

    async def aclose(self) -> None:
        """stop() + fermeture des clients HTTP créés par from_settings."""
        await self.stop()
        for executor in self._owned_executors:
            await executor.aclose()
        self._owned_executors = []

    def pause(self) -> None:
        """Plus aucun dispatch. Les actions en cours vont au bout."""
        self._paused = True
        logger.info("Orchestrator paused")

    def resume(self) -> None:
        self._paused = False
        logger.info("Orchestrator resumed")
        self._wake()

    # ──────────────────────────────────────────────────────
    # ENQUEUE
    # ──────────────────────────────────────────────────────

    def enqueue(self, reasoning_result: ReasoningResult, priority: int | None = None) -> str:
        """Persiste l'action puis réveille le loop. Retourne l'id."""
        action_id = self._store.enqueue(reasoning_result, priority)
        self._wake()
        return action_id

    def remove(self, action_id: str) -> bool:
        return self._store.remove(action_id)

    def clear_pending(self) -> int:
        return self._store.clear_pending()

    def get_action(self, action_id: str) -> Optional[QueuedAction]:
        return self._store.get(action_id)

    # ──────────────────────────────────────────────────────
    # LOOP
    # ──────────────────────────────────────────────────────

    async def run(self) -> None:
        """
        Loop principal, jusqu'à stop().

        Séquence à chaque réveil :
          1. Remplir les slots libres avec les actions éligibles
          2. Dormir jusqu'au prochain événement utile
        """
        if self._running:
            raise RuntimeError("Orchestrator loop is already running")

        self._running = True
        self._wakeup = asyncio.Event()
        logger.info("Orchestrator loop started")

        try:
            while self._running:
                self._wakeup.clear()
                if not self._paused:
                    try:
                        self._fill_slots()
                    except Exception:
                        logger.exception("Unexpected error in orchestration loop")

                delay = self._next_wakeup_delay()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            if self._in_flight:
                logger.info(f"Waiting for {len(self._in_flight)} in-flight actions")
                await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def process_queue(self) -> int:
        """
        Un passage : remplit les slots libres et attend la fin des actions lancées.

        Returns:
            Nombre d'actions dispatchées pendant ce passage.
        """
        if self._paused:
            return 0
        tasks = self._fill_slots()
        if tasks:
            await asyncio.gather(*tasks)
        return len(tasks)

    def _fill_slots(self) -> list[asyncio.Task]:
        started: list[asyncio.Task] = []
        while len(self._in_flight) < self.max_concurrent:
            action = self._store.dequeue_for_execution(gate=self._gate)
            if action is None:
                break
            task = asyncio.create_task(self._process(action))
            self._in_flight.add(task)
            task.add_done_callback(self._on_task_done)
            started.append(task)
        return started

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Action processing crashed: {task.exception()!r}",
                exc_info=task.exception(),
            )
        self._wake()

    def _gate(self, platform: str) -> bool:
        """Circuit d'abord, fenêtre rate limit ensuite."""
        if not self._circuit_breaker.allow(platform):
            return False
        return self._rate_limiter.allow(platform)

    def _wake(self) -> None:
        if self._wakeup is not None:
            self._wakeup.set()

    def _next_wakeup_delay(self) -> float:
        """Secondes avant le prochain réveil si aucun événement ne survient."""
        if self._paused or len(self._in_flight) >= self.max_concurrent:
            return self.idle_interval_seconds

        waits = [
            max(self._rate_limiter.wait_time(p), self._circuit_breaker.wait_time(p))
            for p in self._store.pending_targets()
        ]
        if not waits:
            return self.idle_interval_seconds
        return min(max(min(waits) / 1000, 0.001), self.idle_interval_seconds)

    # ──────────────────────────────────────────────────────
    # EXECUTION : UNE TENTATIVE
    # ──────────────────────────────────────────────────────

    async def _process(self, action: QueuedAction) -> QueuedAction:
        """
        Une tentative sur une action déjà passée en executing.

        Séquence :
          1. Log started
          2. Dispatch sous timeout
          3. Log success / failed, résultat au circuit breaker
          4. Transition : completed, pending (retry) ou failed

        Si une étape casse (écriture du journal ou du snapshot en échec),
        l'action repart en pending sans tentative comptée, puis l'erreur
        remonte.
        """
        try:
            return await self._attempt(action)
        except Exception:
            self._store.release(action.id)
            raise

    async def _attempt(self, action: QueuedAction) -> QueuedAction:
        rr = action.reasoning_result
        attempt_number = action.attempts + 1
        retried_from = action.id if action.attempts > 0 else None
        log_ctx = {"action_id": action.id, "correlation_id": rr.correlation_id}

        self._execution_logger.record_start(action, attempt_number, retried_from)
        started = time.perf_counter()

        try:
            result = await asyncio.wait_for(
                self._router.dispatch(action),
                timeout=self.executor_timeout_seconds,
            )
        except (UnmappedActionError, ActionValidationError) as e:
            # Rejet avant invocation : aucune tentative consommée, pas de retry
            logger.warning(f"Action rejected: {e.message}", extra=log_ctx)
            self._execution_logger.record_failure(
                action, e.message, attempt_number, retried_from, elapsed_ms(started)
            )
            return self._store.mark_terminal(
                action.id, ActionStatus.FAILED, error=e.message, count_attempt=False
            )
        except asyncio.TimeoutError as e:
            failure = ExecutorFailure(
                f"Executor timed out after {self.executor_timeout_seconds}s",
                timed_out=True,
                raw_error=e,
            )
            result = self._failure_result(failure, started)
        except Exception as e:
            failure = ExecutorFailure(f"{type(e).__name__}: {e}", raw_error=e)
            result = self._failure_result(failure, started)

        if result.success:
            self._circuit_breaker.record_success(rr.target)
            self._execution_logger.record_success(action, result, attempt_number, retried_from)
            final = self._store.mark_terminal(action.id, ActionStatus.COMPLETED)
            logger.info(
                f"Action completed: {rr.action} → {rr.target} "
                f"({result.execution_time or 0:.0f}ms, attempt {attempt_number})",
                extra=log_ctx,
            )
            return final

        error = result.error or "Executor reported failure without error message"
        self._circuit_breaker.record_failure(rr.target)
        self._execution_logger.record_failure(
            action, error, attempt_number, retried_from, result.execution_time or 0.0
        )

        if decide_retry(attempt_number, self.max_attempts) == RetryDecision.RETRY:
            logger.warning(
                f"Action failed, will retry ({attempt_number}/{self.max_attempts}): {error}",
                extra=log_ctx,
            )
            return self._store.requeue_for_retry(action.id, error)

        logger.error(
            f"Action failed after {attempt_number} attempts: {error}",
            extra=log_ctx,
        )
        return self._store.mark_terminal(action.id, ActionStatus.FAILED, error=error)

    @staticmethod
    def _failure_result(failure: ExecutorFailure, started: float) -> ExecutionResult:
        logger.warning(
            f"Executor failure{' (timeout)' if failure.timed_out else ''}: {failure.message}"
        )
        return ExecutionResult(
            success=False,
            error=failure.message,
            execution_time=elapsed_ms(started),
        )

    # ──────────────────────────────────────────────────────
    # LECTURE
    # ──────────────────────────────────────────────────────

    def get_stats(self) -> QueueStats:
        return self._store.get_stats()

    def query(self, filters: ExecutionFilters | None = None, **criteria: Any) -> list[ExecutionLog]:
        return self._execution_logger.query(filters, **criteria)

    def get_daily_summary(self, day: date | str | None = None) -> DailySummary:
        return self._execution_logger.get_daily_summary(day)

    def stream_feed(self) -> FeedSubscription:
        return self._execution_logger.stream_feed()

    def __repr__(self) -> str:
        state = "paused" if self._paused else ("running" if self._running else "idle")
        return f"<Orchestrator {state} in_flight={len(self._in_flight)} store={self._store!r}>"
