"""
CircuitBreaker — Un disjoncteur par plateforme.

Une plateforme qui échoue en boucle n'est plus sollicitée :
ses actions restent pending jusqu'à la fin du délai de reset.

États :
  closed    → normal, les échecs sont comptés sur une fenêtre glissante
  open      → plus aucun dispatch jusqu'à reset_timeout_ms
  half_open → dispatchs de test ; success_threshold succès → closed,
              un seul échec → open

Consulté par l'Orchestrator avec le RateLimiter, AVANT lui :
un circuit ouvert ne consomme pas la fenêtre rate limit.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from services.utils import epoch_ms


logger = logging.getLogger("actionflow.orchestrator.circuit_breaker")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    failure_window_ms: int = Field(default=60_000, ge=1)
    reset_timeout_ms: int = Field(default=30_000, ge=0)
    success_threshold: int = Field(default=2, ge=1)


class CircuitStats(BaseModel):
    """Photographie d'un circuit."""
    platform: str
    state: CircuitState = CircuitState.CLOSED
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    times_opened: int = 0
    times_closed: int = 0
    opened_at: Optional[float] = None  # epoch ms
    failure_times: list[float] = Field(default_factory=list)


class CircuitBreaker:
    """
    Table des circuits, créés à la première référence.

    Usage :
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=5))
        if breaker.allow("notion"):
            ...
            breaker.record_failure("notion")
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = epoch_ms,
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._circuits: dict[str, CircuitStats] = {}

    def _circuit(self, platform: str) -> CircuitStats:
        """Appelé sous verrou."""
        key = platform.lower()
        circuit = self._circuits.get(key)
        if circuit is None:
            circuit = CircuitStats(platform=key)
            self._circuits[key] = circuit
        return circuit

    def _remaining(self, circuit: CircuitStats, now: float) -> float:
        if circuit.state != CircuitState.OPEN or circuit.opened_at is None:
            return 0.0
        return max(0.0, circuit.opened_at + self.config.reset_timeout_ms - now)

    def _transition(self, circuit: CircuitStats, state: CircuitState, now: float) -> None:
        previous = circuit.state
        circuit.state = state
        circuit.consecutive_successes = 0
        if state == CircuitState.OPEN:
            circuit.opened_at = now
            circuit.times_opened += 1
            logger.warning(
                f"Circuit opened for {circuit.platform} "
                f"({circuit.consecutive_failures} consecutive failures)"
            )
        elif state == CircuitState.CLOSED:
            circuit.opened_at = None
            circuit.failure_times = []
            circuit.consecutive_failures = 0
            circuit.times_closed += 1
            logger.info(f"Circuit closed for {circuit.platform}")
        else:
            logger.info(f"Circuit half-open for {circuit.platform} (was {previous.value})")

    # ──────────────────────────────────────────────────────
    # GATE
    # ──────────────────────────────────────────────────────

    def allow(self, platform: str) -> bool:
        """False tant que le circuit est ouvert. Passe en half_open au reset."""
        with self._lock:
            circuit = self._circuit(platform)
            if circuit.state != CircuitState.OPEN:
                return True
            now = self._clock()
            if self._remaining(circuit, now) > 0:
                circuit.rejected_requests += 1
                return False
            self._transition(circuit, CircuitState.HALF_OPEN, now)
            return True

    def wait_time(self, platform: str) -> float:
        """Attente restante (ms) avant le passage en half_open. Sans effet de bord."""
        with self._lock:
            return self._remaining(self._circuit(platform), self._clock())

    # ──────────────────────────────────────────────────────
    # OUTCOMES
    # ──────────────────────────────────────────────────────

    def record_success(self, platform: str) -> None:
        with self._lock:
            circuit = self._circuit(platform)
            circuit.successful_requests += 1
            circuit.consecutive_failures = 0
            if circuit.state == CircuitState.HALF_OPEN:
                circuit.consecutive_successes += 1
                if circuit.consecutive_successes >= self.config.success_threshold:
                    self._transition(circuit, CircuitState.CLOSED, self._clock())

    def record_failure(self, platform: str) -> None:
        with self._lock:
            circuit = self._circuit(platform)
            now = self._clock()
            circuit.failed_requests += 1
            circuit.consecutive_failures += 1
            circuit.consecutive_successes = 0

            cutoff = now - self.config.failure_window_ms
            circuit.failure_times = [t for t in circuit.failure_times if t > cutoff]
            circuit.failure_times.append(now)

            if circuit.state == CircuitState.HALF_OPEN:
                self._transition(circuit, CircuitState.OPEN, now)
            elif (
                circuit.state == CircuitState.CLOSED
                and len(circuit.failure_times) >= self.config.failure_threshold
            ):
                self._transition(circuit, CircuitState.OPEN, now)

    def reset(self, platform: str) -> None:
        """Referme un circuit à la main (plateforme réparée)."""
        with self._lock:
            circuit = self._circuit(platform)
            if circuit.state != CircuitState.CLOSED:
                self._transition(circuit, CircuitState.CLOSED, self._clock())

    # ──────────────────────────────────────────────────────
    # READ
    # ──────────────────────────────────────────────────────

    def state(self, platform: str) -> CircuitState:
        with self._lock:
            return self._circuit(platform).state

    def get_stats(self, platform: str) -> CircuitStats:
        with self._lock:
            return self._circuit(platform).model_copy(deep=True)

    @property
    def circuits(self) -> dict[str, CircuitStats]:
        with self._lock:
            return {k: c.model_copy(deep=True) for k, c in self._circuits.items()}
