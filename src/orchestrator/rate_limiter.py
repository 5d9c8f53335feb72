"""
RateLimiter — Une porte par plateforme.

Deux dispatchs vers la même plateforme sont espacés d'au moins
`min_delay_ms`. Deux plateformes différentes ne se bloquent jamais.

Consulté par l'Orchestrator avant CHAQUE dispatch. Jamais par le Router.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from pydantic import BaseModel

from models.action import RateLimitConfig
from services.utils import epoch_ms


logger = logging.getLogger("actionflow.orchestrator.rate_limiter")


class RateLimitDecision(BaseModel):
    """Résultat du gate. allowed=False n'est pas une erreur : c'est un report."""
    platform: str
    allowed: bool
    wait_ms: float = 0.0


class RateLimiter:
    """
    Table des RateLimitConfig, créées à la première référence.

    Usage :
        limiter = RateLimiter(default_min_delay_ms=0, limits={"slack": 1000})
        decision = limiter.try_acquire("slack")
        if not decision.allowed:
            await asyncio.sleep(decision.wait_ms / 1000)
    """

    def __init__(
        self,
        default_min_delay_ms: int = 0,
        limits: dict[str, int] | None = None,
        clock: Callable[[], float] = epoch_ms,
    ) -> None:
        self.default_min_delay_ms = default_min_delay_ms
        self._limits = {k.lower(): v for k, v in (limits or {}).items()}
        self._clock = clock
        self._lock = threading.Lock()
        self._configs: dict[str, RateLimitConfig] = {}

    def _config(self, platform: str) -> RateLimitConfig:
        """Config de la plateforme, créée à la volée. Appelé sous verrou."""
        key = platform.lower()
        config = self._configs.get(key)
        if config is None:
            config = RateLimitConfig(
                platform=key,
                min_delay_ms=self._limits.get(key, self.default_min_delay_ms),
            )
            self._configs[key] = config
        return config

    @staticmethod
    def _remaining(config: RateLimitConfig, now: float) -> float:
        if config.last_execution_time is None:
            return 0.0
        elapsed = now - config.last_execution_time
        return max(0.0, config.min_delay_ms - elapsed)

    # ──────────────────────────────────────────────────────
    # GATE
    # ──────────────────────────────────────────────────────

    def try_acquire(self, platform: str) -> RateLimitDecision:
        """
        Passe la porte si la fenêtre est écoulée.

        Lecture + mise à jour de last_execution_time sous le même verrou :
        deux appels concurrents ne peuvent pas passer sur la même fenêtre.
        """
        with self._lock:
            config = self._config(platform)
            now = self._clock()
            remaining = self._remaining(config, now)
            if remaining > 0:
                logger.debug(
                    f"Rate limit hit for {config.platform}: wait {remaining:.0f}ms"
                )
                return RateLimitDecision(
                    platform=config.platform, allowed=False, wait_ms=remaining
                )
            config.last_execution_time = now
            return RateLimitDecision(platform=config.platform, allowed=True)

    def allow(self, platform: str) -> bool:
        """try_acquire réduit à un booléen (gate de l'ActionStore)."""
        return self.try_acquire(platform).allowed

    # ──────────────────────────────────────────────────────
    # READ
    # ──────────────────────────────────────────────────────

    def wait_time(self, platform: str) -> float:
        """Attente restante (ms) avant le prochain passage. Sans effet de bord."""
        with self._lock:
            return self._remaining(self._config(platform), self._clock())

    def is_limited(self, platform: str) -> bool:
        return self.wait_time(platform) > 0

    def nearest_wait(self, platforms: set[str] | list[str]) -> float | None:
        """Plus petite attente (ms) parmi les plateformes. None si aucune."""
        waits = [self.wait_time(p) for p in platforms]
        return min(waits) if waits else None

    def set_limit(self, platform: str, min_delay_ms: int) -> None:
        with self._lock:
            self._limits[platform.lower()] = min_delay_ms
            self._config(platform).min_delay_ms = min_delay_ms

    def get_config(self, platform: str) -> RateLimitConfig:
        with self._lock:
            return self._config(platform).model_copy()

    @property
    def configs(self) -> dict[str, RateLimitConfig]:
        with self._lock:
            return {k: c.model_copy() for k, c in self._configs.items()}
