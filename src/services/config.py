"""
Settings — Configuration centralisée.

Toutes les variables d'environnement sont validées ICI.
Aucun os.getenv() ailleurs dans le code.

Usage :
    from services.config import get_settings

    settings = get_settings()
    settings.max_attempts
    settings.rate_limit_for("slack")
    settings.queue_file_path
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Environnement d'exécution."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _default_rate_limits() -> dict[str, int]:
    # Délai minimal entre deux appels, en ms
    return {
        "notion": 330,   # ~3 req/s
        "trello": 100,   # 10 req/s
        "slack": 1000,   # 1 req/s
        "drive": 100,
        "sheets": 100,
    }


class Settings(BaseSettings):
    """
    Configuration centralisée du pipeline d'orchestration.

    Charge depuis .env ou variables d'environnement.
    Chaque champ a une valeur par défaut raisonnable pour le dev.
    """

    # ── Environnement ──
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False
    app_name: str = "actionflow"
    app_version: str = "0.1.0"

    # ── Action Store ──
    queue_file_path: Path = Field(
        default=Path("queue/actions.json"),
        description="Snapshot JSON de la file (crash recovery)",
    )
    default_priority: int = Field(default=3, ge=1, le=5)
    # Fenêtre de dédoublonnage des décisions, None = désactivé
    idempotency_ttl_seconds: float | None = Field(default=86_400, ge=0)

    # ── Scheduling ──
    max_attempts: int = Field(default=3, ge=1, le=10)
    max_concurrent_actions: int = Field(default=5, ge=1, le=100)
    executor_timeout_seconds: float = Field(default=30.0, gt=0, le=600)
    dry_run: bool = Field(
        default=False,
        description="Résout et valide sans appeler les exécuteurs",
    )

    # ── Rate limiting ──
    default_min_delay_ms: int = Field(default=0, ge=0)
    rate_limits: dict[str, int] = Field(default_factory=_default_rate_limits)

    # ── Circuit breaker ──
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_failure_window_ms: int = Field(default=60_000, ge=1)
    circuit_reset_timeout_ms: int = Field(default=30_000, ge=0)
    circuit_success_threshold: int = Field(default=2, ge=1)

    # ── Execution log ──
    log_dir: Path = Field(default=Path("logs"))
    recent_log_cache_size: int = Field(default=100, ge=1, le=10_000)

    # ── Exécuteur distant (webhook) ──
    executor_webhook_url: str = Field(
        default="",
        description="Service externe qui porte les appels plateforme",
    )
    executor_api_key: str = Field(default="")
    executor_http_timeout_seconds: float = Field(default=20.0, gt=0, le=300)

    # ── Logging ──
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # ── Validators ──

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in {"json", "text"}:
            raise ValueError("log_format must be 'json' or 'text'")
        return v_lower

    @field_validator("rate_limits")
    @classmethod
    def validate_rate_limits(cls, v: dict[str, int]) -> dict[str, int]:
        for platform, delay in v.items():
            if delay < 0:
                raise ValueError(f"rate limit for {platform} must be >= 0")
        return {k.lower(): d for k, d in v.items()}

    # ── Properties ──

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def has_webhook_executor(self) -> bool:
        return bool(self.executor_webhook_url)

    def rate_limit_for(self, platform: str) -> int:
        """Délai minimal (ms) configuré pour une plateforme."""
        return self.rate_limits.get(platform.lower(), self.default_min_delay_ms)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton des settings.

    Chargé une seule fois, mis en cache.
    Usage : from services.config import get_settings
    """
    return Settings()
