"""
Executor Adapters — Capacités concrètes.

Les appels plateforme vivent HORS du pipeline :
  - webhook.py → transmet chaque dispatch à un service d'exécution externe
"""

from executor.adapters.webhook import WebhookExecutor, build_webhook_executors

__all__ = [
    "WebhookExecutor",
    "build_webhook_executors",
]
