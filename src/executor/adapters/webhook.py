"""
Webhook Adapter — Capacité générique vers un service d'exécution externe.

Le pipeline ne construit AUCUN payload plateforme.
Il transmet les params à un service (n8n, worker maison...) qui,
lui, parle à Notion / Trello / Slack / Drive / Sheets.

    POST {base_url}/{platform}/{method}
    body  : {"params": {...}}
    reply : {"success": bool, "data": ..., "error": ...}
"""

from __future__ import annotations

import logging
import time
from functools import partial
from typing import Any, Optional

import httpx

from models.action import ExecutionResult
from services.utils import elapsed_ms, truncate


logger = logging.getLogger("actionflow.executor.adapters.webhook")


class WebhookExecutor:
    """
    Adapter HTTP pour une plateforme.

    Expose une méthode par action supportée, résolue dynamiquement :
        slack = WebhookExecutor("https://exec.internal", "slack",
                                methods=["send_notification"])
        await slack.send_notification({"message": "..."})

    Ne retente jamais : un 429 ou un 5xx devient un ExecutionResult en échec,
    la Retry Policy décide.
    """

    def __init__(
        self,
        base_url: str,
        platform: str,
        methods: list[str],
        api_key: str = "",
        timeout_seconds: float = 20.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.platform = platform
        self.methods = frozenset(methods)
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
        )

    def __getattr__(self, name: str) -> Any:
        # Appelé seulement si l'attribut n'existe pas déjà
        if name.startswith("_") or name not in self.__dict__.get("methods", ()):
            raise AttributeError(name)
        return partial(self.invoke, name)

    async def invoke(self, method: str, params: dict[str, Any]) -> ExecutionResult:
        started = time.perf_counter()
        endpoint = f"/{self.platform}/{method}"
        try:
            r = await self._client.post(endpoint, json={"params": params})
        except httpx.RequestError as e:
            logger.warning(f"[{self.platform}] {method} transport error: {e}")
            return ExecutionResult(
                success=False,
                error=f"{type(e).__name__}: {e}",
                execution_time=elapsed_ms(started),
                executor_used=f"webhook:{self.platform}.{method}",
            )

        if r.status_code == 429:
            retry_after = r.headers.get("Retry-After", "?")
            return ExecutionResult(
                success=False,
                error=f"Rate limit hit on {self.platform}. Retry after {retry_after}s.",
                execution_time=elapsed_ms(started),
                executor_used=f"webhook:{self.platform}.{method}",
            )

        if r.status_code >= 400:
            return ExecutionResult(
                success=False,
                error=f"HTTP {r.status_code}: {truncate(r.text, 200)}",
                execution_time=elapsed_ms(started),
                executor_used=f"webhook:{self.platform}.{method}",
            )

        try:
            body = r.json()
        except ValueError:
            body = {"success": True, "data": r.text}

        if not isinstance(body, dict) or "success" not in body:
            body = {"success": True, "data": body}

        return ExecutionResult(
            success=bool(body.get("success")),
            data=body.get("data"),
            error=body.get("error"),
            execution_time=body.get("execution_time", elapsed_ms(started)),
            executor_used=f"webhook:{self.platform}.{method}",
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"<WebhookExecutor platform={self.platform} methods={len(self.methods)}>"


def build_webhook_executors(
    base_url: str,
    mappings: list[Any],
    api_key: str = "",
    timeout_seconds: float = 20.0,
    client: Optional[httpx.AsyncClient] = None,
) -> dict[str, WebhookExecutor]:
    """Une capacité webhook par plateforme présente dans la table de mapping."""
    by_platform: dict[str, list[str]] = {}
    for mapping in mappings:
        by_platform.setdefault(mapping.target, []).append(mapping.executor_method)

    return {
        platform: WebhookExecutor(
            base_url=base_url,
            platform=platform,
            methods=methods,
            api_key=api_key,
            timeout_seconds=timeout_seconds,
            client=client,
        )
        for platform, methods in by_platform.items()
    }
