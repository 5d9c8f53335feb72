"""
Idempotence — Une décision, une exécution.

Le moteur de raisonnement peut renvoyer deux fois la même décision
(signal rejoué, retry amont). La clé identifie la décision, pas l'action :

    signal_id | action | target | sha256(params)

L'ActionStore refuse un doublon tant que l'original est pending,
executing, ou completed depuis moins que le TTL.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from models.action import ReasoningResult


NO_SIGNAL = "no-signal"


def hash_params(params: dict[str, Any]) -> str:
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def idempotency_key(reasoning_result: ReasoningResult) -> str:
    signal_id = None
    if reasoning_result.metadata is not None:
        signal_id = reasoning_result.metadata.signal_id
    return ":".join([
        signal_id or NO_SIGNAL,
        reasoning_result.action,
        reasoning_result.target.lower(),
        hash_params(reasoning_result.params),
    ])
