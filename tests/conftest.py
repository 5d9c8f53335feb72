"""
Fixtures partagées : horloges contrôlées, décisions, capacités factices.
"""
from datetime import datetime, timedelta, timezone

import pytest

from models.action import ExecutionResult, ReasoningResult


class FakeClock:
    """Horloge manuelle, en datetime UTC et en epoch ms."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 1, 15, 9, 0, 0, tzinfo=timezone.utc)
        # Compteur entier : pas d'arrondi flottant sur les fenêtres
        self._epoch_ms = int(self.current.timestamp()) * 1000

    def now(self):
        return self.current

    def ms(self):
        return float(self._epoch_ms)

    def advance(self, ms):
        self.current = self.current + timedelta(milliseconds=ms)
        self._epoch_ms += ms


class FailingDisk:
    """
    Fait échouer les `failures` prochaines écritures du snapshot d'un store.

    Les écritures suivantes passent normalement.
    """

    def __init__(self, store, monkeypatch, failures=0):
        self.failures = failures
        self.writes = 0
        real_save = store._save

        def _save():
            if self.failures:
                self.failures -= 1
                raise OSError(28, "No space left on device")
            self.writes += 1
            real_save()

        monkeypatch.setattr(store, "_save", _save)


class ScriptedSlack:
    """
    Capacité Slack factice.

    `outcomes` est consommé dans l'ordre : ExecutionResult, dict ou Exception.
    Une fois vide, chaque appel réussit.
    """

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []

    async def send_notification(self, params):
        self.calls.append(("send_notification", params))
        return self._next()

    async def send_message(self, params):
        self.calls.append(("send_message", params))
        return self._next()

    async def reply_in_thread(self, params):
        self.calls.append(("reply_in_thread", params))
        return self._next()

    def _next(self):
        if not self.outcomes:
            return ExecutionResult(success=True, data={"ok": True})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingNotion:
    def __init__(self):
        self.calls = []

    async def create_task(self, params):
        self.calls.append(("create_task", params))
        return {"success": True, "data": {"page_id": f"page-{len(self.calls)}"}}

    async def update_task(self, params):
        self.calls.append(("update_task", params))
        return {"success": True, "data": {"page_id": params["page_id"]}}

    async def add_comment(self, params):
        self.calls.append(("add_comment", params))
        return {"success": True}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_result():
    """Factory de ReasoningResult."""
    def _factory(action="send_notification", target="slack", params=None, correlation_id="corr-1"):
        if params is None:
            params = {"message": "Deal Acme passé en négociation"}
        return ReasoningResult(
            correlation_id=correlation_id,
            action=action,
            target=target,
            params=params,
        )
    return _factory


@pytest.fixture
def slack():
    return ScriptedSlack()


@pytest.fixture
def notion():
    return RecordingNotion()
