"""
Tests des Settings et du logging.
"""
import json
import logging

import pytest
from pydantic import ValidationError

from services.config import Settings
from services.log_setup import ROOT_LOGGER, configure_logging


@pytest.fixture(autouse=True)
def restore_logger():
    """configure_logging coupe la propagation : on la rétablit pour caplog."""
    yield
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers = []
    root.propagate = True
    root.setLevel(logging.NOTSET)


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.max_attempts == 3
    assert settings.max_concurrent_actions == 5
    assert settings.default_priority == 3
    assert settings.rate_limit_for("slack") == 1000
    assert settings.rate_limit_for("notion") == 330
    assert settings.rate_limit_for("unknown") == 0
    assert not settings.has_webhook_executor
    assert settings.idempotency_ttl_seconds == 86_400
    assert settings.circuit_failure_threshold == 5
    assert settings.circuit_reset_timeout_ms == 30_000
    assert settings.circuit_success_threshold == 2


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("MAX_ATTEMPTS", "5")
    monkeypatch.setenv("EXECUTOR_WEBHOOK_URL", "https://exec.internal")
    monkeypatch.setenv("RATE_LIMITS", '{"Slack": 2000}')

    settings = Settings(_env_file=None)

    assert settings.max_attempts == 5
    assert settings.has_webhook_executor
    assert settings.rate_limit_for("slack") == 2000


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="LOUD")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, max_attempts=0)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, rate_limits={"slack": -1})
    with pytest.raises(ValidationError):
        Settings(_env_file=None, circuit_failure_threshold=0)


def test_json_logging_carries_context(capsys):
    root = configure_logging(Settings(_env_file=None, log_format="json", log_level="DEBUG"))

    logging.getLogger("actionflow.test").info(
        "Action enqueued", extra={"action_id": "a-1", "correlation_id": "corr-1"}
    )

    line = capsys.readouterr().out.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["message"] == "Action enqueued"
    assert record["action_id"] == "a-1"
    assert record["name"] == "actionflow.test"
    assert root.propagate is False


def test_text_logging(capsys):
    configure_logging(Settings(_env_file=None, log_format="text"))

    logging.getLogger("actionflow.test").warning("Rate limit hit for slack")

    assert "Rate limit hit for slack" in capsys.readouterr().out
