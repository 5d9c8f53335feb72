"""
Tests du WebhookExecutor (transport httpx simulé).
"""
import json

import httpx
import pytest

from models.action import QueuedAction
from executor.adapters.webhook import WebhookExecutor, build_webhook_executors
from executor.mappings import ACTION_MAPPINGS
from executor.router import ActionRouter


def make_client(handler):
    return httpx.AsyncClient(
        base_url="https://exec.test",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_posts_params_to_platform_endpoint():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "data": {"ts": "123.456"}})

    executor = WebhookExecutor(
        "https://exec.test", "slack", methods=["send_notification"], client=make_client(handler)
    )

    result = await executor.send_notification({"message": "hello"})

    assert seen["path"] == "/slack/send_notification"
    assert seen["body"] == {"params": {"message": "hello"}}
    assert result.success
    assert result.data == {"ts": "123.456"}
    assert result.executor_used == "webhook:slack.send_notification"
    await executor.aclose()


@pytest.mark.asyncio
async def test_unknown_method_is_not_exposed():
    executor = WebhookExecutor(
        "https://exec.test", "slack", methods=["send_notification"],
        client=make_client(lambda r: httpx.Response(200)),
    )

    assert getattr(executor, "move_card", None) is None
    await executor.aclose()


@pytest.mark.asyncio
async def test_429_becomes_failed_result():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "2"})

    executor = WebhookExecutor(
        "https://exec.test", "slack", methods=["send_notification"], client=make_client(handler)
    )

    result = await executor.send_notification({"message": "hello"})

    assert not result.success
    assert "Retry after 2s" in result.error
    await executor.aclose()


@pytest.mark.asyncio
async def test_server_error_becomes_failed_result():
    executor = WebhookExecutor(
        "https://exec.test", "notion", methods=["create_task"],
        client=make_client(lambda r: httpx.Response(503, text="unavailable")),
    )

    result = await executor.create_task({"title": "x"})

    assert not result.success
    assert result.error.startswith("HTTP 503")
    await executor.aclose()


@pytest.mark.asyncio
async def test_transport_error_becomes_failed_result():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    executor = WebhookExecutor(
        "https://exec.test", "notion", methods=["create_task"], client=make_client(handler)
    )

    result = await executor.create_task({"title": "x"})

    assert not result.success
    assert "ConnectError" in result.error
    await executor.aclose()


@pytest.mark.asyncio
async def test_router_dispatches_through_webhooks(make_result):
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={"success": True})

    client = make_client(handler)
    executors = build_webhook_executors("https://exec.test", ACTION_MAPPINGS, client=client)
    router = ActionRouter(executors=executors)

    action = QueuedAction(reasoning_result=make_result(
        action="create_task", target="trello", params={"title": "Relancer Acme"},
    ))
    result = await router.dispatch(action)

    assert result.success
    assert calls == ["/trello/create_card"]
    assert set(executors) == {"notion", "trello", "slack", "drive", "sheets"}
    await client.aclose()
