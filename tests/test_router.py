"""
Tests de l'ActionRouter : résolution, validation, dispatch.
"""
import pytest

from models.action import ActionMapping, ExecutionResult, FieldRule, QueuedAction
from executor.errors import ActionValidationError, UnmappedActionError
from executor.mappings import ACTION_MAPPINGS, build_mapping_index
from executor.router import ActionRouter

from conftest import ScriptedSlack


def queued(make_result, **kwargs):
    return QueuedAction(reasoning_result=make_result(**kwargs))


def test_mapping_table_is_unique():
    index = build_mapping_index(ACTION_MAPPINGS)
    assert len(index) == len(ACTION_MAPPINGS)
    assert ("create_task", "trello") in index
    assert index[("create_task", "trello")].executor_method == "create_card"


def test_duplicate_mapping_rejected():
    dup = ActionMapping(action="a", target="t", executor_method="m")
    with pytest.raises(ValueError):
        build_mapping_index([dup, dup])


@pytest.mark.asyncio
async def test_dispatch_calls_mapped_method(make_result, slack):
    router = ActionRouter(executors={"slack": slack})

    result = await router.dispatch(queued(make_result))

    assert result.success
    assert slack.calls == [("send_notification", {"message": "Deal Acme passé en négociation"})]
    assert result.executor_used == "slack.send_notification"
    assert result.execution_time is not None


@pytest.mark.asyncio
async def test_dispatch_coerces_dict_result(make_result, notion):
    router = ActionRouter(executors={"notion": notion})
    action = queued(make_result, action="create_task", target="notion", params={"title": "Relancer Acme"})

    result = await router.dispatch(action)

    assert isinstance(result, ExecutionResult)
    assert result.data == {"page_id": "page-1"}


@pytest.mark.asyncio
async def test_dispatch_keeps_executor_timing(make_result):
    slack = ScriptedSlack([
        ExecutionResult(success=True, execution_time=42.0, executor_used="slack-sdk"),
    ])
    router = ActionRouter(executors={"slack": slack})

    result = await router.dispatch(queued(make_result))

    assert result.execution_time == 42.0
    assert result.executor_used == "slack-sdk"


@pytest.mark.asyncio
async def test_failed_result_is_returned_not_raised(make_result):
    slack = ScriptedSlack([ExecutionResult(success=False, error="channel_not_found")])
    router = ActionRouter(executors={"slack": slack})

    result = await router.dispatch(queued(make_result))

    assert not result.success
    assert result.error == "channel_not_found"


@pytest.mark.asyncio
async def test_executor_exception_propagates(make_result):
    slack = ScriptedSlack([RuntimeError("boom")])
    router = ActionRouter(executors={"slack": slack})

    with pytest.raises(RuntimeError):
        await router.dispatch(queued(make_result))


@pytest.mark.asyncio
async def test_unmapped_action(make_result, slack):
    router = ActionRouter(executors={"slack": slack})

    with pytest.raises(UnmappedActionError) as exc:
        await router.dispatch(queued(make_result, action="launch_rocket"))

    assert not exc.value.recoverable
    assert slack.calls == []


@pytest.mark.asyncio
async def test_missing_capability_is_unmapped(make_result):
    router = ActionRouter(executors={})

    with pytest.raises(UnmappedActionError):
        await router.dispatch(queued(make_result))


@pytest.mark.asyncio
async def test_capability_without_method_is_unmapped(make_result):
    class Partial:
        async def send_message(self, params):
            return {"success": True}

    router = ActionRouter(executors={"slack": Partial()})

    with pytest.raises(UnmappedActionError):
        await router.dispatch(queued(make_result))


@pytest.mark.asyncio
async def test_validation_never_calls_executor(make_result, slack):
    router = ActionRouter(executors={"slack": slack})
    action = queued(make_result, action="send_message", params={"message": "hi"})

    with pytest.raises(ActionValidationError) as exc:
        await router.dispatch(action)

    assert [e.field for e in exc.value.errors] == ["channel"]
    assert slack.calls == []


@pytest.mark.parametrize("params,field,reason", [
    ({}, "items", "missing"),
    ({"card_id": "c1", "items": "a,b"}, "items", "must be a list"),
    ({"card_id": "c1", "items": []}, "items", "must not be empty"),
    ({"card_id": "  ", "items": ["a"]}, "card_id", "must not be empty"),
])
def test_validation_rules(params, field, reason):
    router = ActionRouter()
    mapping = router.resolve("add_checklist", "trello")

    with pytest.raises(ActionValidationError) as exc:
        router.validate(mapping, params)

    assert any(e.field == field and e.reason == reason for e in exc.value.errors)


def test_validation_number_rule():
    router = ActionRouter(mappings=[
        ActionMapping(
            action="set_budget",
            target="sheets",
            executor_method="set_budget",
            required_fields=[FieldRule(name="amount", kind="number")],
        )
    ])
    mapping = router.resolve("set_budget", "sheets")

    router.validate(mapping, {"amount": 12.5})
    with pytest.raises(ActionValidationError):
        router.validate(mapping, {"amount": True})
    with pytest.raises(ActionValidationError):
        router.validate(mapping, {"amount": "12"})


@pytest.mark.asyncio
async def test_dry_run_validates_without_calling(make_result, slack):
    router = ActionRouter(executors={"slack": slack}, dry_run=True)

    result = await router.dispatch(queued(make_result))

    assert result.success
    assert result.data["dry_run"] is True
    assert result.data["would_execute"] == "send_notification"
    assert slack.calls == []


@pytest.mark.asyncio
async def test_dry_run_still_validates(make_result):
    router = ActionRouter(dry_run=True)

    with pytest.raises(ActionValidationError):
        await router.dispatch(queued(make_result, params={}))


def test_register_executor_and_listing(slack):
    router = ActionRouter()
    router.register_executor("Slack", slack)

    assert "send_notification:slack" in router.supported_actions
    assert router.targets == ["drive", "notion", "sheets", "slack", "trello"]


def test_partial_capability_is_flagged(caplog, slack):
    class NotionPages:
        async def create_task(self, params):
            return {"success": True}

    with caplog.at_level("WARNING", logger="actionflow.executor.router"):
        router = ActionRouter(executors={"notion": NotionPages(), "slack": slack})

    warnings = [r.getMessage() for r in caplog.records]
    assert len(warnings) == 1
    assert "NotionCapability" in warnings[0]
    assert "add_comment" in warnings[0]
    assert router.resolve("create_task", "notion").executor_method == "create_task"
