"""Built-in action executors and the registry."""

import json

import httpx
import pytest
from pydantic import BaseModel
from pydantic_ai.models.test import TestModel

from relayflow.actions import ActionResult, default_registry
from relayflow.context import build_initial_context
from relayflow.errors import ActionConfigError, ActionError, UnknownActionError
from relayflow.models import ACTION_TYPES, Workflow
from relayflow.services import ActionServices, InMemoryServices
from relayflow.services.ai import PydanticAIService


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def context():
    workflow = Workflow(
        organization_id="org-1", name="Actions", trigger_type="manual", trigger_config={}
    )
    return build_initial_context(
        workflow,
        {
            "user_id": "u-1",
            "task": {"id": "t-1", "project_id": "p-1", "assignee_id": "u-2"},
            "contact": {"id": "c-1", "bio": "Builds compilers for fun"},
            "ids": ["t-1", "t-2"],
        },
    )


# ----------------------------------------------------------------------
# Registry


def test_every_action_type_has_an_executor(registry):
    assert registry.missing() == []
    assert len(registry.action_types()) == len(ACTION_TYPES)
    assert registry.describe("send_slack") == "Send Slack Message"


@pytest.mark.asyncio
async def test_unknown_action_type(registry, context, services):
    with pytest.raises(UnknownActionError):
        await registry.execute("teleport", {}, context, services)


@pytest.mark.asyncio
async def test_config_errors_name_the_field(registry, context, services):
    with pytest.raises(ActionConfigError) as excinfo:
        await registry.execute("create_task", {"project_id": "p-1"}, context, services)
    assert str(excinfo.value) == "Invalid create_task config: title: Field required"
    assert excinfo.value.action_type == "create_task"


@pytest.mark.asyncio
async def test_registering_replaces_builtin(registry, context, services):
    class Echo(BaseModel):
        to: str

    @registry.register("send_email", Echo)
    async def fake_email(config, context, services):
        return ActionResult({"echo": config.to})

    result = await registry.execute("send_email", {"to": "x@example.com"}, context, services)
    assert result.output == {"echo": "x@example.com"}
    # the shared built-in registry is untouched
    assert default_registry().get("send_email").executor is not fake_email


@pytest.mark.asyncio
async def test_missing_service_is_an_action_error(registry, context):
    with pytest.raises(ActionError, match="No email service configured"):
        await registry.execute(
            "send_email",
            {"to": "a@example.com", "subject": "s", "body_html": "b"},
            context,
            ActionServices(),
        )


# ----------------------------------------------------------------------
# Communication, tasks and contacts


@pytest.mark.asyncio
async def test_send_notification_resolves_user_field(registry, context, services, backend):
    result = await registry.execute(
        "send_notification",
        {"user_field": "task.assignee_id", "title": "T", "message": "M"},
        context,
        services,
    )
    assert result.output["user_id"] == "u-2"
    assert backend.calls_to("notify")[0]["type"] == "workflow"


@pytest.mark.asyncio
async def test_send_slack_can_mention_channel(registry, context, services, backend):
    result = await registry.execute(
        "send_slack",
        {"channel": "#ops", "message": "Deploy done", "notify_channel": True, "use_blocks": True},
        context,
        services,
    )
    (call,) = backend.calls_to("post_message")
    assert call["text"] == "<!channel> Deploy done"
    assert call["blocks"][0]["text"]["type"] == "mrkdwn"
    assert result.output["success"] is True


@pytest.mark.asyncio
async def test_create_task_uses_context_project(registry, context, services, backend):
    result = await registry.execute(
        "create_task",
        {
            "title": "Follow up",
            "project_field": "task.project_id",
            "assignee_field": "task.assignee_id",
            "priority": "high",
            "due_date_offset_days": 3,
        },
        context,
        services,
    )
    task = backend.tasks[result.output["task_id"]]
    assert task["project_id"] == "p-1"
    assert task["assignee_id"] == "u-2"
    assert task["priority"] == "high"
    assert task["organization_id"] == "org-1"
    assert len(task["due_date"]) == 10


@pytest.mark.asyncio
async def test_update_task_without_updates_is_skipped(registry, context, services, backend):
    result = await registry.execute(
        "update_task", {"task_field": "task.id", "updates": {}}, context, services
    )
    assert result.output["skipped"] is True
    assert backend.calls_to("update_task") == []


@pytest.mark.asyncio
async def test_bulk_reassign_tasks(registry, context, services, backend):
    result = await registry.execute(
        "bulk_update_tasks",
        {"task_ids_field": "trigger.data.ids", "operation": "reassign", "value": "u-5"},
        context,
        services,
    )
    assert result.output["updated_count"] == 2
    assert backend.tasks["t-2"]["assignee_id"] == "u-5"

    with pytest.raises(ActionError, match="No task IDs found at task.id"):
        await registry.execute(
            "bulk_update_tasks",
            {"task_ids_field": "task.id", "operation": "status", "value": "done"},
            context,
            services,
        )


@pytest.mark.asyncio
async def test_adding_existing_tag_is_skipped(registry, context, services):
    config = {"entity_type": "contact", "entity_field": "contact.id", "tag_name": "vip"}
    first = await registry.execute("add_tag", config, context, services)
    second = await registry.execute("add_tag", config, context, services)

    assert "skipped" not in first.output
    assert second.output["reason"] == "Tag already exists"

    removed = await registry.execute("remove_tag", config, context, services)
    assert removed.output["success"] is True


@pytest.mark.asyncio
async def test_project_from_unknown_template_fails(registry, context, services, backend):
    with pytest.raises(ActionError, match="Template not found: tpl-1"):
        await registry.execute(
            "create_project_from_template", {"name": "P", "template_id": "tpl-1"}, context, services
        )

    backend.project_templates["tpl-1"] = {"id": "tpl-1", "name": "Onboarding"}
    result = await registry.execute(
        "create_project", {"name": "P", "template_id": "tpl-1"}, context, services
    )
    assert result.output["template_name"] == "Onboarding"


# ----------------------------------------------------------------------
# AI


@pytest.mark.asyncio
async def test_ai_categorize_matches_category_case_insensitively(registry, context):
    backend = InMemoryServices(ai_responder=lambda prompt: " ENGINEER ")
    result = await registry.execute(
        "ai_categorize",
        {"field_to_analyze": "contact.bio", "categories": ["sales", "engineer"]},
        context,
        ActionServices.from_backend(backend),
    )
    assert result.output["category"] == "engineer"
    assert "Builds compilers" in backend.calls_to("generate")[0]["prompt"]


@pytest.mark.asyncio
async def test_ai_summarize_skips_missing_text(registry, context, services):
    result = await registry.execute(
        "ai_summarize", {"field_to_summarize": "contact.notes"}, context, services
    )
    assert result.output["skipped"] is True
    assert result.output["summary"] is None


@pytest.mark.asyncio
async def test_ai_generate_with_pydantic_ai_agent(registry, context):
    services = ActionServices(ai=PydanticAIService(TestModel(custom_output_text="Welcome aboard")))
    result = await registry.execute(
        "ai_generate",
        {"prompt_template": "Write a welcome note", "output_field": "note"},
        context,
        services,
    )
    assert result.output["note"] == "Welcome aboard"
    assert result.output["prompt_used"] == "Write a welcome note"


# ----------------------------------------------------------------------
# Webhook calls


def _webhook_services(handler, max_retries=0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    services = ActionServices(http_client=client)
    services.webhook.max_retries = max_retries
    return services


@pytest.mark.asyncio
async def test_webhook_call_posts_json_body(registry, context):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"ok": True})

    result = await registry.execute(
        "webhook_call",
        {
            "url": "https://hooks.example.com/in",
            "headers": {"X-Token": "abc"},
            "body_template": '{"task": "t-1"}',
        },
        context,
        _webhook_services(handler),
    )

    (request,) = seen
    assert request.method == "POST"
    assert request.headers["X-Token"] == "abc"
    assert json.loads(request.content) == {"task": "t-1"}
    assert result.output["response"]["status"] == 201
    assert result.output["response"]["body"] == {"ok": True}


@pytest.mark.asyncio
async def test_webhook_call_retries_server_errors(registry, context, monkeypatch):
    delays = []

    async def no_wait(attempt, base=1.5, jitter=0.5):
        delays.append(attempt)
        return 0.0

    monkeypatch.setattr("relayflow.actions.webhook.schedule_retry", no_wait)
    responses = iter([httpx.Response(503), httpx.Response(200, text="fine")])

    result = await registry.execute(
        "webhook_call",
        {"url": "https://hooks.example.com/in", "method": "GET", "output_field": "reply"},
        context,
        _webhook_services(lambda request: next(responses), max_retries=2),
    )
    assert delays == [0]
    assert result.output["reply"]["body"] == "fine"


@pytest.mark.asyncio
async def test_webhook_call_client_error_fails(registry, context):
    services = _webhook_services(lambda request: httpx.Response(404, text="nope"))
    with pytest.raises(ActionError, match="Webhook returned HTTP 404: nope"):
        await registry.execute(
            "webhook_call", {"url": "https://hooks.example.com/in"}, context, services
        )


@pytest.mark.asyncio
async def test_webhook_call_timeout_fails(registry, context):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ActionError, match="timed out after 2000ms"):
        await registry.execute(
            "webhook_call",
            {"url": "https://hooks.example.com/in", "timeout_ms": 2000},
            context,
            _webhook_services(handler),
        )
