"""Step interpreter behaviour: ordering, branching, failures and loops."""

import pytest
from pydantic import BaseModel

from relayflow.actions import ActionResult
from relayflow.context import build_initial_context
from relayflow.models import Workflow


def _workflow(*steps, trigger_type="manual", trigger_config=None):
    return Workflow(
        organization_id="org-1",
        name="Interpreter test",
        trigger_type=trigger_type,
        trigger_config=trigger_config or {},
        steps=list(steps),
    )


def _notify(order, title="Hello", **extra):
    config = {"user_id": "u-1", "title": title, "message": "msg", **extra}
    return {"step_order": order, "step_type": "action", "action_type": "send_notification", "config": config}


async def _start(engine, workflow, trigger_data=None):
    await engine.repository.save_workflow(workflow)
    context = build_initial_context(workflow, trigger_data or {}, now=engine.clock())
    return await engine.scheduler.start_run(workflow, context, trigger_data or {})


async def _executed_orders(engine, run_id):
    return [step.step_order for step in await engine.repository.list_run_steps(run_id)]


@pytest.mark.asyncio
async def test_sequential_runs_are_deterministic(engine):
    workflow = _workflow(
        _notify(1),
        {
            "step_order": 2,
            "step_type": "condition",
            "config": {"field": "trigger.data.kind", "operator": "equals", "value": "a"},
            "else_goto_step": 4,
        },
        _notify(3),
        _notify(4),
    )
    first = await _start(engine, workflow, {"kind": "b"})
    second = await _start(engine, workflow, {"kind": "b"})

    assert first.status == second.status == "completed"
    assert await _executed_orders(engine, first.id) == [1, 2, 4]
    assert await _executed_orders(engine, second.id) == [1, 2, 4]


@pytest.mark.asyncio
async def test_condition_false_jumps_to_else_step(engine, backend):
    condition = {
        "step_order": 1,
        "step_type": "condition",
        "config": {"field": "trigger.data.flag", "operator": "equals", "value": True},
        "else_goto_step": 5,
    }
    workflow = _workflow(condition, _notify(2), _notify(3), _notify(4), _notify(5, title="Last"))

    run = await _start(engine, workflow, {"flag": False})
    assert run.status == "completed"
    assert await _executed_orders(engine, run.id) == [1, 5]
    assert [c["title"] for c in backend.calls_to("notify")] == ["Last"]
    assert run.context.steps[1] == {"condition_met": False, "next_step": 5}

    run = await _start(engine, workflow, {"flag": True})
    assert await _executed_orders(engine, run.id) == [1, 2, 3, 4, 5]
    assert run.context.steps[1]["condition_met"] is True


@pytest.mark.asyncio
async def test_failing_action_halts_run(engine, backend):
    workflow = _workflow(
        _notify(1),
        {
            "step_order": 2,
            "step_type": "action",
            "action_type": "create_task",
            "config": {"title": "Follow up", "project_field": "project.id"},
        },
        {
            "step_order": 3,
            "step_type": "action",
            "action_type": "send_email",
            "config": {"to": "a@example.com", "subject": "s", "body_html": "<p>b</p>"},
        },
    )
    run = await _start(engine, workflow)

    assert run.status == "failed"
    assert run.error_message == "No project ID found for task creation"
    steps = await engine.repository.list_run_steps(run.id)
    assert [(s.step_order, s.status) for s in steps] == [(1, "success"), (2, "failed")]
    assert backend.calls_to("send_email") == []


@pytest.mark.asyncio
async def test_invalid_action_config_fails_run(engine):
    workflow = _workflow(
        {
            "step_order": 1,
            "step_type": "action",
            "action_type": "send_email",
            "config": {"subject": "missing recipient", "body_html": "x"},
        }
    )
    run = await _start(engine, workflow)
    assert run.status == "failed"
    assert run.error_message.startswith("Invalid send_email config: to:")


@pytest.mark.asyncio
async def test_unresolved_template_is_reported_not_fatal(engine, backend):
    workflow = _workflow(_notify(1, message="Hi {{contact.first_name}}"))
    run = await _start(engine, workflow)

    assert run.status == "completed"
    assert backend.calls_to("notify")[0]["message"] == "Hi "
    assert run.context.steps[1]["warnings"] == [
        "Unresolved template variable: contact.first_name"
    ]


@pytest.mark.asyncio
async def test_step_outputs_feed_later_templates(engine, backend):
    workflow = _workflow(
        {
            "step_order": 1,
            "step_type": "action",
            "action_type": "create_task",
            "config": {"title": "Review", "project_id": "p-1"},
        },
        _notify(2, message="Created {{steps.1.task_id}}"),
    )
    run = await _start(engine, workflow)

    task_id = run.context.steps[1]["task_id"]
    assert backend.calls_to("notify")[0]["message"] == f"Created {task_id}"


@pytest.mark.asyncio
async def test_jump_to_missing_step_completes_run(engine, backend):
    condition = {
        "step_order": 1,
        "step_type": "condition",
        "config": {"field": "trigger.data.go", "operator": "is_not_empty"},
        "else_goto_step": 9,
    }
    run = await _start(engine, _workflow(condition, _notify(2)))
    assert run.status == "completed"
    assert backend.calls_to("notify") == []


@pytest.mark.asyncio
async def test_backward_jump_is_capped(engine):
    condition = {
        "step_order": 2,
        "step_type": "condition",
        "config": {"field": "trigger.data.stop", "operator": "is_not_empty"},
        "else_goto_step": 1,
    }
    run = await _start(engine, _workflow(_notify(1), condition))

    assert run.status == "failed"
    assert "Step execution limit exceeded" in run.error_message
    assert len(await engine.repository.list_run_steps(run.id)) == 200


@pytest.mark.asyncio
async def test_workflow_without_steps_completes(engine):
    run = await _start(engine, _workflow())
    assert run.status == "completed"
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_cancellation_stops_at_next_step(engine, backend):
    class Empty(BaseModel):
        pass

    @engine.registry.register("cancel_self", Empty)
    async def cancel_self(config, context, services):
        (run,) = await engine.repository.list_runs(status="running")
        await engine.cancel_run(run.id)
        return ActionResult({"cancelled": True})

    workflow = _workflow(
        {"step_order": 1, "step_type": "action", "action_type": "cancel_self"},
        _notify(2),
    )
    run = await _start(engine, workflow)

    assert run.status == "cancelled"
    assert await _executed_orders(engine, run.id) == [1]
    assert backend.calls_to("notify") == []


# ----------------------------------------------------------------------
# Loops


def _loop(order=1, field="trigger.data.items", **extra):
    return {
        "step_order": order,
        "step_type": "loop",
        "config": {"collection_field": field, "item_variable": "member", **extra},
    }


@pytest.mark.asyncio
async def test_loop_runs_body_once_per_item(engine, backend):
    workflow = _workflow(
        _loop(),
        {
            "step_order": 2,
            "step_type": "action",
            "action_type": "send_notification",
            "config": {
                "user_id": "{{member.id}}",
                "title": "Item {{loop.index}} of {{loop.collection_length}}",
                "message": "{{member.name}}",
            },
        },
    )
    items = [{"id": "u-1", "name": "Ada"}, {"id": "u-2", "name": "Grace"}]
    run = await _start(engine, workflow, {"items": items})

    assert run.status == "completed"
    calls = backend.calls_to("notify")
    assert [c["user_id"] for c in calls] == ["u-1", "u-2"]
    assert [c["title"] for c in calls] == ["Item 0 of 2", "Item 1 of 2"]
    output = run.context.steps[1]
    assert output["iterations"] == 2
    assert [r["index"] for r in output["results"]] == [0, 1]
    assert output["results"][1]["steps"]["2"]["user_id"] == "u-2"
    # the loop variable never leaks out of the body
    assert run.context.loop is None


@pytest.mark.asyncio
async def test_loop_over_limit_fails_before_any_iteration(engine, backend):
    workflow = _workflow(_loop(max_iterations=2), _notify(2))
    run = await _start(engine, workflow, {"items": [1, 2, 3]})

    assert run.status == "failed"
    assert "Loop limit exceeded" in run.error_message
    assert backend.calls_to("notify") == []


@pytest.mark.asyncio
async def test_loop_over_missing_collection_is_skipped(engine):
    run = await _start(engine, _workflow(_loop(), _notify(2)))

    assert run.status == "completed"
    assert run.context.steps[1]["skipped"] is True
    assert run.context.steps[1]["iterations"] == 0


@pytest.mark.asyncio
async def test_loop_over_empty_list_completes_without_body(engine, backend):
    run = await _start(engine, _workflow(_loop(), _notify(2)), {"items": []})

    assert run.status == "completed"
    assert run.context.steps[1]["iterations"] == 0
    assert backend.calls_to("notify") == []


@pytest.mark.asyncio
async def test_failure_inside_loop_body_fails_run(engine):
    workflow = _workflow(
        _loop(),
        {
            "step_order": 2,
            "step_type": "action",
            "action_type": "send_notification",
            "config": {"user_field": "member.owner", "title": "t", "message": "m"},
        },
    )
    run = await _start(engine, workflow, {"items": [{"owner": "u-1"}, {"owner": None}]})

    assert run.status == "failed"
    assert run.error_message == "No user ID found for notification"


@pytest.mark.asyncio
async def test_delay_inside_loop_body_fails_run(engine):
    workflow = _workflow(
        _loop(),
        {"step_order": 2, "step_type": "delay", "config": {"delay_type": "minutes", "delay_value": 5}},
    )
    run = await _start(engine, workflow, {"items": [1]})

    assert run.status == "failed"
    assert run.error_message == "Delay steps are not supported inside a loop body"
