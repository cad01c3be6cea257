from datetime import datetime, timedelta, timezone

import pytest

from relayflow.context import build_initial_context
from relayflow.models import Workflow, WorkflowTemplate
from relayflow.persistence import (
    ACTIVE_RUN_STATUSES,
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowScheduledStep,
)

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "sqlite"])
def repository(request, tmp_path):
    if request.param == "memory":
        return InMemoryWorkflowRepository()
    return SQLiteWorkflowRepository(tmp_path / "relayflow.db")


def _workflow(**kwargs):
    data = dict(
        organization_id="org-1",
        name="Persisted",
        trigger_type="event",
        trigger_config={"event_types": ["task_created"], "filters": {"priority": "high"}},
        steps=[
            {
                "step_order": 1,
                "step_type": "action",
                "action_type": "send_notification",
                "config": {"user_id": "u-1", "title": "t", "message": "m"},
            },
            {"step_order": 2, "step_type": "delay", "config": {"delay_type": "days", "delay_value": 1}},
        ],
    )
    data.update(kwargs)
    return Workflow(**data)


def _run(workflow, **kwargs):
    context = build_initial_context(workflow, {"note": "x"}, now=T0)
    data = dict(
        workflow_id=workflow.id,
        workflow_name=workflow.name,
        organization_id=workflow.organization_id,
        trigger_type=workflow.trigger_type,
        context=context,
        current_step=1,
        started_at=T0,
        steps=workflow.steps,
    )
    data.update(kwargs)
    return WorkflowRun(**data)


@pytest.mark.asyncio
async def test_workflow_crud(repository):
    workflow = _workflow()
    await repository.save_workflow(workflow)
    await repository.save_workflow(_workflow(organization_id="org-2"))
    await repository.save_workflow(_workflow(is_active=False))

    stored = await repository.get_workflow(workflow.id)
    assert stored.name == "Persisted"
    assert stored.trigger_config.filters == {"priority": "high"}
    assert [s.step_type for s in stored.steps] == ["action", "delay"]

    assert len(await repository.list_workflows(organization_id="org-1")) == 2
    assert len(await repository.list_workflows(organization_id="org-1", active_only=True)) == 1
    assert await repository.list_workflows(trigger_type="schedule") == []

    assert await repository.delete_workflow(workflow.id) is True
    assert await repository.delete_workflow(workflow.id) is False
    assert await repository.get_workflow(workflow.id) is None


@pytest.mark.asyncio
async def test_run_status_is_compare_and_set(repository):
    workflow = _workflow()
    run = _run(workflow)
    await repository.create_run(run)

    assert await repository.set_run_status(run.id, "paused", expected={"running"}, current_step=3)
    # a second worker expecting ``running`` loses
    assert not await repository.set_run_status(run.id, "completed", expected={"running"})
    assert not await repository.update_run_progress(run.id, 4, run.context)

    assert await repository.set_run_status(run.id, "cancelled", expected=ACTIVE_RUN_STATUSES)
    stored = await repository.get_run(run.id)
    assert stored.status == "cancelled"
    assert stored.current_step == 3
    assert stored.completed_at is not None
    assert stored.context.trigger.data == {"note": "x"}
    assert [s.step_order for s in stored.steps] == [1, 2]


@pytest.mark.asyncio
async def test_progress_updates_context(repository):
    workflow = _workflow()
    run = _run(workflow)
    await repository.create_run(run)

    context = run.context.with_step_output(1, {"notification_id": "n-1"})
    assert await repository.update_run_progress(run.id, 2, context)

    stored = await repository.get_run(run.id)
    assert stored.current_step == 2
    assert stored.context.steps[1] == {"notification_id": "n-1"}


@pytest.mark.asyncio
async def test_deleting_workflow_keeps_runs(repository):
    workflow = _workflow()
    await repository.save_workflow(workflow)
    run = _run(workflow)
    await repository.create_run(run)

    await repository.delete_workflow(workflow.id)

    stored = await repository.get_run(run.id)
    assert stored.workflow_id is None
    assert stored.workflow_name == "Persisted"
    assert [r.id for r in await repository.list_runs(organization_id="org-1")] == [run.id]


@pytest.mark.asyncio
async def test_run_steps_are_immutable_once_finished(repository):
    workflow = _workflow()
    run = _run(workflow)
    await repository.create_run(run)

    first = WorkflowRunStep(run_id=run.id, step_order=1, step_type="action", action_type="send_notification")
    second = WorkflowRunStep(run_id=run.id, step_order=2, step_type="delay")
    await repository.add_run_step(first)
    await repository.add_run_step(second)

    await repository.finish_run_step(first.id, "success", output={"ok": True})
    await repository.finish_run_step(first.id, "failed", error_message="late")

    steps = await repository.list_run_steps(run.id)
    assert [s.step_order for s in steps] == [1, 2]
    assert steps[0].status == "success"
    assert steps[0].output_data == {"ok": True}
    assert steps[0].error_message is None
    assert steps[1].status == "running"


@pytest.mark.asyncio
async def test_scheduled_steps_are_claimed_once(repository):
    workflow = _workflow()
    run = _run(workflow)
    await repository.create_run(run)

    early = WorkflowScheduledStep(
        run_id=run.id, step_order=3, execute_at=T0 + timedelta(minutes=5), context=run.context
    )
    late = WorkflowScheduledStep(
        run_id=run.id, step_order=3, execute_at=T0 + timedelta(hours=5), context=run.context
    )
    await repository.create_scheduled_step(late)
    await repository.create_scheduled_step(early)

    due = await repository.list_due_scheduled_steps(T0 + timedelta(hours=1))
    assert [s.id for s in due] == [early.id]
    assert due[0].execute_at == early.execute_at

    assert await repository.claim_scheduled_step(early.id) is True
    assert await repository.claim_scheduled_step(early.id) is False
    assert await repository.list_due_scheduled_steps(T0 + timedelta(hours=1)) == []

    assert await repository.cancel_scheduled_steps(run.id) == 1
    statuses = {s.id: s.status for s in await repository.list_scheduled_steps(run.id)}
    assert statuses == {early.id: "executed", late.id: "cancelled"}
    assert await repository.list_due_scheduled_steps(T0 + timedelta(days=1)) == []


@pytest.mark.asyncio
async def test_schedule_fires_are_recorded_once(repository):
    occurrence = T0.isoformat()
    assert await repository.record_schedule_fire("wf-1", occurrence) is True
    assert await repository.record_schedule_fire("wf-1", occurrence) is False
    assert await repository.record_schedule_fire("wf-2", occurrence) is True


@pytest.mark.asyncio
async def test_in_memory_fires_are_pruned_past_retention():
    repository = InMemoryWorkflowRepository()
    for hours in range(72):
        assert await repository.record_schedule_fire("wf-1", (T0 + timedelta(hours=hours)).isoformat())

    kept = repository._fires["wf-1"]
    assert len(kept) == 25
    assert min(kept.values()) == T0 + timedelta(hours=47)
    # the latest occurrence is still deduplicated
    assert await repository.record_schedule_fire("wf-1", (T0 + timedelta(hours=71)).isoformat()) is False


@pytest.mark.asyncio
async def test_templates_visible_to_owner_and_globally(repository):
    shared = WorkflowTemplate(
        name="Shared", trigger_type="manual", trigger_config={}, is_global=True
    )
    private = WorkflowTemplate(
        name="Private", trigger_type="manual", trigger_config={}, organization_id="org-1"
    )
    await repository.save_template(shared)
    await repository.save_template(private)

    assert {t.name for t in await repository.list_templates("org-1")} == {"Shared", "Private"}
    assert {t.name for t in await repository.list_templates("org-2")} == {"Shared"}
    assert (await repository.get_template(private.id)).organization_id == "org-1"
