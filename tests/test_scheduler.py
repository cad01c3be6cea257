"""Run scheduler: delays, resumption and cancellation."""

from datetime import datetime, timedelta

import pytest

from relayflow.context import build_initial_context
from relayflow.errors import RunNotFoundError
from relayflow.models import Workflow


def _delayed_workflow(delay_type="minutes", delay_value=10):
    return Workflow(
        organization_id="org-1",
        name="Follow up later",
        trigger_type="manual",
        trigger_config={},
        steps=[
            {
                "step_order": 1,
                "step_type": "action",
                "action_type": "send_notification",
                "config": {"user_id": "u-1", "title": "Now", "message": "first"},
            },
            {
                "step_order": 2,
                "step_type": "delay",
                "config": {"delay_type": delay_type, "delay_value": delay_value},
            },
            {
                "step_order": 3,
                "step_type": "action",
                "action_type": "send_notification",
                "config": {
                    "user_id": "u-1",
                    "title": "Later",
                    "message": "{{steps.1.notification_id}}",
                },
            },
        ],
    )


async def _start(engine, workflow, trigger_data=None):
    await engine.repository.save_workflow(workflow)
    context = build_initial_context(workflow, trigger_data or {}, now=engine.clock())
    return await engine.scheduler.start_run(workflow, context)


@pytest.mark.asyncio
async def test_delay_pauses_and_resumes_after_wait(engine, backend, clock):
    started_at = clock()
    run = await _start(engine, _delayed_workflow())

    assert run.status == "paused"
    assert run.current_step == 3
    (scheduled,) = await engine.repository.list_scheduled_steps(run.id)
    assert scheduled.status == "pending"
    assert scheduled.step_order == 3
    assert scheduled.execute_at == started_at + timedelta(minutes=10)
    assert run.context.steps[2]["resume_step"] == 3

    clock.advance(minutes=9)
    assert await engine.scheduler.resume_due() == (0, 0)
    assert [c["title"] for c in backend.calls_to("notify")] == ["Now"]

    clock.advance(minutes=1)
    assert await engine.scheduler.resume_due() == (1, 0)

    run = await engine.repository.get_run(run.id)
    assert run.status == "completed"
    first_id = run.context.steps[1]["notification_id"]
    assert [c["title"] for c in backend.calls_to("notify")] == ["Now", "Later"]
    assert backend.calls_to("notify")[1]["message"] == first_id
    (scheduled,) = await engine.repository.list_scheduled_steps(run.id)
    assert scheduled.status == "executed"


@pytest.mark.asyncio
async def test_resumed_wake_up_is_not_replayed(engine, backend, clock):
    await _start(engine, _delayed_workflow(delay_type="hours", delay_value=1))
    clock.advance(hours=2)

    assert await engine.scheduler.resume_due() == (1, 0)
    assert await engine.scheduler.resume_due() == (0, 0)
    assert len(backend.calls_to("notify")) == 2


@pytest.mark.asyncio
async def test_tick_treats_naive_time_as_utc(engine, backend):
    run = await _start(engine, _delayed_workflow())
    assert run.status == "paused"

    assert await engine.tick(datetime(2024, 3, 4, 9, 5)) == {"started": 0, "resumed": 0, "errors": 0}
    assert await engine.tick(datetime(2024, 3, 4, 9, 30)) == {"started": 0, "resumed": 1, "errors": 0}
    assert (await engine.repository.get_run(run.id)).status == "completed"
    assert len(backend.calls_to("notify")) == 2


@pytest.mark.asyncio
async def test_cancel_completed_run_is_a_no_op(engine):
    workflow = _delayed_workflow()
    workflow.steps = workflow.steps[:1]
    run = await _start(engine, workflow)
    assert run.status == "completed"

    again = await engine.cancel_run(run.id)
    assert again.status == "completed"
    assert again.completed_at == run.completed_at


@pytest.mark.asyncio
async def test_cancel_paused_run_drops_wake_up(engine, backend, clock):
    run = await _start(engine, _delayed_workflow())

    cancelled = await engine.cancel_run(run.id)
    assert cancelled.status == "cancelled"
    assert cancelled.completed_at is not None
    (scheduled,) = await engine.repository.list_scheduled_steps(run.id)
    assert scheduled.status == "cancelled"

    clock.advance(days=1)
    assert await engine.scheduler.resume_due() == (0, 0)
    assert len(backend.calls_to("notify")) == 1
    assert (await engine.cancel_run(run.id)).status == "cancelled"


@pytest.mark.asyncio
async def test_cancel_unknown_run_raises(engine):
    with pytest.raises(RunNotFoundError):
        await engine.cancel_run("missing")


@pytest.mark.asyncio
async def test_deleted_workflow_cancels_paused_run(engine, backend, clock):
    workflow = _delayed_workflow()
    run = await _start(engine, workflow)
    assert await engine.repository.delete_workflow(workflow.id)

    clock.advance(minutes=15)
    assert await engine.scheduler.resume_due() == (0, 0)

    run = await engine.repository.get_run(run.id)
    assert run.workflow_id is None
    assert run.status == "cancelled"
    (scheduled,) = await engine.repository.list_scheduled_steps(run.id)
    assert scheduled.status == "cancelled"
    assert len(backend.calls_to("notify")) == 1


@pytest.mark.asyncio
async def test_in_flight_run_ignores_definition_edits(engine, backend, clock):
    workflow = _delayed_workflow()
    run = await _start(engine, workflow)

    workflow.steps = workflow.steps[:2]
    await engine.repository.save_workflow(workflow)
    clock.advance(minutes=10)
    await engine.scheduler.resume_due()

    assert (await engine.repository.get_run(run.id)).status == "completed"
    assert [c["title"] for c in backend.calls_to("notify")] == ["Now", "Later"]


@pytest.mark.asyncio
async def test_run_forever_respects_lifespan(engine):
    ticks = []

    async def tick():
        ticks.append(1)

    await engine.scheduler.run_forever(poll_interval=0.01, lifespan=0.05, tick=tick)
    assert ticks
