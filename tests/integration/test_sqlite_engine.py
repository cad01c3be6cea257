from datetime import datetime, timedelta, timezone

import pytest

from relayflow.config import RelayflowConfig
from relayflow.contracts import WorkflowEvent
from relayflow.engine import WorkflowEngine
from relayflow.models import Workflow
from relayflow.persistence import SQLiteWorkflowRepository
from relayflow.services import ActionServices, InMemoryServices

START = datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)


def _onboarding() -> Workflow:
    return Workflow(
        organization_id="org-1",
        name="Contact onboarding",
        trigger_type="event",
        trigger_config={"event_types": ["contact_created"], "entity_type": "contact"},
        steps=[
            {
                "step_order": 1,
                "step_type": "action",
                "action_type": "add_tag",
                "config": {"entity_type": "contact", "entity_field": "contact.id", "tag_name": "new"},
            },
            {"step_order": 2, "step_type": "delay", "config": {"delay_type": "days", "delay_value": 2}},
            {
                "step_order": 3,
                "step_type": "action",
                "action_type": "send_email",
                "config": {
                    "to": "{{contact.email}}",
                    "subject": "Welcome, {{contact.first_name}}",
                    "body_html": "<p>Tagged {{steps.1.tag_name}}</p>",
                },
            },
        ],
    )


def _engine(db_path, backend, now):
    return WorkflowEngine(
        repository=SQLiteWorkflowRepository(db_path),
        services=ActionServices.from_backend(backend),
        config=RelayflowConfig(),
        clock=lambda: now,
    )


@pytest.mark.asyncio
async def test_delayed_run_survives_restart(tmp_path):
    db_path = tmp_path / "relayflow.db"
    backend = InMemoryServices()

    first = _engine(db_path, backend, START)
    await first.create_workflow(_onboarding())
    (run,) = await first.handle_event(
        WorkflowEvent(
            event_type="contact_created",
            entity_type="contact",
            entity_id="c-1",
            entity_data={"id": "c-1", "email": "ada@example.com", "first_name": "Ada"},
            organization_id="org-1",
        )
    )
    assert run.status == "paused"

    # a new process with a fresh engine sees the wake-up once it is due
    early = _engine(db_path, backend, START + timedelta(days=1))
    assert await early.tick() == {"started": 0, "resumed": 0, "errors": 0}

    later = _engine(db_path, backend, START + timedelta(days=2, minutes=1))
    assert await later.tick() == {"started": 0, "resumed": 1, "errors": 0}
    assert (await later.tick())["resumed"] == 0

    stored = await later.repository.get_run(run.id)
    assert stored.status == "completed"
    assert stored.context.steps[1]["tag_name"] == "new"
    (email,) = backend.calls_to("send_email")
    assert email["to"] == "ada@example.com"
    assert email["subject"] == "Welcome, Ada"
    assert email["body_html"] == "<p>Tagged new</p>"

    audit = await later.repository.list_run_steps(run.id)
    assert [(s.step_order, s.status) for s in audit] == [
        (1, "success"),
        (2, "success"),
        (3, "success"),
    ]
