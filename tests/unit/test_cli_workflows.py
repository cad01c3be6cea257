import asyncio
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import relayflow.persistence as persistence
from relayflow.cli import app
from relayflow.persistence import InMemoryWorkflowRepository

FIXTURE = Path(__file__).parent.parent / "fixtures" / "critical_task.yaml"

runner = CliRunner()


@pytest.fixture
def repo(monkeypatch, tmp_path) -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    monkeypatch.setattr(persistence, "_repository_instance", repo)
    monkeypatch.setenv("RELAYFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    return repo


def _import(repo) -> str:
    result = runner.invoke(app, ["workflow", "import", str(FIXTURE)])
    assert result.exit_code == 0, f"Import failed: {result.stdout}"
    (workflow,) = asyncio.run(repo.list_workflows())
    return workflow.id


def test_import_list_and_show(repo):
    workflow_id = _import(repo)

    result = runner.invoke(app, ["workflow", "list"])
    assert result.exit_code == 0
    assert f"{workflow_id}\tCritical task alert\tevent\tactive" in result.stdout

    result = runner.invoke(app, ["workflow", "show", workflow_id])
    assert result.exit_code == 0
    assert "- 1: condition" in result.stdout
    assert "- 2: send_notification" in result.stdout

    missing = runner.invoke(app, ["workflow", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "Workflow not found" in missing.stdout


def test_empty_listings(repo):
    assert "No workflows found" in runner.invoke(app, ["workflow", "list"]).stdout
    assert "No runs found" in runner.invoke(app, ["run", "list"]).stdout


def test_validate_reports_errors(repo, tmp_path):
    assert "Critical task alert: ok" in runner.invoke(app, ["workflow", "validate", str(FIXTURE)]).stdout

    broken = tmp_path / "broken.json"
    broken.write_text(
        json.dumps(
            {
                "name": "Broken",
                "organization_id": "org-1",
                "trigger_type": "manual",
                "trigger_config": {},
                "steps": [
                    {"step_order": 2, "step_type": "action", "action_type": "fax", "config": {}}
                ],
            }
        )
    )
    result = runner.invoke(app, ["workflow", "validate", str(broken)])
    assert result.exit_code == 1
    assert "Broken: invalid" in result.stdout
    assert "unknown action type 'fax'" in result.stdout
    assert asyncio.run(repo.list_workflows()) == []


def test_trigger_event_and_inspect_run(repo):
    _import(repo)
    data = json.dumps(
        {"id": "t-1", "title": "Outage", "priority": "critical", "assignee_id": "u-2", "company_id": "c-1"}
    )

    result = runner.invoke(
        app,
        ["trigger", "event", "task_created", "task", "t-1", "--organization", "org-1", "--data", data],
    )
    assert result.exit_code == 0, result.stdout
    assert "completed" in result.stdout
    (run,) = asyncio.run(repo.list_runs())

    result = runner.invoke(app, ["run", "show", run.id])
    assert result.exit_code == 0
    assert f"Run {run.id} of Critical task alert: completed" in result.stdout
    assert "- 2 action send_notification: success" in result.stdout

    # cancelling a finished run leaves it as it was
    result = runner.invoke(app, ["run", "cancel", run.id])
    assert result.exit_code == 0
    assert "completed" in result.stdout

    other = runner.invoke(
        app, ["trigger", "event", "task_created", "task", "t-2", "--organization", "org-9"]
    )
    assert "No workflows matched" in other.stdout


def test_deactivated_workflow_is_not_triggered(repo):
    workflow_id = _import(repo)
    result = runner.invoke(app, ["workflow", "deactivate", workflow_id])
    assert "is now inactive" in result.stdout

    result = runner.invoke(app, ["trigger", "manual", workflow_id, "--data", '{"a": 1}'])
    assert result.exit_code == 0
    assert "No run started" in result.stdout


def test_bad_json_option_exits(repo):
    result = runner.invoke(app, ["trigger", "manual", "wf-1", "--data", "[1, 2]"])
    assert result.exit_code == 1
    assert "--data must be a JSON object" in result.stdout


def test_scheduler_tick_reports_counts(repo):
    result = runner.invoke(app, ["scheduler", "tick"])
    assert result.exit_code == 0
    assert "Started 0 runs, resumed 0 (0 errors)" in result.stdout


def test_unknown_run_cannot_be_cancelled(repo):
    result = runner.invoke(app, ["run", "cancel", "missing"])
    assert result.exit_code == 1
