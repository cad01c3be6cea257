"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from ..context import WorkflowContext
from ..models import Workflow, WorkflowTemplate, utcnow
from .models import (
    TERMINAL_RUN_STATUSES,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowScheduledStep,
)
from .repository import WorkflowRepository


def _ts(value: Optional[datetime]) -> Optional[str]:
    # fixed-width UTC timestamps so that text comparison orders correctly
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _json(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, default=str)


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                is_active INTEGER NOT NULL,
                created_at TEXT NOT NULL,
                data TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT,
                workflow_name TEXT NOT NULL,
                organization_id TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                trigger_data TEXT,
                status TEXT NOT NULL,
                current_step INTEGER NOT NULL,
                context TEXT NOT NULL,
                error_message TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                steps TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_run_steps (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                run_id TEXT NOT NULL,
                step_id TEXT,
                step_order INTEGER NOT NULL,
                step_type TEXT NOT NULL,
                action_type TEXT,
                status TEXT NOT NULL,
                input_data TEXT,
                output_data TEXT,
                error_message TEXT,
                started_at TEXT,
                completed_at TEXT
            );
            CREATE TABLE IF NOT EXISTS workflow_scheduled_steps (
                id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL,
                step_order INTEGER NOT NULL,
                execute_at TEXT NOT NULL,
                context TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS workflow_schedule_fires (
                workflow_id TEXT NOT NULL,
                occurrence TEXT NOT NULL,
                fired_at TEXT NOT NULL,
                PRIMARY KEY (workflow_id, occurrence)
            );
            CREATE TABLE IF NOT EXISTS workflow_templates (
                id TEXT PRIMARY KEY,
                organization_id TEXT,
                is_global INTEGER NOT NULL,
                data TEXT NOT NULL
            );
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> WorkflowRun:
        return WorkflowRun(
            id=row["id"],
            workflow_id=row["workflow_id"],
            workflow_name=row["workflow_name"],
            organization_id=row["organization_id"],
            trigger_type=row["trigger_type"],
            trigger_data=_loads(row["trigger_data"]) or {},
            status=row["status"],
            current_step=row["current_step"],
            context=_loads(row["context"]),
            error_message=row["error_message"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            steps=_loads(row["steps"]) or [],
        )

    @staticmethod
    def _row_to_run_step(row: sqlite3.Row) -> WorkflowRunStep:
        return WorkflowRunStep(
            id=row["id"],
            run_id=row["run_id"],
            step_id=row["step_id"],
            step_order=row["step_order"],
            step_type=row["step_type"],
            action_type=row["action_type"],
            status=row["status"],
            input_data=_loads(row["input_data"]),
            output_data=_loads(row["output_data"]),
            error_message=row["error_message"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _row_to_scheduled(row: sqlite3.Row) -> WorkflowScheduledStep:
        return WorkflowScheduledStep(
            id=row["id"],
            run_id=row["run_id"],
            step_order=row["step_order"],
            execute_at=row["execute_at"],
            context=_loads(row["context"]),
            status=row["status"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Workflows
    async def save_workflow(self, workflow: Workflow) -> None:
        workflow = workflow.model_copy(update={"updated_at": utcnow()})
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO workflows
                (id, organization_id, trigger_type, is_active, created_at, data)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            workflow.id,
            workflow.organization_id,
            workflow.trigger_type,
            int(workflow.is_active),
            _ts(workflow.created_at),
            workflow.model_dump_json(),
        )

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflows WHERE id = ?", workflow_id
        )
        return Workflow.model_validate_json(row["data"]) if row else None

    async def list_workflows(
        self,
        organization_id: Optional[str] = None,
        trigger_type: Optional[str] = None,
        active_only: bool = False,
    ) -> list[Workflow]:
        query = "SELECT data FROM workflows WHERE 1 = 1"
        params: list[Any] = []
        if organization_id is not None:
            query += " AND organization_id = ?"
            params.append(organization_id)
        if trigger_type is not None:
            query += " AND trigger_type = ?"
            params.append(trigger_type)
        if active_only:
            query += " AND is_active = 1"
        rows = await asyncio.to_thread(
            self._fetchall, query + " ORDER BY created_at", *params
        )
        return [Workflow.model_validate_json(r["data"]) for r in rows]

    async def delete_workflow(self, workflow_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM workflows WHERE id = ?", workflow_id
        )
        if deleted:
            await asyncio.to_thread(
                self._execute,
                "UPDATE workflow_runs SET workflow_id = NULL WHERE workflow_id = ?",
                workflow_id,
            )
        return bool(deleted)

    # ------------------------------------------------------------------
    # Runs
    async def create_run(self, run: WorkflowRun) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_runs (
                id, workflow_id, workflow_name, organization_id, trigger_type,
                trigger_data, status, current_step, context, error_message,
                started_at, completed_at, steps
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            run.id,
            run.workflow_id,
            run.workflow_name,
            run.organization_id,
            run.trigger_type,
            _json(run.trigger_data),
            run.status,
            run.current_step,
            run.context.model_dump_json(),
            run.error_message,
            _ts(run.started_at),
            _ts(run.completed_at),
            json.dumps([s.model_dump(mode="json") for s in run.steps]),
        )

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM workflow_runs WHERE id = ?", run_id
        )
        return self._row_to_run(row) if row else None

    async def list_runs(
        self,
        workflow_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowRun]:
        query = "SELECT * FROM workflow_runs WHERE 1 = 1"
        params: list[Any] = []
        for column, value in (
            ("workflow_id", workflow_id),
            ("organization_id", organization_id),
            ("status", status),
        ):
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)
        rows = await asyncio.to_thread(
            self._fetchall, query + " ORDER BY started_at DESC", *params
        )
        return [self._row_to_run(r) for r in rows]

    async def update_run_progress(
        self, run_id: str, current_step: int, context: WorkflowContext
    ) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_runs SET current_step = ?, context = ?
            WHERE id = ? AND status = 'running'
            """,
            current_step,
            context.model_dump_json(),
            run_id,
        )
        return updated == 1

    async def set_run_status(
        self,
        run_id: str,
        status: str,
        expected: Iterable[str],
        current_step: Optional[int] = None,
        context: Optional[WorkflowContext] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        expected = list(expected)
        if not expected:
            return False
        placeholders = ", ".join("?" for _ in expected)
        updated = await asyncio.to_thread(
            self._execute,
            f"""
            UPDATE workflow_runs SET
                status = ?,
                current_step = COALESCE(?, current_step),
                context = COALESCE(?, context),
                error_message = ?,
                completed_at = ?
            WHERE id = ? AND status IN ({placeholders})
            """,
            status,
            current_step,
            context.model_dump_json() if context is not None else None,
            error_message,
            _ts(utcnow()) if status in TERMINAL_RUN_STATUSES else None,
            run_id,
            *expected,
        )
        return updated == 1

    # ------------------------------------------------------------------
    # Run steps
    async def add_run_step(self, run_step: WorkflowRunStep) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_run_steps (
                id, run_id, step_id, step_order, step_type, action_type, status,
                input_data, output_data, error_message, started_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            run_step.id,
            run_step.run_id,
            run_step.step_id,
            run_step.step_order,
            run_step.step_type,
            run_step.action_type,
            run_step.status,
            _json(run_step.input_data),
            _json(run_step.output_data),
            run_step.error_message,
            _ts(run_step.started_at),
            _ts(run_step.completed_at),
        )

    async def finish_run_step(
        self,
        run_step_id: str,
        status: str,
        output: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_run_steps
            SET status = ?, output_data = ?, error_message = ?, completed_at = ?
            WHERE id = ? AND completed_at IS NULL
            """,
            status,
            _json(output),
            error_message,
            _ts(utcnow()),
            run_step_id,
        )

    async def list_run_steps(self, run_id: str) -> list[WorkflowRunStep]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflow_run_steps WHERE run_id = ? ORDER BY seq",
            run_id,
        )
        return [self._row_to_run_step(r) for r in rows]

    # ------------------------------------------------------------------
    # Scheduled steps
    async def create_scheduled_step(self, scheduled: WorkflowScheduledStep) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_scheduled_steps
                (id, run_id, step_order, execute_at, context, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            scheduled.id,
            scheduled.run_id,
            scheduled.step_order,
            _ts(scheduled.execute_at),
            scheduled.context.model_dump_json(),
            scheduled.status,
            _ts(scheduled.created_at),
        )

    async def list_due_scheduled_steps(
        self, now: datetime, limit: int = 100
    ) -> list[WorkflowScheduledStep]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT * FROM workflow_scheduled_steps
            WHERE status = 'pending' AND execute_at <= ?
            ORDER BY execute_at LIMIT ?
            """,
            _ts(now),
            limit,
        )
        return [self._row_to_scheduled(r) for r in rows]

    async def list_scheduled_steps(self, run_id: str) -> list[WorkflowScheduledStep]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM workflow_scheduled_steps WHERE run_id = ? ORDER BY created_at",
            run_id,
        )
        return [self._row_to_scheduled(r) for r in rows]

    async def claim_scheduled_step(self, scheduled_id: str) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_scheduled_steps SET status = 'executed'
            WHERE id = ? AND status = 'pending'
            """,
            scheduled_id,
        )
        return updated == 1

    async def cancel_scheduled_step(self, scheduled_id: str) -> None:
        await asyncio.to_thread(
            self._execute,
            "UPDATE workflow_scheduled_steps SET status = 'cancelled' WHERE id = ?",
            scheduled_id,
        )

    async def cancel_scheduled_steps(self, run_id: str) -> int:
        return await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_scheduled_steps SET status = 'cancelled'
            WHERE run_id = ? AND status = 'pending'
            """,
            run_id,
        )

    # ------------------------------------------------------------------
    # Schedule fires
    async def record_schedule_fire(self, workflow_id: str, occurrence: str) -> bool:
        inserted = await asyncio.to_thread(
            self._execute,
            """
            INSERT OR IGNORE INTO workflow_schedule_fires
                (workflow_id, occurrence, fired_at)
            VALUES (?, ?, ?)
            """,
            workflow_id,
            occurrence,
            _ts(utcnow()),
        )
        return inserted == 1

    # ------------------------------------------------------------------
    # Templates
    async def save_template(self, template: WorkflowTemplate) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO workflow_templates (id, organization_id, is_global, data)
            VALUES (?, ?, ?, ?)
            """,
            template.id,
            template.organization_id,
            int(template.is_global),
            template.model_dump_json(),
        )

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflow_templates WHERE id = ?", template_id
        )
        return WorkflowTemplate.model_validate_json(row["data"]) if row else None

    async def list_templates(
        self, organization_id: Optional[str] = None
    ) -> list[WorkflowTemplate]:
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT data FROM workflow_templates
            WHERE is_global = 1 OR organization_id = ?
            """,
            organization_id,
        )
        return [WorkflowTemplate.model_validate_json(r["data"]) for r in rows]
