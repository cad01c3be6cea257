"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, Optional

import asyncpg

from ..context import WorkflowContext
from ..models import Workflow, WorkflowTemplate, utcnow
from .models import (
    TERMINAL_RUN_STATUSES,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowScheduledStep,
)
from .repository import WorkflowRepository


def _json(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, default=str)


def _loads(value: Any) -> Any:
    if value is None or isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def _affected(status: str) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 1" or "INSERT 0 1"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                is_active BOOLEAN NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT,
                workflow_name TEXT NOT NULL,
                organization_id TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                trigger_data JSONB,
                status TEXT NOT NULL,
                current_step INTEGER NOT NULL,
                context JSONB NOT NULL,
                error_message TEXT,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                steps JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_run_steps (
                seq SERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                run_id TEXT NOT NULL,
                step_id TEXT,
                step_order INTEGER NOT NULL,
                step_type TEXT NOT NULL,
                action_type TEXT,
                status TEXT NOT NULL,
                input_data JSONB,
                output_data JSONB,
                error_message TEXT,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_scheduled_steps (
                id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL,
                step_order INTEGER NOT NULL,
                execute_at TIMESTAMPTZ NOT NULL,
                context JSONB NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_schedule_fires (
                workflow_id TEXT NOT NULL,
                occurrence TEXT NOT NULL,
                fired_at TIMESTAMPTZ NOT NULL,
                PRIMARY KEY (workflow_id, occurrence)
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_templates (
                id TEXT PRIMARY KEY,
                organization_id TEXT,
                is_global BOOLEAN NOT NULL,
                data JSONB NOT NULL
            )
            """
        )

    async def _execute(self, query: str, *params: Any) -> int:
        conn = await self._connect()
        try:
            status = await conn.execute(query, *params)
        finally:
            await conn.close()
        return _affected(status)

    async def _fetchone(self, query: str, *params: Any) -> asyncpg.Record | None:
        conn = await self._connect()
        try:
            return await conn.fetchrow(query, *params)
        finally:
            await conn.close()

    async def _fetchall(self, query: str, *params: Any) -> list[asyncpg.Record]:
        conn = await self._connect()
        try:
            return await conn.fetch(query, *params)
        finally:
            await conn.close()

    @staticmethod
    def _row_to_run(row: asyncpg.Record) -> WorkflowRun:
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
    def _row_to_run_step(row: asyncpg.Record) -> WorkflowRunStep:
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
    def _row_to_scheduled(row: asyncpg.Record) -> WorkflowScheduledStep:
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
    async def save_workflow(self, workflow: Workflow) -> None:
        workflow = workflow.model_copy(update={"updated_at": utcnow()})
        await self._execute(
            """
            INSERT INTO workflows (id, organization_id, trigger_type, is_active, created_at, data)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (id) DO UPDATE SET
                organization_id = EXCLUDED.organization_id,
                trigger_type = EXCLUDED.trigger_type,
                is_active = EXCLUDED.is_active,
                data = EXCLUDED.data
            """,
            workflow.id,
            workflow.organization_id,
            workflow.trigger_type,
            workflow.is_active,
            workflow.created_at,
            workflow.model_dump_json(),
        )

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await self._fetchone("SELECT data FROM workflows WHERE id = $1", workflow_id)
        return Workflow.model_validate(_loads(row["data"])) if row else None

    async def list_workflows(
        self,
        organization_id: Optional[str] = None,
        trigger_type: Optional[str] = None,
        active_only: bool = False,
    ) -> list[Workflow]:
        rows = await self._fetchall(
            """
            SELECT data FROM workflows
            WHERE ($1::text IS NULL OR organization_id = $1)
              AND ($2::text IS NULL OR trigger_type = $2)
              AND (NOT $3 OR is_active)
            ORDER BY created_at
            """,
            organization_id,
            trigger_type,
            active_only,
        )
        return [Workflow.model_validate(_loads(r["data"])) for r in rows]

    async def delete_workflow(self, workflow_id: str) -> bool:
        conn = await self._connect()
        try:
            async with conn.transaction():
                status = await conn.execute("DELETE FROM workflows WHERE id = $1", workflow_id)
                await conn.execute(
                    "UPDATE workflow_runs SET workflow_id = NULL WHERE workflow_id = $1",
                    workflow_id,
                )
        finally:
            await conn.close()
        return _affected(status) > 0

    # ------------------------------------------------------------------
    async def create_run(self, run: WorkflowRun) -> None:
        await self._execute(
            """
            INSERT INTO workflow_runs (
                id, workflow_id, workflow_name, organization_id, trigger_type,
                trigger_data, status, current_step, context, error_message,
                started_at, completed_at, steps
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
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
            run.started_at,
            run.completed_at,
            json.dumps([s.model_dump(mode="json") for s in run.steps]),
        )

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        row = await self._fetchone("SELECT * FROM workflow_runs WHERE id = $1", run_id)
        return self._row_to_run(row) if row else None

    async def list_runs(
        self,
        workflow_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[WorkflowRun]:
        rows = await self._fetchall(
            """
            SELECT * FROM workflow_runs
            WHERE ($1::text IS NULL OR workflow_id = $1)
              AND ($2::text IS NULL OR organization_id = $2)
              AND ($3::text IS NULL OR status = $3)
            ORDER BY started_at DESC
            """,
            workflow_id,
            organization_id,
            status,
        )
        return [self._row_to_run(r) for r in rows]

    async def update_run_progress(
        self, run_id: str, current_step: int, context: WorkflowContext
    ) -> bool:
        updated = await self._execute(
            """
            UPDATE workflow_runs SET current_step = $1, context = $2
            WHERE id = $3 AND status = 'running'
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
        updated = await self._execute(
            """
            UPDATE workflow_runs SET
                status = $1,
                current_step = COALESCE($2, current_step),
                context = COALESCE($3::jsonb, context),
                error_message = $4,
                completed_at = $5
            WHERE id = $6 AND status = ANY($7::text[])
            """,
            status,
            current_step,
            context.model_dump_json() if context is not None else None,
            error_message,
            utcnow() if status in TERMINAL_RUN_STATUSES else None,
            run_id,
            list(expected),
        )
        return updated == 1

    # ------------------------------------------------------------------
    async def add_run_step(self, run_step: WorkflowRunStep) -> None:
        await self._execute(
            """
            INSERT INTO workflow_run_steps (
                id, run_id, step_id, step_order, step_type, action_type, status,
                input_data, output_data, error_message, started_at, completed_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
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
            run_step.started_at,
            run_step.completed_at,
        )

    async def finish_run_step(
        self,
        run_step_id: str,
        status: str,
        output: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        await self._execute(
            """
            UPDATE workflow_run_steps
            SET status = $1, output_data = $2, error_message = $3, completed_at = $4
            WHERE id = $5 AND completed_at IS NULL
            """,
            status,
            _json(output),
            error_message,
            utcnow(),
            run_step_id,
        )

    async def list_run_steps(self, run_id: str) -> list[WorkflowRunStep]:
        rows = await self._fetchall(
            "SELECT * FROM workflow_run_steps WHERE run_id = $1 ORDER BY seq", run_id
        )
        return [self._row_to_run_step(r) for r in rows]

    # ------------------------------------------------------------------
    async def create_scheduled_step(self, scheduled: WorkflowScheduledStep) -> None:
        await self._execute(
            """
            INSERT INTO workflow_scheduled_steps
                (id, run_id, step_order, execute_at, context, status, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            scheduled.id,
            scheduled.run_id,
            scheduled.step_order,
            scheduled.execute_at,
            scheduled.context.model_dump_json(),
            scheduled.status,
            scheduled.created_at,
        )

    async def list_due_scheduled_steps(
        self, now: datetime, limit: int = 100
    ) -> list[WorkflowScheduledStep]:
        rows = await self._fetchall(
            """
            SELECT * FROM workflow_scheduled_steps
            WHERE status = 'pending' AND execute_at <= $1
            ORDER BY execute_at LIMIT $2
            """,
            now,
            limit,
        )
        return [self._row_to_scheduled(r) for r in rows]

    async def list_scheduled_steps(self, run_id: str) -> list[WorkflowScheduledStep]:
        rows = await self._fetchall(
            "SELECT * FROM workflow_scheduled_steps WHERE run_id = $1 ORDER BY created_at",
            run_id,
        )
        return [self._row_to_scheduled(r) for r in rows]

    async def claim_scheduled_step(self, scheduled_id: str) -> bool:
        updated = await self._execute(
            """
            UPDATE workflow_scheduled_steps SET status = 'executed'
            WHERE id = $1 AND status = 'pending'
            """,
            scheduled_id,
        )
        return updated == 1

    async def cancel_scheduled_step(self, scheduled_id: str) -> None:
        await self._execute(
            "UPDATE workflow_scheduled_steps SET status = 'cancelled' WHERE id = $1",
            scheduled_id,
        )

    async def cancel_scheduled_steps(self, run_id: str) -> int:
        return await self._execute(
            """
            UPDATE workflow_scheduled_steps SET status = 'cancelled'
            WHERE run_id = $1 AND status = 'pending'
            """,
            run_id,
        )

    # ------------------------------------------------------------------
    async def record_schedule_fire(self, workflow_id: str, occurrence: str) -> bool:
        inserted = await self._execute(
            """
            INSERT INTO workflow_schedule_fires (workflow_id, occurrence, fired_at)
            VALUES ($1, $2, $3)
            ON CONFLICT DO NOTHING
            """,
            workflow_id,
            occurrence,
            utcnow(),
        )
        return inserted == 1

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        await self._execute(
            """
            INSERT INTO workflow_templates (id, organization_id, is_global, data)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (id) DO UPDATE SET
                organization_id = EXCLUDED.organization_id,
                is_global = EXCLUDED.is_global,
                data = EXCLUDED.data
            """,
            template.id,
            template.organization_id,
            template.is_global,
            template.model_dump_json(),
        )

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        row = await self._fetchone(
            "SELECT data FROM workflow_templates WHERE id = $1", template_id
        )
        return WorkflowTemplate.model_validate(_loads(row["data"])) if row else None

    async def list_templates(
        self, organization_id: Optional[str] = None
    ) -> list[WorkflowTemplate]:
        rows = await self._fetchall(
            "SELECT data FROM workflow_templates WHERE is_global OR organization_id = $1",
            organization_id,
        )
        return [WorkflowTemplate.model_validate(_loads(r["data"])) for r in rows]
