"""Human-actioned steps: listing them and resolving them."""

from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from sqlmodel import select

from .db.models import TERMINAL_STEP_STATUSES, WorkflowRun, WorkflowRunStep
from .engine import WorkflowEngine
from .errors import InvalidTransitionError, NotFoundError


def _assigned_to_employee(step: WorkflowRunStep, employee_id: str) -> bool:
    assignee = step.assigned_to or {}
    return assignee.get("type") == "employee" and assignee.get("id") == employee_id


async def list_tasks(
    engine: WorkflowEngine,
    tenant_id: str,
    employee_id: Optional[str] = None,
    status: Optional[str] = None,
) -> List[WorkflowRunStep]:
    """Steps with an assignee in the tenant's runs, oldest first."""
    async with engine.db.session() as session:
        query = (
            select(WorkflowRunStep)
            .join(WorkflowRun, WorkflowRun.id == WorkflowRunStep.run_id)
            .where(WorkflowRun.tenant_id == tenant_id)
            .order_by(WorkflowRunStep.updated_at)
        )
        if status is not None:
            query = query.where(WorkflowRunStep.status == status)
        result = await session.execute(query)
        steps = list(result.scalars().all())

    # assigned_to is JSON; an empty value may be stored as JSON null.
    steps = [step for step in steps if step.assigned_to]
    if employee_id is not None:
        steps = [step for step in steps if _assigned_to_employee(step, employee_id)]
    return steps


async def complete_task(
    engine: WorkflowEngine,
    tenant_id: str,
    step_id: UUID,
    result: Optional[Any] = None,
) -> WorkflowRunStep:
    """Resolve a waiting step and let the run move on."""
    db = engine.db
    step = await db.get_step(step_id)
    run = await db.get_run(step.run_id) if step is not None else None
    if step is None or run is None or run.tenant_id != tenant_id:
        raise NotFoundError("Task not found")
    if step.status in TERMINAL_STEP_STATUSES:
        raise InvalidTransitionError(f"Task {step_id} is already {step.status}")
    # Delays are resumed by the queue processor only.
    if step.status == "queued":
        raise InvalidTransitionError(f"Task {step_id} is a queued delay")

    await engine.complete_step(step.run_id, step.node_id, result or {})
    await engine.continue_run(step.run_id)
    return await db.get_step(step_id)
