"""Built-in behaviours of action nodes."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .contracts import StepContext, StepUpdate
from .definition import (
    AssignTaskAction,
    CreateDocumentAction,
    DefinitionNode,
    DueDate,
    FillFormAction,
    SendEmailAction,
    parse_action_config,
)
from .db.models import utcnow
from .errors import DefinitionError
from .hooks import WorkflowHooks

logger = logging.getLogger(__name__)

_RELATIVE_DUE = re.compile(r"(\w+)\s*([+-]?\d+)")


def resolve_due_date(
    due: Optional[DueDate], now: Optional[datetime] = None
) -> Optional[datetime]:
    """Turn a node's ``due_date`` setting into a timestamp.

    ``absolute`` wins; a value without an offset is read as UTC.
    ``relative`` values such as ``"Day -3"`` are offsets from ``now``; only
    the ``day`` unit is honored.
    """
    if due is None:
        return None
    if due.absolute:
        try:
            value = datetime.fromisoformat(due.absolute)
        except ValueError as exc:
            raise DefinitionError(f"Invalid absolute due date: {due.absolute}") from exc
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if due.relative:
        match = _RELATIVE_DUE.search(due.relative)
        if match and match.group(1).lower() == "day":
            return (now or utcnow()) + timedelta(days=int(match.group(2)))
    return None


def default_assignee(employee_id: Optional[str]) -> Dict[str, Any]:
    return {"type": "employee", "id": employee_id}


class ActionExecutor:
    """Execute an action node and describe the resulting step row."""

    def __init__(self, hooks: WorkflowHooks) -> None:
        self._hooks = hooks

    async def execute(self, ctx: StepContext, node: DefinitionNode) -> StepUpdate:
        action = parse_action_config(node.config)
        if action is None:
            logger.warning(
                f"Action node {node.id} has no kind or marker fields; completing as no-op"
            )
            return StepUpdate(status="completed", result={})
        if isinstance(action, SendEmailAction):
            return await self._send_email(ctx, action)
        if isinstance(action, AssignTaskAction):
            return self._assign_task(ctx, node, action)
        if isinstance(action, CreateDocumentAction):
            return await self._request_documents(ctx, node, action)
        if isinstance(action, FillFormAction):
            return self._fill_form(ctx, node, action)
        raise DefinitionError(f"Unsupported action kind on node {node.id}")

    async def _send_email(self, ctx: StepContext, action: SendEmailAction) -> StepUpdate:
        try:
            await self._hooks.send_email(
                action.template,
                run_id=ctx.run_id,
                tenant_id=ctx.tenant_id,
                employee_id=ctx.employee_id,
                context=ctx.context,
            )
        except Exception as e:
            logger.warning(f"Email hook failed for run {ctx.run_id}: {e}")
            return StepUpdate(
                status="completed",
                result={"sent": False, "template": action.template, "error": str(e)},
            )
        return StepUpdate(
            status="completed", result={"sent": True, "template": action.template}
        )

    def _assign_task(
        self, ctx: StepContext, node: DefinitionNode, action: AssignTaskAction
    ) -> StepUpdate:
        """One waiting step per node holding every task title.

        The first title is the step ``title``; the full list is kept under
        ``tasks`` rather than letting later titles overwrite earlier ones.
        """
        if not action.tasks:
            return StepUpdate(status="completed", result={"tasks_created": 0})
        return StepUpdate(
            status="waiting_input",
            task_type="general",
            assigned_to=action.assigned_to or default_assignee(ctx.employee_id),
            due_at=resolve_due_date(action.due_date),
            payload={
                "title": action.tasks[0],
                "description": action.description,
                "instructions": action.instructions,
                "priority": action.priority,
                "tasks": list(action.tasks),
            },
        )

    async def _request_documents(
        self, ctx: StepContext, node: DefinitionNode, action: CreateDocumentAction
    ) -> StepUpdate:
        if not action.documents:
            return StepUpdate(status="completed", result={"documents_requested": 0})
        try:
            await self._hooks.request_documents(
                list(action.documents),
                run_id=ctx.run_id,
                tenant_id=ctx.tenant_id,
                employee_id=ctx.employee_id,
            )
        except Exception as e:
            logger.warning(f"Document hook failed for run {ctx.run_id}: {e}")
        return StepUpdate(
            status="waiting_input",
            task_type="document",
            assigned_to=action.assigned_to or default_assignee(ctx.employee_id),
            due_at=resolve_due_date(action.due_date),
            payload={
                "title": node.label or "Document request",
                "document_types": list(action.documents),
                "required": True,
            },
        )

    def _fill_form(
        self, ctx: StepContext, node: DefinitionNode, action: FillFormAction
    ) -> StepUpdate:
        return StepUpdate(
            status="waiting_input",
            task_type="form",
            assigned_to=action.assigned_to or default_assignee(ctx.employee_id),
            due_at=resolve_due_date(action.due_date),
            payload={
                "title": node.label or "Form",
                "form": action.form,
                "form_schema": action.form_schema,
            },
        )
