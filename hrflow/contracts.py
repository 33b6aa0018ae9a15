"""Value objects passed between the engine, its callers and the queue."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class TriggerEvent(BaseModel):
    """Domain event raised by a business operation, e.g. ``employee.created``."""

    type: str
    tenant_id: str
    employee_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class TriggerFailure(BaseModel):
    workflow_id: Optional[UUID] = None
    message: str


class TriggerResult(BaseModel):
    """Runs started for one event and the matches that failed."""

    run_ids: List[UUID] = Field(default_factory=list)
    errors: List[TriggerFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class StepContext(BaseModel):
    """Everything the step executor needs to run one node of one run."""

    run_id: UUID
    node_id: UUID
    tenant_id: str
    employee_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    resumed: bool = False


class StepUpdate(BaseModel):
    """Step row fields produced by executing a node."""

    status: str
    result: Optional[Any] = None
    task_type: str = "general"
    assigned_to: Optional[Dict[str, Any]] = None
    due_at: Optional[datetime] = None
    payload: Optional[Dict[str, Any]] = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"
