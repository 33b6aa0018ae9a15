from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON, TypeDecorator, UniqueConstraint

RUN_STATUSES = ("pending", "in_progress", "completed", "failed")
STEP_STATUSES = (
    "pending",
    "in_progress",
    "waiting_input",
    "queued",
    "completed",
    "failed",
    "canceled",
)
TERMINAL_STEP_STATUSES = frozenset({"completed", "failed", "canceled"})
TERMINAL_RUN_STATUSES = frozenset({"completed", "failed"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops the offset on write, so values read back without one are
    taken as UTC. Naive values bound for writing are taken as UTC as well.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Workflow(SQLModel, table=True):
    """Tenant-scoped container for the versions of one process."""

    __tablename__ = "workflows"
    __table_args__ = (UniqueConstraint("tenant_id", "slug"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    tenant_id: str = Field(index=True)
    name: str
    slug: str
    kind: str = "custom"
    status: str = Field(default="draft")
    active_version_id: Optional[UUID] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class WorkflowVersion(SQLModel, table=True):
    """Graph snapshot; frozen once published."""

    __tablename__ = "workflow_versions"
    __table_args__ = (UniqueConstraint("workflow_id", "version_number"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    workflow_id: UUID = Field(foreign_key="workflows.id", index=True)
    version_number: int = 1
    is_active: bool = False
    definition: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    published_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)


class WorkflowNode(SQLModel, table=True):
    """Persisted mirror of one definition node of a version."""

    __tablename__ = "workflow_nodes"
    __table_args__ = (UniqueConstraint("version_id", "node_key"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    version_id: UUID = Field(foreign_key="workflow_versions.id", index=True)
    node_key: str
    type: str
    label: Optional[str] = None
    config: dict = Field(default_factory=dict, sa_column=Column(JSON))


class WorkflowRun(SQLModel, table=True):
    """One execution of a workflow version for a trigger context."""

    __tablename__ = "workflow_runs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    tenant_id: str = Field(index=True)
    workflow_id: UUID = Field(foreign_key="workflows.id")
    version_id: UUID = Field(foreign_key="workflow_versions.id")
    employee_id: Optional[str] = None
    trigger_source: str
    status: str = Field(default="pending")
    context: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    started_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    failed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_error: Optional[str] = None


class WorkflowRunStep(SQLModel, table=True):
    """Execution record of one node within one run."""

    __tablename__ = "workflow_run_steps"
    __table_args__ = (UniqueConstraint("run_id", "node_id"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    run_id: UUID = Field(foreign_key="workflow_runs.id", index=True)
    node_id: UUID = Field(foreign_key="workflow_nodes.id")
    status: str = Field(default="pending")
    task_type: str = "general"
    assigned_to: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    due_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    result: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    error: Optional[str] = None
    started_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class WorkflowActionQueue(SQLModel, table=True):
    """Ticket asking the queue processor to resume a node at ``resume_at``."""

    __tablename__ = "workflow_action_queue"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    run_id: UUID = Field(index=True)
    node_id: UUID
    resume_at: datetime = Field(index=True, sa_type=UTCDateTime)
    attempts: int = 0
    metadata_: dict = Field(
        default_factory=dict, sa_column=Column("metadata", JSON)
    )
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class EmployeeJourneyView(SQLModel, table=True):
    """Shareable employee-facing view of a run."""

    __tablename__ = "employee_journey_views"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    run_id: UUID = Field(foreign_key="workflow_runs.id", unique=True)
    share_token: str = Field(unique=True)
    hero_copy: str = "Welcome! Let's get you started."
    cta_label: str = "View Your Journey"
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
