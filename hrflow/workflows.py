"""Authoring of tenant workflows: drafts, versions and publishing."""

from __future__ import annotations

import re
import secrets
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from .db import WorkflowDB
from .db.models import Workflow, WorkflowVersion, utcnow
from .definition import WorkflowDefinition
from .errors import HrflowError, InvalidTransitionError, NotFoundError

WORKFLOW_KINDS = ("onboarding", "offboarding", "custom")
MAX_SLUG_ATTEMPTS = 10


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
    return re.sub(r"-{2,}", "-", slug)


def _random_suffix() -> str:
    return secrets.token_hex(4)


async def _ensure_unique_slug(session: AsyncSession, tenant_id: str, name: str) -> str:
    base_slug = slugify(name) or f"workflow-{_random_suffix()}"
    candidate = base_slug
    for _ in range(MAX_SLUG_ATTEMPTS):
        result = await session.execute(
            select(Workflow.id)
            .where(Workflow.tenant_id == tenant_id)
            .where(Workflow.slug == candidate)
        )
        if result.first() is None:
            return candidate
        candidate = f"{base_slug}-{_random_suffix()}"
    raise HrflowError("Unable to generate unique workflow slug")


async def _tenant_workflow(
    session: AsyncSession, tenant_id: str, workflow_id: UUID
) -> Workflow:
    workflow = await session.get(Workflow, workflow_id)
    if workflow is None or workflow.tenant_id != tenant_id:
        raise NotFoundError("Workflow not found")
    return workflow


async def _latest_version(
    session: AsyncSession, workflow_id: UUID
) -> WorkflowVersion | None:
    result = await session.execute(
        select(WorkflowVersion)
        .where(WorkflowVersion.workflow_id == workflow_id)
        .order_by(WorkflowVersion.version_number.desc())
        .limit(1)
    )
    return result.scalars().first()


async def create_workflow_draft(
    db: WorkflowDB,
    tenant_id: str,
    name: str,
    kind: str = "custom",
    definition: Any = None,
    created_by: Optional[str] = None,
) -> Workflow:
    """Create a draft workflow with an inactive first version."""
    if not name.strip():
        raise ValueError("Workflow name is required")
    if kind not in WORKFLOW_KINDS:
        raise ValueError(f"Unknown workflow kind: {kind}")

    async with db.session() as session:
        workflow = Workflow(
            tenant_id=tenant_id,
            name=name,
            slug=await _ensure_unique_slug(session, tenant_id, name),
            kind=kind,
            status="draft",
            created_by=created_by,
            updated_by=created_by,
        )
        session.add(workflow)
        await session.flush()
        session.add(
            WorkflowVersion(
                workflow_id=workflow.id,
                version_number=1,
                is_active=False,
                definition=WorkflowDefinition.from_raw(definition).to_raw(),
                created_by=created_by,
            )
        )
        await session.commit()
    return workflow


async def update_workflow_draft(
    db: WorkflowDB,
    tenant_id: str,
    workflow_id: UUID,
    name: Optional[str] = None,
    definition: Any = None,
    status: Optional[str] = None,
    updated_by: Optional[str] = None,
) -> Workflow:
    """Rename a workflow, replace its draft graph, or move its status forward.

    A definition update never touches a published version: it edits the
    latest draft version or appends a new one.
    """
    if name is None and definition is None and status is None:
        raise ValueError("At least one field must be provided")

    async with db.session() as session:
        workflow = await _tenant_workflow(session, tenant_id, workflow_id)
        if status not in (None, "draft", "published"):
            raise ValueError(f"Unknown workflow status: {status}")
        if status == "draft" and workflow.status == "published":
            raise InvalidTransitionError("A published workflow cannot return to draft")
        if name is not None:
            workflow.name = name

        if definition is not None:
            normalized = WorkflowDefinition.from_raw(definition).to_raw()
            latest = await _latest_version(session, workflow.id)
            if latest is None or latest.published_at is not None:
                session.add(
                    WorkflowVersion(
                        workflow_id=workflow.id,
                        version_number=(latest.version_number + 1) if latest else 1,
                        definition=normalized,
                        created_by=updated_by,
                    )
                )
            else:
                latest.definition = normalized

        workflow.updated_by = updated_by
        workflow.updated_at = utcnow()
        await session.commit()

    if status == "published":
        return await publish_workflow(db, tenant_id, workflow_id, published_by=updated_by)
    return workflow


async def publish_workflow(
    db: WorkflowDB,
    tenant_id: str,
    workflow_id: UUID,
    published_by: Optional[str] = None,
) -> Workflow:
    """Make the latest version the single active one and publish the workflow."""
    async with db.session() as session:
        workflow = await _tenant_workflow(session, tenant_id, workflow_id)
        latest = await _latest_version(session, workflow.id)
        if latest is None:
            raise NotFoundError("No workflow version to publish")

        now = utcnow()
        result = await session.execute(
            select(WorkflowVersion)
            .where(WorkflowVersion.workflow_id == workflow.id)
            .where(WorkflowVersion.is_active == True)  # noqa: E712
        )
        for version in result.scalars().all():
            if version.id != latest.id:
                version.is_active = False

        latest.is_active = True
        latest.published_at = latest.published_at or now
        workflow.status = "published"
        workflow.active_version_id = latest.id
        workflow.updated_by = published_by
        workflow.updated_at = now
        await session.commit()
    return workflow


async def get_workflow(db: WorkflowDB, tenant_id: str, workflow_id: UUID) -> Workflow:
    async with db.session() as session:
        return await _tenant_workflow(session, tenant_id, workflow_id)


async def list_workflows(db: WorkflowDB, tenant_id: str) -> List[Workflow]:
    async with db.session() as session:
        result = await session.execute(
            select(Workflow)
            .where(Workflow.tenant_id == tenant_id)
            .order_by(Workflow.created_at.desc())
        )
        return list(result.scalars().all())


async def list_versions(db: WorkflowDB, workflow_id: UUID) -> List[WorkflowVersion]:
    async with db.session() as session:
        result = await session.execute(
            select(WorkflowVersion)
            .where(WorkflowVersion.workflow_id == workflow_id)
            .order_by(WorkflowVersion.version_number)
        )
        return list(result.scalars().all())
