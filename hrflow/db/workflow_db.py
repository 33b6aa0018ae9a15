from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, List, Optional, Tuple
from uuid import UUID

from sqlmodel import SQLModel, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from .models import (
    EmployeeJourneyView,
    Workflow,
    WorkflowActionQueue,
    WorkflowNode,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowVersion,
    utcnow,
)

logger = logging.getLogger(__name__)


class WorkflowDB:
    """Async database helper for workflow definitions, runs and steps."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url
        if database_url.startswith("sqlite"):
            # One connection per session; aiosqlite connections are bound to a loop.
            self.engine = create_async_engine(
                database_url,
                echo=False,
                future=True,
                poolclass=NullPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_async_engine(database_url, echo=False, future=True)

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    # ------------------------------------------------------------------
    # Definitions
    async def get_workflow(
        self, workflow_id: UUID, tenant_id: Optional[str] = None
    ) -> Workflow | None:
        async with self.session() as session:
            workflow = await session.get(Workflow, workflow_id)
            if workflow is None or (
                tenant_id is not None and workflow.tenant_id != tenant_id
            ):
                return None
            return workflow

    async def get_version(self, version_id: UUID) -> WorkflowVersion | None:
        async with self.session() as session:
            return await session.get(WorkflowVersion, version_id)

    async def published_workflows(
        self, tenant_id: str
    ) -> List[Tuple[Workflow, WorkflowVersion]]:
        """Published workflows of a tenant joined with their active version."""
        async with self.session() as session:
            result = await session.execute(
                select(Workflow, WorkflowVersion)
                .join(WorkflowVersion, WorkflowVersion.id == Workflow.active_version_id)
                .where(Workflow.tenant_id == tenant_id)
                .where(Workflow.status == "published")
            )
            return [(workflow, version) for workflow, version in result.all()]

    async def get_node(self, node_id: UUID) -> WorkflowNode | None:
        async with self.session() as session:
            return await session.get(WorkflowNode, node_id)

    async def find_node(self, version_id: UUID, node_key: str) -> WorkflowNode | None:
        async with self.session() as session:
            return await self._find_node(session, version_id, node_key)

    async def list_nodes(self, version_id: UUID) -> List[WorkflowNode]:
        async with self.session() as session:
            result = await session.execute(
                select(WorkflowNode).where(WorkflowNode.version_id == version_id)
            )
            return list(result.scalars().all())

    async def create_node(
        self,
        version_id: UUID,
        node_key: str,
        type: str,
        label: Optional[str] = None,
        config: Optional[dict] = None,
    ) -> WorkflowNode:
        """Insert a node row, returning the existing row if one won the race."""
        node = WorkflowNode(
            version_id=version_id,
            node_key=node_key,
            type=type,
            label=label,
            config=config or {},
        )
        async with self.session() as session:
            session.add(node)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing = await self._find_node(session, version_id, node_key)
                if existing is None:
                    raise
                return existing
        return node

    @staticmethod
    async def _find_node(
        session: AsyncSession, version_id: UUID, node_key: str
    ) -> WorkflowNode | None:
        result = await session.execute(
            select(WorkflowNode)
            .where(WorkflowNode.version_id == version_id)
            .where(WorkflowNode.node_key == node_key)
        )
        return result.scalars().first()

    # ------------------------------------------------------------------
    # Runs
    async def create_run(self, **fields: Any) -> WorkflowRun:
        run = WorkflowRun(**fields)
        async with self.session() as session:
            session.add(run)
            await session.commit()
        return run

    async def get_run(self, run_id: UUID) -> WorkflowRun | None:
        async with self.session() as session:
            return await session.get(WorkflowRun, run_id)

    async def update_run(self, run_id: UUID, **fields: Any) -> WorkflowRun | None:
        async with self.session() as session:
            run = await session.get(WorkflowRun, run_id)
            if run is None:
                return None
            for key, value in fields.items():
                setattr(run, key, value)
            await session.commit()
            return run

    async def list_runs(self, tenant_id: Optional[str] = None) -> List[WorkflowRun]:
        async with self.session() as session:
            query = select(WorkflowRun).order_by(WorkflowRun.created_at)
            if tenant_id is not None:
                query = query.where(WorkflowRun.tenant_id == tenant_id)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def upsert_journey_view(self, run_id: UUID) -> EmployeeJourneyView:
        async with self.session() as session:
            result = await session.execute(
                select(EmployeeJourneyView).where(EmployeeJourneyView.run_id == run_id)
            )
            view = result.scalars().first()
            if view is None:
                view = EmployeeJourneyView(
                    run_id=run_id, share_token=secrets.token_urlsafe(24)
                )
                session.add(view)
                await session.commit()
            return view

    # ------------------------------------------------------------------
    # Steps
    async def get_step(self, step_id: UUID) -> WorkflowRunStep | None:
        async with self.session() as session:
            return await session.get(WorkflowRunStep, step_id)

    async def find_step(self, run_id: UUID, node_id: UUID) -> WorkflowRunStep | None:
        async with self.session() as session:
            return await self._find_step(session, run_id, node_id)

    async def list_steps(
        self, run_id: UUID, status: Optional[str] = None
    ) -> List[WorkflowRunStep]:
        async with self.session() as session:
            query = select(WorkflowRunStep).where(WorkflowRunStep.run_id == run_id)
            if status is not None:
                query = query.where(WorkflowRunStep.status == status)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def upsert_step(
        self, run_id: UUID, node_id: UUID, **fields: Any
    ) -> WorkflowRunStep:
        """Create or update the single step row of ``(run_id, node_id)``."""
        fields["updated_at"] = utcnow()
        async with self.session() as session:
            step = await self._find_step(session, run_id, node_id)
            if step is None:
                step = WorkflowRunStep(run_id=run_id, node_id=node_id, **fields)
                session.add(step)
                try:
                    await session.commit()
                    return step
                except IntegrityError:
                    await session.rollback()
                    step = await self._find_step(session, run_id, node_id)
                    if step is None:
                        raise
            for key, value in fields.items():
                setattr(step, key, value)
            await session.commit()
            return step

    async def update_step(self, step_id: UUID, **fields: Any) -> WorkflowRunStep | None:
        fields["updated_at"] = utcnow()
        async with self.session() as session:
            step = await session.get(WorkflowRunStep, step_id)
            if step is None:
                return None
            for key, value in fields.items():
                setattr(step, key, value)
            await session.commit()
            return step

    @staticmethod
    async def _find_step(
        session: AsyncSession, run_id: UUID, node_id: UUID
    ) -> WorkflowRunStep | None:
        result = await session.execute(
            select(WorkflowRunStep)
            .where(WorkflowRunStep.run_id == run_id)
            .where(WorkflowRunStep.node_id == node_id)
        )
        return result.scalars().first()

    # ------------------------------------------------------------------
    # Delayed resumption queue
    async def enqueue(
        self,
        run_id: UUID,
        node_id: UUID,
        resume_at: datetime,
        metadata: Optional[dict] = None,
    ) -> WorkflowActionQueue:
        entry = WorkflowActionQueue(
            run_id=run_id,
            node_id=node_id,
            resume_at=resume_at,
            attempts=0,
            metadata_=metadata or {},
        )
        async with self.session() as session:
            session.add(entry)
            await session.commit()
        return entry

    async def due_queue_entries(
        self, now: datetime, limit: int = 50
    ) -> List[WorkflowActionQueue]:
        async with self.session() as session:
            result = await session.execute(
                select(WorkflowActionQueue)
                .where(WorkflowActionQueue.resume_at <= now)
                .order_by(WorkflowActionQueue.resume_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_queue_entries(
        self, run_id: Optional[UUID] = None
    ) -> List[WorkflowActionQueue]:
        async with self.session() as session:
            query = select(WorkflowActionQueue).order_by(WorkflowActionQueue.resume_at)
            if run_id is not None:
                query = query.where(WorkflowActionQueue.run_id == run_id)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def update_queue_entry(self, entry_id: UUID, **fields: Any) -> None:
        async with self.session() as session:
            entry = await session.get(WorkflowActionQueue, entry_id)
            if entry is None:
                return
            for key, value in fields.items():
                setattr(entry, key, value)
            await session.commit()

    async def delete_queue_entry(self, entry_id: UUID) -> None:
        async with self.session() as session:
            entry = await session.get(WorkflowActionQueue, entry_id)
            if entry is None:
                return
            await session.delete(entry)
            await session.commit()
