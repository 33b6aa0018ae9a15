"""Graph-driven execution of workflow runs."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from .actions import ActionExecutor
from .contracts import StepContext, StepUpdate, TriggerEvent, TriggerFailure, TriggerResult
from .db import WorkflowDB
from .db.models import TERMINAL_RUN_STATUSES, TERMINAL_STEP_STATUSES, WorkflowRun, utcnow
from .definition import DefinitionNode, WorkflowDefinition, parse_delay_config
from .errors import DefinitionError, NotFoundError, StepExecutionError
from .hooks import LoggingHooks, WorkflowHooks

logger = logging.getLogger(__name__)


class WorkflowEngine:
    """Instantiates runs for domain events and drives them through their graph.

    Every entry point takes the tenant explicitly so the engine can be called
    from request handlers and from the background queue processor alike.
    """

    def __init__(self, db: WorkflowDB, hooks: WorkflowHooks | None = None) -> None:
        self._db = db
        self._actions = ActionExecutor(hooks or LoggingHooks())

    @property
    def db(self) -> WorkflowDB:
        return self._db

    # ------------------------------------------------------------------
    # Triggering
    async def handle_trigger(self, event: TriggerEvent) -> TriggerResult:
        """Start a run for every published workflow listening for ``event``.

        Never raises: the business operation that produced the event must not
        fail because orchestration did. Failures are logged and returned.
        """
        result = TriggerResult()
        try:
            candidates = await self._db.published_workflows(event.tenant_id)
        except Exception as e:
            logger.exception(f"Could not load workflows for trigger {event.type}")
            result.errors.append(TriggerFailure(message=str(e)))
            return result

        for workflow, version in candidates:
            try:
                definition = WorkflowDefinition.from_raw(version.definition)
                if not definition.trigger_nodes(event.type):
                    continue
                run_id = await self.instantiate_run(
                    workflow_id=workflow.id,
                    version_id=version.id,
                    tenant_id=event.tenant_id,
                    employee_id=event.employee_id,
                    trigger_source=event.type,
                    context=event.payload,
                )
                result.run_ids.append(run_id)
            except Exception as e:
                logger.exception(
                    f"Workflow {workflow.id} failed to start for trigger {event.type}"
                )
                result.errors.append(TriggerFailure(workflow_id=workflow.id, message=str(e)))

        if result.run_ids:
            logger.info(f"Trigger {event.type} started {len(result.run_ids)} run(s)")
        return result

    async def start_workflow(
        self,
        tenant_id: str,
        workflow_id: UUID,
        employee_id: Optional[str] = None,
        started_by: Optional[str] = None,
    ) -> UUID:
        """Manually start the active version of a published workflow."""
        workflow = await self._db.get_workflow(workflow_id, tenant_id=tenant_id)
        if (
            workflow is None
            or workflow.status != "published"
            or workflow.active_version_id is None
        ):
            raise NotFoundError("Workflow not found or not published")
        return await self.instantiate_run(
            workflow_id=workflow.id,
            version_id=workflow.active_version_id,
            tenant_id=tenant_id,
            employee_id=employee_id,
            trigger_source="manual",
            context={"started_by": started_by},
        )

    async def instantiate_run(
        self,
        workflow_id: UUID,
        version_id: UUID,
        tenant_id: str,
        trigger_source: str,
        employee_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> UUID:
        """Create a run, materialize its nodes and execute its trigger nodes."""
        context = dict(context or {})
        run = await self._db.create_run(
            tenant_id=tenant_id,
            workflow_id=workflow_id,
            version_id=version_id,
            employee_id=employee_id,
            trigger_source=trigger_source,
            status="pending",
            context=context,
        )

        try:
            version = await self._db.get_version(version_id)
            if version is None:
                raise DefinitionError(f"Workflow version not found: {version_id}")
            definition = WorkflowDefinition.from_raw(version.definition)
            node_ids = await self.materialize_nodes(version_id, definition)

            if employee_id:
                await self._db.upsert_journey_view(run.id)

            await self._db.update_run(run.id, status="in_progress", started_at=utcnow())

            for trigger in definition.trigger_nodes():
                node_id = node_ids.get(trigger.id)
                if node_id is None:
                    logger.warning(f"Trigger node {trigger.id} was not materialized; skipping")
                    continue
                await self.process_step(
                    StepContext(
                        run_id=run.id,
                        node_id=node_id,
                        tenant_id=tenant_id,
                        employee_id=employee_id,
                        context=context,
                    )
                )
        except Exception as e:
            await self._mark_run_failed(run.id, str(e))
            raise

        logger.info(f"Workflow run {run.id} instantiated from {trigger_source}")
        return run.id

    async def materialize_nodes(
        self, version_id: UUID, definition: WorkflowDefinition
    ) -> Dict[str, UUID]:
        """Ensure a persisted node exists for each definition node.

        Returns a map of definition node id to persisted node id. A node that
        cannot be stored is logged and left out of the map.
        """
        node_ids: Dict[str, UUID] = {}
        for node in definition.nodes:
            try:
                row = await self._db.find_node(version_id, node.id)
                if row is None:
                    row = await self._db.create_node(
                        version_id, node.id, node.type, node.label, node.config
                    )
            except SQLAlchemyError as e:
                logger.error(f"Failed to materialize node {node.id} of version {version_id}: {e}")
                continue
            node_ids[node.id] = row.id
        return node_ids

    # ------------------------------------------------------------------
    # Step execution
    async def process_step(self, ctx: StepContext) -> None:
        """Execute one node for one run and record the outcome.

        A failure marks both the step and the run failed and is re-raised as
        ``StepExecutionError``. A resumed delay that fails only records the
        error on its step: the queue processor retries it and decides when
        the run fails.
        """
        run = await self._db.get_run(ctx.run_id)
        if run is None:
            raise NotFoundError(f"Workflow run not found: {ctx.run_id}")
        definition = await self._run_definition(run)
        node = await self._definition_node(definition, ctx.node_id)

        try:
            update = await self._dispatch(ctx, node)
            fields = update.model_dump()
            if update.completed:
                fields["completed_at"] = utcnow()
            await self._db.upsert_step(
                ctx.run_id, ctx.node_id, started_at=utcnow(), **fields
            )
        except Exception as e:
            if ctx.resumed:
                await self._db.upsert_step(ctx.run_id, ctx.node_id, error=str(e))
            else:
                await self.fail_step(ctx.run_id, ctx.node_id, str(e))
            raise StepExecutionError(str(e), ctx.run_id, ctx.node_id) from e

        logger.debug(f"Node {node.id} of run {ctx.run_id} is {update.status}")
        if update.completed:
            await self.continue_run(ctx.run_id)

    async def _dispatch(self, ctx: StepContext, node: DefinitionNode) -> StepUpdate:
        if node.type in ("trigger", "logic"):
            return StepUpdate(status="completed", result={})
        if node.type == "delay":
            return await self._execute_delay(ctx, node)
        if node.type == "action":
            return await self._actions.execute(ctx, node)
        logger.warning(f"Unknown node type {node.type!r} on node {node.id}; passing through")
        return StepUpdate(status="completed", result={})

    async def _execute_delay(self, ctx: StepContext, node: DefinitionNode) -> StepUpdate:
        now = utcnow()
        if ctx.resumed:
            return StepUpdate(status="completed", result={"resumed_at": now.isoformat()})
        delay = parse_delay_config(node.config)
        await self._db.enqueue(
            ctx.run_id,
            ctx.node_id,
            resume_at=now + delay.duration.to_timedelta(),
            metadata={"delay": delay.duration.model_dump(), "node_key": node.id},
        )
        return StepUpdate(status="queued")

    async def complete_step(
        self, run_id: UUID, node_id: UUID, result: Optional[Any] = None
    ) -> None:
        await self._db.upsert_step(
            run_id, node_id, status="completed", result=result, completed_at=utcnow()
        )

    async def fail_step(self, run_id: UUID, node_id: UUID, error: str) -> None:
        await self._db.upsert_step(run_id, node_id, status="failed", error=error)
        await self._mark_run_failed(run_id, error)

    async def _mark_run_failed(self, run_id: UUID, error: str) -> None:
        await self._db.update_run(
            run_id, status="failed", failed_at=utcnow(), last_error=error
        )

    # ------------------------------------------------------------------
    # Continuation
    async def continue_run(self, run_id: UUID) -> None:
        """Execute nodes unlocked by completed steps, then settle the run.

        A no-op for unknown or terminal runs.
        """
        run = await self._db.get_run(run_id)
        if run is None:
            logger.warning(f"Cannot continue unknown run {run_id}")
            return
        if run.status in TERMINAL_RUN_STATUSES:
            return

        definition = await self._run_definition(run)
        node_ids = {node.node_key: node.id for node in await self._db.list_nodes(run.version_id)}
        completed = {step.node_id for step in await self._db.list_steps(run_id, status="completed")}

        for node_key in self.ready_nodes(definition, node_ids, completed):
            node_id = node_ids.get(node_key)
            if node_id is None:
                logger.warning(f"Node {node_key} of run {run_id} is not materialized; skipping")
                continue
            # Re-read: a nested continuation may have reached this node or failed the run.
            current = await self._db.get_run(run_id)
            if current is None or current.status in TERMINAL_RUN_STATUSES:
                break
            if await self._db.find_step(run_id, node_id) is not None:
                continue
            try:
                await self.process_step(
                    StepContext(
                        run_id=run_id,
                        node_id=node_id,
                        tenant_id=run.tenant_id,
                        employee_id=run.employee_id,
                        context=run.context or {},
                    )
                )
            except StepExecutionError as e:
                logger.error(f"Node {node_key} of run {run_id} failed: {e}")
                break

        await self._settle_run(run_id)

    @staticmethod
    def ready_nodes(
        definition: WorkflowDefinition,
        node_ids: Dict[str, UUID],
        completed: set,
    ) -> List[str]:
        """Definition node ids whose incoming edges allow them to run.

        ``any`` join nodes run once one predecessor completed; ``all`` join
        nodes wait for every predecessor.
        """
        ready: List[str] = []
        for edge in definition.edges:
            if edge.target in ready or node_ids.get(edge.source) not in completed:
                continue
            target = definition.node(edge.target)
            if target is None:
                continue
            if target.join == "all" and not all(
                node_ids.get(incoming.source) in completed
                for incoming in definition.incoming(target.id)
            ):
                continue
            ready.append(edge.target)
        return ready

    async def _settle_run(self, run_id: UUID) -> None:
        run = await self._db.get_run(run_id)
        if run is None or run.status != "in_progress":
            return
        steps = await self._db.list_steps(run_id)
        if steps and all(step.status in TERMINAL_STEP_STATUSES for step in steps):
            await self._db.update_run(run_id, status="completed", completed_at=utcnow())
            logger.info(f"Workflow run {run_id} completed")

    # ------------------------------------------------------------------
    async def _run_definition(self, run: WorkflowRun) -> WorkflowDefinition:
        version = await self._db.get_version(run.version_id)
        if version is None:
            raise DefinitionError(f"Workflow version not found for run: {run.id}")
        return WorkflowDefinition.from_raw(version.definition)

    async def _definition_node(
        self, definition: WorkflowDefinition, node_id: UUID
    ) -> DefinitionNode:
        workflow_node = await self._db.get_node(node_id)
        if workflow_node is None:
            raise DefinitionError(f"Workflow node not found: {node_id}")
        node = definition.node(workflow_node.node_key)
        if node is None:
            raise DefinitionError(f"Definition node not found for workflow node: {node_id}")
        return node
