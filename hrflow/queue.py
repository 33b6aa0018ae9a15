"""Background processor that resumes delayed workflow nodes."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import HrflowConfig
from .contracts import StepContext
from .db import WorkflowDB
from .db.models import TERMINAL_RUN_STATUSES, WorkflowActionQueue, utcnow
from .definition import WorkflowDefinition
from .engine import WorkflowEngine
from .utils.retry import compute_backoff

logger = logging.getLogger(__name__)


class WorkflowQueueProcessor:
    """Poll the action queue and hand due entries back to the engine.

    Assumes a single active processor: the ``_processing`` flag only keeps
    this instance from running overlapping sweeps.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        poll_interval: float = 60.0,
        batch_size: int = 50,
        max_attempts: int = 3,
        db: WorkflowDB | None = None,
    ) -> None:
        self._engine = engine
        self._db = db or engine.db
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self._task: Optional[asyncio.Task] = None
        self._processing = False

    @classmethod
    def from_config(
        cls, engine: WorkflowEngine, config: HrflowConfig
    ) -> "WorkflowQueueProcessor":
        return cls(
            engine,
            poll_interval=config.queue.poll_interval,
            batch_size=config.queue.batch_size,
            max_attempts=config.queue.max_attempts,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Sweep now and then every ``poll_interval`` seconds in the background."""
        if self.running:
            logger.warning("Workflow queue processor already started")
            return
        logger.info(
            f"Starting workflow queue processor (polling every {self.poll_interval}s)"
        )
        self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Workflow queue processor stopped")

    async def run(self, lifespan: Optional[float] = None) -> None:
        """Poll until cancelled.

        Args:
            lifespan: Maximum time in seconds to keep polling. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            try:
                await self.process_queue()
            except Exception:
                logger.exception("Error processing workflow queue")

            delay = self.poll_interval
            if lifespan is not None:
                remaining = lifespan - (loop.time() - start_time)
                if remaining <= 0:
                    break
                delay = min(delay, remaining)
            await asyncio.sleep(delay)

    async def process_queue(self) -> int:
        """Run one sweep over due entries and return how many were handled."""
        if self._processing:
            return 0
        self._processing = True
        try:
            entries = await self._db.due_queue_entries(utcnow(), limit=self.batch_size)
            if not entries:
                return 0
            logger.info(f"Processing {len(entries)} queued workflow actions")
            for entry in entries:
                await self._process_entry(entry)
            return len(entries)
        finally:
            self._processing = False

    async def _process_entry(self, entry: WorkflowActionQueue) -> None:
        try:
            ctx = await self._resolve(entry)
            if ctx is None:
                await self._db.delete_queue_entry(entry.id)
                return
            await self._engine.process_step(ctx)
            await self._db.delete_queue_entry(entry.id)
        except Exception as e:
            await self._record_failure(entry, e)

    async def _resolve(self, entry: WorkflowActionQueue) -> Optional[StepContext]:
        """Build the resume context, or ``None`` when the entry is orphaned."""
        run = await self._db.get_run(entry.run_id)
        if run is None:
            logger.warning(f"Dropping queue item {entry.id}: run {entry.run_id} not found")
            return None
        if run.status in TERMINAL_RUN_STATUSES:
            logger.info(f"Dropping queue item {entry.id}: run {run.id} is {run.status}")
            return None
        version = await self._db.get_version(run.version_id)
        workflow_node = await self._db.get_node(entry.node_id)
        if version is None or workflow_node is None:
            logger.warning(f"Dropping queue item {entry.id}: node {entry.node_id} not found")
            return None
        node = WorkflowDefinition.from_raw(version.definition).node(workflow_node.node_key)
        if node is None:
            logger.warning(
                f"Dropping queue item {entry.id}: {workflow_node.node_key} left the definition"
            )
            return None
        return StepContext(
            run_id=run.id,
            node_id=entry.node_id,
            tenant_id=run.tenant_id,
            employee_id=run.employee_id,
            context=run.context or {},
            resumed=True,
        )

    async def _record_failure(self, entry: WorkflowActionQueue, error: Exception) -> None:
        attempts = entry.attempts + 1
        message = str(error) or error.__class__.__name__
        logger.error(f"Error processing queue item {entry.id} (attempt {attempts}): {message}")

        if attempts >= self.max_attempts:
            await self._db.update_queue_entry(entry.id, attempts=attempts, last_error=message)
            step = await self._db.find_step(entry.run_id, entry.node_id)
            if step is not None:
                await self._db.update_step(step.id, status="failed", error=message)
            await self._db.update_run(
                entry.run_id, status="failed", failed_at=utcnow(), last_error=message
            )
            await self._db.delete_queue_entry(entry.id)
            return

        await self._db.update_queue_entry(
            entry.id,
            attempts=attempts,
            resume_at=utcnow() + compute_backoff(attempts),
            last_error=message,
        )
