import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from conftest import TENANT, edge, email, publish, trigger
from hrflow import TriggerEvent, WorkflowEngine, WorkflowQueueProcessor
from hrflow.db.models import utcnow
from hrflow.utils.retry import compute_backoff


def _delay(node_id="wait", value=2, unit="hour"):
    return {"id": node_id, "type": "delay", "config": {"duration": {"value": value, "unit": unit}}}


async def _start(engine):
    result = await engine.handle_trigger(
        TriggerEvent(type="employee.created", tenant_id=TENANT, employee_id="emp-1")
    )
    return result.run_ids[0]


async def _make_due(db, run_id):
    for entry in await db.list_queue_entries(run_id):
        await db.update_queue_entry(entry.id, resume_at=utcnow() - timedelta(seconds=1))


class FailingEngine(WorkflowEngine):
    async def process_step(self, ctx):
        raise RuntimeError("resume failed")


class FlakyResumeEngine(WorkflowEngine):
    """Fails to resume delay nodes the first ``failures`` times."""

    def __init__(self, db, hooks, failures):
        super().__init__(db, hooks)
        self.failures = failures

    async def _execute_delay(self, ctx, node):
        if ctx.resumed and self.failures > 0:
            self.failures -= 1
            raise RuntimeError("transient")
        return await super()._execute_delay(ctx, node)


def test_backoff_doubles_in_minutes():
    assert [compute_backoff(n) for n in (1, 2, 3)] == [
        timedelta(minutes=2),
        timedelta(minutes=4),
        timedelta(minutes=8),
    ]


@pytest.mark.asyncio
async def test_delay_node_enqueues_one_entry_and_suspends(db, engine):
    await publish(db, {"nodes": [trigger("a"), _delay(), email("b")], "edges": [edge("a", "wait"), edge("wait", "b")]})

    before = utcnow()
    run_id = await _start(engine)

    entries = await db.list_queue_entries(run_id)
    assert len(entries) == 1
    entry = entries[0]
    expected = before + timedelta(hours=2)
    assert abs((entry.resume_at - expected).total_seconds()) <= 1
    assert entry.attempts == 0
    assert entry.metadata_["delay"] == {"value": 2, "unit": "hour"}

    step = await db.find_step(run_id, entry.node_id)
    assert step.status == "queued"
    assert (await db.get_run(run_id)).status == "in_progress"


@pytest.mark.asyncio
async def test_delay_defaults_to_one_day(db, engine):
    await publish(db, {"nodes": [trigger("a"), {"id": "wait", "type": "delay"}], "edges": [edge("a", "wait")]})

    before = utcnow()
    run_id = await _start(engine)

    entry = (await db.list_queue_entries(run_id))[0]
    assert abs((entry.resume_at - (before + timedelta(days=1))).total_seconds()) <= 1


@pytest.mark.asyncio
async def test_entries_not_yet_due_are_left_alone(db, engine):
    await publish(db, {"nodes": [trigger("a"), _delay()], "edges": [edge("a", "wait")]})
    run_id = await _start(engine)

    processor = WorkflowQueueProcessor(engine)
    assert await processor.process_queue() == 0
    assert len(await db.list_queue_entries(run_id)) == 1


@pytest.mark.asyncio
async def test_due_entry_resumes_run_to_completion(db, engine, hooks):
    await publish(db, {"nodes": [trigger("a"), _delay(), email("b", "day-two")], "edges": [edge("a", "wait"), edge("wait", "b")]})
    run_id = await _start(engine)
    assert hooks.emails == []

    await _make_due(db, run_id)
    processor = WorkflowQueueProcessor(engine)
    assert await processor.process_queue() == 1

    assert await db.list_queue_entries(run_id) == []
    assert [template for template, _, _ in hooks.emails] == ["day-two"]
    steps = await db.list_steps(run_id)
    assert len(steps) == 3
    assert all(step.status == "completed" for step in steps)
    assert (await db.get_run(run_id)).status == "completed"


@pytest.mark.asyncio
async def test_failed_resume_backs_off_then_fails_run(db, engine):
    await publish(db, {"nodes": [trigger("a"), _delay()], "edges": [edge("a", "wait")]})
    run_id = await _start(engine)
    processor = WorkflowQueueProcessor(FailingEngine(db), max_attempts=3)

    for attempt, minutes in ((1, 2), (2, 4)):
        await _make_due(db, run_id)
        before = utcnow()
        assert await processor.process_queue() == 1
        entry = (await db.list_queue_entries(run_id))[0]
        assert entry.attempts == attempt
        assert entry.last_error == "resume failed"
        expected = before + timedelta(minutes=minutes)
        assert abs((entry.resume_at - expected).total_seconds()) <= 1
        assert (await db.get_run(run_id)).status == "in_progress"

    await _make_due(db, run_id)
    assert await processor.process_queue() == 1

    assert await db.list_queue_entries(run_id) == []
    run = await db.get_run(run_id)
    assert run.status == "failed"
    assert run.last_error == "resume failed"
    assert run.failed_at is not None
    assert [step.error for step in await db.list_steps(run_id, status="failed")] == ["resume failed"]


@pytest.mark.asyncio
async def test_orphaned_entries_are_deleted(db, engine):
    await publish(db, {"nodes": [trigger("a"), _delay()], "edges": [edge("a", "wait")]})
    run_id = await _start(engine)
    orphan = await db.enqueue(uuid4(), uuid4(), resume_at=utcnow() - timedelta(minutes=1))
    unknown_node = await db.enqueue(run_id, uuid4(), resume_at=utcnow() - timedelta(minutes=1))

    processor = WorkflowQueueProcessor(engine)
    assert await processor.process_queue() == 2

    remaining = [entry.id for entry in await db.list_queue_entries()]
    assert orphan.id not in remaining
    assert unknown_node.id not in remaining
    assert len(remaining) == 1
    assert (await db.get_run(run_id)).status == "in_progress"


@pytest.mark.asyncio
async def test_batch_size_limits_a_sweep(db, engine):
    await publish(db, {"nodes": [trigger("a"), _delay()], "edges": [edge("a", "wait")]})
    for _ in range(3):
        run_id = await _start(engine)
        await _make_due(db, run_id)

    processor = WorkflowQueueProcessor(engine, batch_size=2)
    assert await processor.process_queue() == 2
    assert await processor.process_queue() == 1
    assert await processor.process_queue() == 0


@pytest.mark.asyncio
async def test_overlapping_sweeps_are_skipped(db, engine):
    processor = WorkflowQueueProcessor(engine)
    processor._processing = True
    assert await processor.process_queue() == 0
    processor._processing = False
    assert await processor.process_queue() == 0


@pytest.mark.asyncio
async def test_start_and_stop_background_loop(db, engine):
    await publish(db, {"nodes": [trigger("a"), _delay()], "edges": [edge("a", "wait")]})
    run_id = await _start(engine)
    await _make_due(db, run_id)

    processor = WorkflowQueueProcessor(engine, poll_interval=0.05)
    processor.start()
    assert processor.running
    for _ in range(50):
        if not await db.list_queue_entries(run_id):
            break
        await asyncio.sleep(0.05)
    await processor.stop()

    assert not processor.running
    assert await db.list_queue_entries(run_id) == []
    assert (await db.get_run(run_id)).status == "completed"


@pytest.mark.asyncio
async def test_resume_failure_is_retried_before_failing_run(db, hooks):
    engine = FlakyResumeEngine(db, hooks, failures=3)
    await publish(db, {"nodes": [trigger("a"), _delay(), email("b")], "edges": [edge("a", "wait"), edge("wait", "b")]})
    run_id = await _start(engine)
    processor = WorkflowQueueProcessor(engine, max_attempts=3)

    for attempt in (1, 2):
        await _make_due(db, run_id)
        assert await processor.process_queue() == 1
        entries = await db.list_queue_entries(run_id)
        assert [(entry.attempts, entry.last_error) for entry in entries] == [(attempt, "transient")]
        assert (await db.get_run(run_id)).status == "in_progress"
        step = await db.find_step(run_id, entries[0].node_id)
        assert step.status == "queued"
        assert step.error == "transient"

    node_id = entries[0].node_id
    await _make_due(db, run_id)
    assert await processor.process_queue() == 1

    assert await db.list_queue_entries(run_id) == []
    run = await db.get_run(run_id)
    assert run.status == "failed"
    assert run.last_error == "transient"
    assert (await db.find_step(run_id, node_id)).status == "failed"
    assert hooks.emails == []


@pytest.mark.asyncio
async def test_resume_succeeds_after_transient_failure(db, hooks):
    engine = FlakyResumeEngine(db, hooks, failures=1)
    await publish(db, {"nodes": [trigger("a"), _delay(), email("b", "day-two")], "edges": [edge("a", "wait"), edge("wait", "b")]})
    run_id = await _start(engine)
    processor = WorkflowQueueProcessor(engine)

    await _make_due(db, run_id)
    await processor.process_queue()
    assert (await db.list_queue_entries(run_id))[0].attempts == 1

    await _make_due(db, run_id)
    assert await processor.process_queue() == 1

    assert await db.list_queue_entries(run_id) == []
    assert [template for template, _, _ in hooks.emails] == ["day-two"]
    assert (await db.get_run(run_id)).status == "completed"
