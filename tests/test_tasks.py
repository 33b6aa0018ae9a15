import pytest

from conftest import TENANT, edge, publish, trigger
from hrflow import TriggerEvent
from hrflow.errors import InvalidTransitionError, NotFoundError
from hrflow.tasks import complete_task, list_tasks

DEFINITION = {
    "nodes": [
        trigger("a"),
        {"id": "docs", "type": "action", "config": {"kind": "create_document", "documents": ["passport", "visa"]}},
        {"id": "tasks", "type": "action", "config": {"kind": "assign_task", "tasks": ["Meet buddy"], "due_date": {"relative": "Day 2"}}},
    ],
    "edges": [edge("a", "docs"), edge("a", "tasks")],
}


async def _start(engine, employee_id):
    result = await engine.handle_trigger(
        TriggerEvent(type="employee.created", tenant_id=TENANT, employee_id=employee_id)
    )
    return result.run_ids[0]


@pytest.mark.asyncio
async def test_list_tasks_for_employee(db, engine):
    await publish(db, DEFINITION)
    await _start(engine, "emp-1")
    await _start(engine, "emp-2")

    mine = await list_tasks(engine, TENANT, employee_id="emp-1")
    assert sorted(step.task_type for step in mine) == ["document", "general"]
    assert all(step.status == "waiting_input" for step in mine)
    document = next(step for step in mine if step.task_type == "document")
    assert document.payload["document_types"] == ["passport", "visa"]
    general = next(step for step in mine if step.task_type == "general")
    assert general.due_at is not None

    assert len(await list_tasks(engine, TENANT)) == 4
    assert await list_tasks(engine, TENANT, status="completed") == []
    assert await list_tasks(engine, "other") == []


@pytest.mark.asyncio
async def test_completing_all_tasks_completes_run(db, engine):
    await publish(db, DEFINITION)
    run_id = await _start(engine, "emp-1")

    first, second = await list_tasks(engine, TENANT, employee_id="emp-1")
    done = await complete_task(engine, TENANT, first.id, {"ok": True})
    assert done.status == "completed"
    assert done.result == {"ok": True}
    assert done.completed_at is not None
    assert (await db.get_run(run_id)).status == "in_progress"

    await complete_task(engine, TENANT, second.id)
    assert (await db.get_run(run_id)).status == "completed"
    assert await list_tasks(engine, TENANT, employee_id="emp-1", status="waiting_input") == []


@pytest.mark.asyncio
async def test_complete_task_guards(db, engine):
    await publish(db, DEFINITION)
    await _start(engine, "emp-1")
    task = (await list_tasks(engine, TENANT, employee_id="emp-1"))[0]

    with pytest.raises(NotFoundError):
        await complete_task(engine, "other", task.id)

    await complete_task(engine, TENANT, task.id)
    with pytest.raises(InvalidTransitionError):
        await complete_task(engine, TENANT, task.id)


@pytest.mark.asyncio
async def test_queued_delay_cannot_be_completed_by_hand(db, engine):
    await publish(
        db,
        {
            "nodes": [trigger("a"), {"id": "wait", "type": "delay"}],
            "edges": [edge("a", "wait")],
        },
    )
    run_id = await _start(engine, "emp-1")
    delay_step = (await db.list_steps(run_id, status="queued"))[0]

    with pytest.raises(InvalidTransitionError):
        await complete_task(engine, TENANT, delay_step.id)

    assert (await db.get_step(delay_step.id)).status == "queued"
    assert len(await db.list_queue_entries(run_id)) == 1
