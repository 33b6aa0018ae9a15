"""Example: a delay node parks the run until the queue processor resumes it."""

import asyncio

from hrflow import (
    LoggingHooks,
    TriggerEvent,
    WorkflowEngine,
    WorkflowQueueProcessor,
    get_database,
)
from hrflow.workflows import create_workflow_draft, publish_workflow

FOLLOW_UP = {
    "nodes": [
        {"id": "hired", "type": "trigger", "config": {"event": "employee.created"}},
        {"id": "wait", "type": "delay", "config": {"duration": {"value": 1, "unit": "minute"}}},
        {"id": "check_in", "type": "action", "config": {"template": "first-week-check-in"}},
    ],
    "edges": [
        {"source": "hired", "target": "wait"},
        {"source": "wait", "target": "check_in"},
    ],
}


async def main():
    db = get_database("sqlite+aiosqlite:///./hrflow-example.db")
    await db.init_db()
    engine = WorkflowEngine(db, LoggingHooks())

    workflow = await create_workflow_draft(db, "acme", "Check-in", definition=FOLLOW_UP)
    await publish_workflow(db, "acme", workflow.id)
    result = await engine.handle_trigger(
        TriggerEvent(type="employee.created", tenant_id="acme", employee_id="emp-7")
    )
    run_id = result.run_ids[0]

    for entry in await db.list_queue_entries(run_id):
        print(f"Queued {entry.metadata_['node_key']} until {entry.resume_at:%H:%M:%S}")

    # Poll every few seconds until the delay elapses
    processor = WorkflowQueueProcessor(engine, poll_interval=5)
    await processor.run(lifespan=75)

    run = await db.get_run(run_id)
    print(f"Run status: {run.status}")
    await db.dispose()


if __name__ == "__main__":
    asyncio.run(main())
