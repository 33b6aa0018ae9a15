"""Example: author an onboarding workflow, raise an event and work the tasks."""

import asyncio

from hrflow import LoggingHooks, TriggerEvent, WorkflowEngine, get_database
from hrflow.tasks import complete_task, list_tasks
from hrflow.workflows import create_workflow_draft, publish_workflow

ONBOARDING = {
    "nodes": [
        {"id": "hired", "type": "trigger", "config": {"event": "employee.created"}},
        {"id": "welcome", "type": "action", "config": {"kind": "email", "template": "welcome"}},
        {
            "id": "paperwork",
            "type": "action",
            "label": "Upload paperwork",
            "config": {"kind": "create_document", "documents": ["passport", "bank_details"]},
        },
        {
            "id": "buddy",
            "type": "action",
            "config": {
                "kind": "assign_task",
                "tasks": ["Meet your buddy"],
                "due_date": {"relative": "Day 3"},
            },
        },
    ],
    "edges": [
        {"source": "hired", "target": "welcome"},
        {"source": "welcome", "target": "paperwork"},
        {"source": "welcome", "target": "buddy"},
    ],
}


async def main():
    """Run a tenant's onboarding for one new hire."""
    db = get_database("sqlite+aiosqlite:///./hrflow-example.db")
    await db.init_db()
    engine = WorkflowEngine(db, LoggingHooks())

    workflow = await create_workflow_draft(
        db, "acme", "New hire onboarding", kind="onboarding", definition=ONBOARDING
    )
    await publish_workflow(db, "acme", workflow.id)

    result = await engine.handle_trigger(
        TriggerEvent(type="employee.created", tenant_id="acme", employee_id="emp-42")
    )
    run_id = result.run_ids[0]
    print(f"Started run {run_id}")

    # The employee works through their open tasks
    for task in await list_tasks(engine, "acme", employee_id="emp-42", status="waiting_input"):
        print(f"Completing {task.task_type} task: {task.payload['title']}")
        await complete_task(engine, "acme", task.id, {"done": True})

    run = await db.get_run(run_id)
    print(f"Run status: {run.status}")

    await db.dispose()


if __name__ == "__main__":
    asyncio.run(main())
