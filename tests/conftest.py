from __future__ import annotations

import pytest
import pytest_asyncio

import hrflow.db as hrflow_db
from hrflow import WorkflowDB, WorkflowEngine, WorkflowHooks
from hrflow.workflows import create_workflow_draft, publish_workflow

TENANT = "acme"


class RecordingHooks(WorkflowHooks):
    """Collects side effects instead of sending them."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.emails = []
        self.document_requests = []

    async def send_email(self, template, *, run_id, tenant_id, employee_id, context):
        if self.fail:
            raise RuntimeError("smtp down")
        self.emails.append((template, run_id, employee_id))

    async def request_documents(self, documents, *, run_id, tenant_id, employee_id):
        if self.fail:
            raise RuntimeError("document service down")
        self.document_requests.append((documents, run_id, employee_id))


def trigger(node_id="start", event="employee.created"):
    return {"id": node_id, "type": "trigger", "config": {"event": event}}


def email(node_id, template="welcome"):
    return {"id": node_id, "type": "action", "config": {"template": template}}


def edge(source, target):
    return {"source": source, "target": target}


async def publish(db, definition, name="Onboarding", kind="onboarding", tenant=TENANT):
    workflow = await create_workflow_draft(db, tenant, name, kind=kind, definition=definition)
    return await publish_workflow(db, tenant, workflow.id)


@pytest_asyncio.fixture
async def db(tmp_path):
    database = WorkflowDB(f"sqlite+aiosqlite:///{tmp_path / 'hrflow.db'}")
    await database.init_db()
    yield database
    await database.dispose()


@pytest.fixture
def hooks():
    return RecordingHooks()


@pytest.fixture
def engine(db, hooks):
    return WorkflowEngine(db, hooks)


@pytest.fixture(autouse=True)
def _reset_database_singleton():
    hrflow_db._database_instance = None
    yield
    hrflow_db._database_instance = None
