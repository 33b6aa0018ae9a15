import pytest

from conftest import TENANT, trigger
from hrflow.errors import InvalidTransitionError, NotFoundError
from hrflow.workflows import (
    create_workflow_draft,
    get_workflow,
    list_versions,
    list_workflows,
    publish_workflow,
    slugify,
    update_workflow_draft,
)


def test_slugify():
    assert slugify("  New Hire -- Onboarding!  ") == "new-hire-onboarding"
    assert slugify("***") == ""


@pytest.mark.asyncio
async def test_create_draft_with_first_version(db):
    workflow = await create_workflow_draft(
        db, TENANT, "New Hire Onboarding", kind="onboarding", definition={"nodes": [trigger()]}, created_by="u1"
    )

    assert workflow.status == "draft"
    assert workflow.slug == "new-hire-onboarding"
    assert workflow.active_version_id is None
    versions = await list_versions(db, workflow.id)
    assert [(v.version_number, v.is_active) for v in versions] == [(1, False)]
    assert versions[0].definition["nodes"][0]["id"] == "start"


@pytest.mark.asyncio
async def test_slugs_are_unique_per_tenant(db):
    first = await create_workflow_draft(db, TENANT, "Offboarding", kind="offboarding")
    second = await create_workflow_draft(db, TENANT, "Offboarding", kind="offboarding")
    other_tenant = await create_workflow_draft(db, "other", "Offboarding", kind="offboarding")

    assert first.slug == "offboarding"
    assert second.slug.startswith("offboarding-")
    assert len(second.slug) == len("offboarding-") + 8
    assert other_tenant.slug == "offboarding"


@pytest.mark.asyncio
async def test_invalid_draft_input(db):
    with pytest.raises(ValueError):
        await create_workflow_draft(db, TENANT, "  ")
    with pytest.raises(ValueError):
        await create_workflow_draft(db, TENANT, "Payroll", kind="payroll")


@pytest.mark.asyncio
async def test_publish_activates_latest_version(db):
    workflow = await create_workflow_draft(db, TENANT, "Onboarding", definition={"nodes": [trigger()]})

    published = await publish_workflow(db, TENANT, workflow.id, published_by="u1")

    assert published.status == "published"
    versions = await list_versions(db, workflow.id)
    assert published.active_version_id == versions[0].id
    assert versions[0].is_active
    assert versions[0].published_at is not None


@pytest.mark.asyncio
async def test_editing_published_workflow_appends_version(db):
    workflow = await create_workflow_draft(db, TENANT, "Onboarding", definition={"nodes": [trigger()]})
    await publish_workflow(db, TENANT, workflow.id)

    await update_workflow_draft(db, TENANT, workflow.id, definition={"nodes": [trigger("other")]})
    versions = await list_versions(db, workflow.id)
    assert [v.version_number for v in versions] == [1, 2]
    assert versions[0].definition["nodes"][0]["id"] == "start"
    assert versions[1].definition["nodes"][0]["id"] == "other"

    await update_workflow_draft(db, TENANT, workflow.id, definition={"nodes": []})
    assert len(await list_versions(db, workflow.id)) == 2

    republished = await publish_workflow(db, TENANT, workflow.id)
    versions = await list_versions(db, workflow.id)
    assert republished.active_version_id == versions[1].id
    assert [v.is_active for v in versions] == [False, True]


@pytest.mark.asyncio
async def test_status_only_moves_forward(db):
    workflow = await create_workflow_draft(db, TENANT, "Onboarding")

    renamed = await update_workflow_draft(db, TENANT, workflow.id, name="Onboarding v2", status="published")
    assert renamed.status == "published"
    assert (await get_workflow(db, TENANT, workflow.id)).name == "Onboarding v2"

    with pytest.raises(InvalidTransitionError):
        await update_workflow_draft(db, TENANT, workflow.id, status="draft")
    with pytest.raises(ValueError):
        await update_workflow_draft(db, TENANT, workflow.id)


@pytest.mark.asyncio
async def test_lookups_are_tenant_scoped(db):
    workflow = await create_workflow_draft(db, TENANT, "Onboarding")

    with pytest.raises(NotFoundError):
        await get_workflow(db, "other", workflow.id)
    with pytest.raises(NotFoundError):
        await publish_workflow(db, "other", workflow.id)
    assert [w.id for w in await list_workflows(db, TENANT)] == [workflow.id]
    assert await list_workflows(db, "other") == []
