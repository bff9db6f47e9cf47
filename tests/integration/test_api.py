"""Integration tests for the HTTP API over SQL storage.

Drives complete workflows through the FastAPI routes with the acting
identity carried in ``X-Actor-*`` headers, and checks what ends up in the
database through the audit endpoints.
"""

from __future__ import annotations

import csv
import io

import pytest
from httpx import AsyncClient

from productflow.engine import WorkflowEngine
from productflow.notifications import InMemoryNotifier, NotificationEventType

EDITOR = {"X-Actor-Id": "ed-1", "X-Actor-Role": "editor", "X-Actor-Name": "Edith Editor"}
REVIEWER = {"X-Actor-Id": "rev-1", "X-Actor-Role": "reviewer"}
ADMIN = {"X-Actor-Id": "adm-1", "X-Actor-Role": "admin"}
VIEWER = {"X-Actor-Id": "view-1", "X-Actor-Role": "viewer"}


async def _create(client: AsyncClient, record_id: str, **body) -> dict:
    response = await client.post("/records/", json={"id": record_id, **body}, headers=EDITOR)
    assert response.status_code == 201, response.text
    return response.json()


async def _transition(client: AsyncClient, record_id: str, headers: dict, **body) -> dict:
    response = await client.post(
        f"/records/{record_id}/transitions", json=body, headers=headers
    )
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_publish_lifecycle(async_client: AsyncClient) -> None:
    """Test DRAFT -> REVIEW -> APPROVED -> PUBLISHED through the API."""
    created = await _create(async_client, "sku-1", name="Desk lamp", attributes={"price": 20})
    assert created["lifecycle_state"] == "DRAFT"

    submitted = await _transition(
        async_client, "sku-1", EDITOR, to_state="REVIEW", assigned_reviewer_id="rev-1"
    )
    assert submitted["previous_state"] == "DRAFT"
    assert submitted["new_state"] == "REVIEW"
    assert submitted["record"]["submitted_by"] == "ed-1"

    next_states = await async_client.get("/records/sku-1/next-states", headers=REVIEWER)
    assert next_states.json() == ["APPROVED", "REJECTED"]

    await _transition(async_client, "sku-1", REVIEWER, to_state="APPROVED", comment="Looks good")
    published = await _transition(async_client, "sku-1", ADMIN, to_state="PUBLISHED")
    assert published["record"]["published_by"] == "adm-1"

    record = (await async_client.get("/records/sku-1", headers=VIEWER)).json()
    assert record["lifecycle_state"] == "PUBLISHED"
    assert [h["state"] for h in record["state_history"]] == ["REVIEW", "APPROVED", "PUBLISHED"]
    assert record["attributes"] == {"price": 20}

    progress = (await async_client.get("/records/sku-1/progress", headers=VIEWER)).json()
    assert progress["percentage"] == 100.0

    consistency = (await async_client.get("/records/sku-1/consistency", headers=VIEWER)).json()
    assert consistency["is_valid"] is True

    history = (await async_client.get("/audit/records/sku-1", headers=VIEWER)).json()
    assert [e["action"] for e in history] == ["record_created", "submit", "approve", "publish"]
    assert history[2]["comment"] == "Looks good"
    assert history[1]["priority"] == "HIGH"


@pytest.mark.asyncio
async def test_reject_returns_record_to_draft(
    async_client: AsyncClient, notifier: InMemoryNotifier
) -> None:
    """Test that a rejection chains the automatic revert and both are audited."""
    await _create(async_client, "sku-1")
    await _transition(async_client, "sku-1", EDITOR, to_state="REVIEW", assigned_reviewer_id="rev-1")

    rejected = await _transition(
        async_client, "sku-1", REVIEWER, to_state="REJECTED", reason="Missing dimensions"
    )

    assert rejected["new_state"] == "REJECTED"
    assert rejected["record"]["lifecycle_state"] == "DRAFT"
    assert [t["new_state"] for t in rejected["automatic_transitions"]] == ["DRAFT"]

    history = (await async_client.get("/audit/records/sku-1", headers=VIEWER)).json()
    assert {e["action"] for e in history} == {
        "record_created",
        "submit",
        "reject",
        "revert_to_draft",
    }
    reject_entry = next(e for e in history if e["action"] == "reject")
    assert reject_entry["reason"] == "Missing dimensions"

    assert notifier.of_type(NotificationEventType.REVIEW_REQUESTED)


@pytest.mark.asyncio
async def test_rejected_transitions_change_nothing(async_client: AsyncClient) -> None:
    await _create(async_client, "sku-1")

    denied = await async_client.post(
        "/records/sku-1/transitions", json={"to_state": "REVIEW"}, headers=VIEWER
    )
    assert denied.status_code == 403

    missing_reviewer = await async_client.post(
        "/records/sku-1/transitions", json={"to_state": "REVIEW"}, headers=EDITOR
    )
    assert missing_reviewer.status_code == 422
    assert missing_reviewer.json()["detail"]["code"] == "MISSING_PRECONDITION"

    stale = await async_client.post(
        "/records/sku-1/transitions",
        json={"to_state": "PUBLISHED", "from_state": "APPROVED"},
        headers=ADMIN,
    )
    assert stale.status_code == 400
    assert stale.json()["detail"]["error"] == "Record sku-1 is in DRAFT, not APPROVED"

    record = (await async_client.get("/records/sku-1", headers=VIEWER)).json()
    assert record["lifecycle_state"] == "DRAFT"
    history = (await async_client.get("/audit/records/sku-1", headers=VIEWER)).json()
    assert [e["action"] for e in history] == ["record_created"]


@pytest.mark.asyncio
async def test_validate_endpoint_does_not_execute(async_client: AsyncClient) -> None:
    await _create(async_client, "sku-1")

    response = await async_client.post(
        "/records/sku-1/transitions/validate",
        json={"to_state": "REVIEW", "assigned_reviewer_id": "rev-1"},
        headers=EDITOR,
    )

    assert response.status_code == 200
    assert response.json()["is_valid"] is True
    record = (await async_client.get("/records/sku-1", headers=VIEWER)).json()
    assert record["lifecycle_state"] == "DRAFT"


@pytest.mark.asyncio
async def test_edit_session_blocks_other_editors(async_client: AsyncClient) -> None:
    other = {"X-Actor-Id": "ed-2", "X-Actor-Role": "editor", "X-Actor-Name": "Eddie Other"}
    await _create(async_client, "sku-1")

    started = await async_client.post("/records/sku-1/edit-session", headers=other)
    assert started.status_code == 201

    blocked = await async_client.post(
        "/records/sku-1/transitions",
        json={"to_state": "REVIEW", "assigned_reviewer_id": "rev-1"},
        headers=EDITOR,
    )
    assert blocked.status_code == 409
    assert blocked.json()["detail"]["error"] == "Record sku-1 is being edited by Eddie Other"

    current = await async_client.get("/records/sku-1/edit-session", headers=EDITOR)
    assert current.json()["actor_id"] == "ed-2"

    ended = await async_client.delete("/records/sku-1/edit-session", headers=other)
    assert ended.status_code == 204

    await _transition(async_client, "sku-1", EDITOR, to_state="REVIEW", assigned_reviewer_id="rev-1")


@pytest.mark.asyncio
async def test_automatic_assignment_and_reviewer_summary(async_client: AsyncClient) -> None:
    """Test WORKLOAD assignment across registered reviewers."""
    for user_id, current in (("rev-1", 3), ("rev-2", 0)):
        response = await async_client.post(
            "/reviewers/",
            json={"user_id": user_id, "current_assignments": current, "max_assignments": 5},
            headers=ADMIN,
        )
        assert response.status_code == 201

    await _create(async_client, "sku-1")
    submitted = await _transition(
        async_client,
        "sku-1",
        EDITOR,
        to_state="REVIEW",
        auto_assign={"policy": "WORKLOAD", "pool": ["rev-1", "rev-2"]},
    )
    assert submitted["record"]["assigned_reviewer_id"] == "rev-2"

    summary = (await async_client.get("/reviewers/rev-2", headers=EDITOR)).json()
    assert summary["current_assignments"] == 1

    away = await async_client.put(
        "/reviewers/rev-2/availability", json={"availability": "AWAY"}, headers=ADMIN
    )
    assert away.status_code == 200
    await async_client.put(
        "/reviewers/rev-2/backup", json={"backup_reviewer_id": "rev-1"}, headers=ADMIN
    )

    handed_off = await async_client.post("/reviewers/rev-2/delegate-absence", headers=ADMIN)
    assert handed_off.status_code == 200
    assert handed_off.json()["reassigned_ids"] == ["sku-1"]

    record = (await async_client.get("/records/sku-1", headers=VIEWER)).json()
    assert record["assigned_reviewer_id"] == "rev-1"


@pytest.mark.asyncio
async def test_no_eligible_reviewer_is_409(async_client: AsyncClient) -> None:
    await _create(async_client, "sku-1")

    response = await async_client.post(
        "/records/sku-1/transitions",
        json={"to_state": "REVIEW", "auto_assign": {"pool": ["nobody"]}},
        headers=EDITOR,
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "NO_ELIGIBLE_REVIEWER"


@pytest.mark.asyncio
async def test_bulk_approval_campaign(
    async_client: AsyncClient, workflow_engine: WorkflowEngine
) -> None:
    for record_id in ("sku-1", "sku-2", "sku-3"):
        await _create(async_client, record_id)
    for record_id in ("sku-1", "sku-2"):
        await _transition(
            async_client, record_id, EDITOR, to_state="REVIEW", assigned_reviewer_id="rev-1"
        )

    editor_attempt = await async_client.post(
        "/campaigns/", json={"action": "approve"}, headers=EDITOR
    )
    assert editor_attempt.status_code == 403

    started = await async_client.post(
        "/campaigns/",
        json={"action": "approve", "filter": {"states": ["REVIEW"]}, "options": {"batch_size": 1}},
        headers=ADMIN,
    )
    assert started.status_code == 202
    campaign_id = started.json()["id"]

    await workflow_engine.runner.wait_for(campaign_id, timeout=5)

    campaign = (await async_client.get(f"/campaigns/{campaign_id}", headers=EDITOR)).json()
    assert campaign["status"] == "completed"
    assert campaign["successful_items"] == 2
    assert campaign["progress"]["total_batches"] == 2

    approved = await async_client.get(
        "/records/", params={"state": "APPROVED"}, headers=VIEWER
    )
    assert [r["id"] for r in approved.json()] == ["sku-1", "sku-2"]

    listed = (await async_client.get("/campaigns/", headers=EDITOR)).json()
    assert [c["id"] for c in listed] == [campaign_id]


@pytest.mark.asyncio
async def test_audit_query_export_and_verify(async_client: AsyncClient) -> None:
    for record_id in ("sku-1", "sku-2"):
        await _create(async_client, record_id)
    await _transition(async_client, "sku-1", EDITOR, to_state="REVIEW", assigned_reviewer_id="rev-1")

    page = (await async_client.get("/audit/", params={"page_size": 2}, headers=VIEWER)).json()
    assert page["page_info"]["total"] == 3
    assert page["page_info"]["has_more"] is True
    assert len(page["entries"]) == 2

    submits = (
        await async_client.get("/audit/", params={"action": "submit"}, headers=VIEWER)
    ).json()
    assert [e["record_id"] for e in submits["entries"]] == ["sku-1"]

    forbidden = await async_client.post("/audit/export", json={}, headers=EDITOR)
    assert forbidden.status_code == 403

    exported = await async_client.post(
        "/audit/export", params={"format": "csv"}, json={}, headers=ADMIN
    )
    assert exported.status_code == 200
    assert exported.headers["content-type"].startswith("text/csv")
    assert exported.headers["X-Export-Count"] == "3"
    rows = list(csv.DictReader(io.StringIO(exported.text)))
    assert {r["action"] for r in rows} == {"record_created", "submit"}

    verified = (await async_client.post("/audit/verify", json={}, headers=ADMIN)).json()
    assert verified == {"checked": 3, "valid": 3, "all_valid": True, "invalid_ids": []}

    stats = (await async_client.post("/audit/stats", json={}, headers=VIEWER)).json()
    assert stats["total"] == 3


@pytest.mark.asyncio
async def test_naive_audit_dates_are_read_as_utc(async_client: AsyncClient) -> None:
    await _create(async_client, "sku-1")

    response = await async_client.get(
        "/audit/", params={"start_date": "2000-01-01T00:00:00"}, headers=VIEWER
    )

    assert response.status_code == 200
    assert response.json()["page_info"]["total"] == 1

    earlier = await async_client.get(
        "/audit/", params={"end_date": "2000-01-01T00:00:00"}, headers=VIEWER
    )
    assert earlier.json()["page_info"]["total"] == 0
