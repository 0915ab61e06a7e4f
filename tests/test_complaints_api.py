import asyncio
import re
from datetime import datetime

import pytest
from fastapi import HTTPException

from hostel_tickets import complaints as service
from hostel_tickets.auth import STUDENT, Principal


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.mark.asyncio
async def test_submit_returns_pending_unassigned_ticket(client, student, submit):
    student_id, token = student
    body = await submit(
        token,
        category="Electrical",
        images=[{"url": "/uploads/socket.jpg", "mime_type": "image/jpeg", "size": 2048}],
    )

    assert re.match(r"^TKT\d{6}$", body["ticket_id"])
    assert body["status"] == "pending"
    assert body["assigned_to"] is None
    assert body["resolution_details"] is None
    assert body["rating"] is None
    assert body["student_id"] == student_id
    assert body["category"] == "electrical"
    assert body["priority"] == "medium"
    assert body["urgency"] == "moderate"
    assert body["version"] == 1
    assert [img["url"] for img in body["images"]] == ["/uploads/socket.jpg"]


@pytest.mark.asyncio
async def test_submit_requires_student(client, admin):
    payload = {"category": "plumbing", "title": "t", "description": "d", "location": "l"}
    r = await client.post("/api/v1/complaints", json=payload)
    assert r.status_code == 401

    _, admin_token = admin
    r = await client.post("/api/v1/complaints", json=payload, headers=_auth(admin_token))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_submit_validation(client, student):
    _, token = student
    base = {"category": "plumbing", "title": "Tap", "description": "Dripping", "location": "B2"}

    r = await client.post("/api/v1/complaints", json={**base, "category": "pest"}, headers=_auth(token))
    assert r.status_code == 422
    r = await client.post("/api/v1/complaints", json={**base, "title": "x" * 101}, headers=_auth(token))
    assert r.status_code == 422
    r = await client.post("/api/v1/complaints", json={**base, "priority": "urgent"}, headers=_auth(token))
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_concurrent_submissions_over_http_get_distinct_tickets(client, student):
    _, token = student
    payload = {"category": "internet", "title": "No wifi", "description": "Router down", "location": "Hall"}

    responses = await asyncio.gather(
        *[client.post("/api/v1/complaints", json=payload, headers=_auth(token)) for _ in range(30)]
    )
    assert all(r.status_code == 201 for r in responses)
    tickets = [r.json()["ticket_id"] for r in responses]
    assert len(set(tickets)) == 30


@pytest.mark.asyncio
async def test_in_progress_assigns_first_admin_only(client, student, make_admin, submit):
    _, token = student
    first_id, first_token = await make_admin("first@hostel.example.com")
    _, second_token = await make_admin("second@hostel.example.com")
    complaint = await submit(token)
    url = f"/api/v1/complaints/{complaint['id']}/status"

    r = await client.patch(url, json={"status": "in-progress"}, headers=_auth(first_token))
    assert r.status_code == 200
    assert r.json()["status"] == "in-progress"
    assert r.json()["assigned_to"] == first_id

    r = await client.patch(url, json={"status": "in-progress"}, headers=_auth(second_token))
    assert r.status_code == 200
    assert r.json()["assigned_to"] == first_id


@pytest.mark.asyncio
async def test_resolve_records_resolution_details(client, student, admin, submit):
    _, token = student
    admin_id, admin_token = admin
    complaint = await submit(token)

    r = await client.patch(
        f"/api/v1/complaints/{complaint['id']}/status",
        json={"status": "resolved", "notes": "Washer replaced", "solution": "New washer"},
        headers=_auth(admin_token),
    )
    assert r.status_code == 200
    body = r.json()
    details = body["resolution_details"]
    assert body["status"] == "resolved"
    assert details["resolved_by"] == admin_id
    assert details["notes"] == "Washer replaced"
    assert details["solution"] == "New washer"
    assert _ts(details["resolved_at"]) >= _ts(body["created_at"])


@pytest.mark.asyncio
async def test_rejected_has_no_resolution_and_is_terminal(client, student, admin, submit):
    _, token = student
    _, admin_token = admin
    complaint = await submit(token)
    url = f"/api/v1/complaints/{complaint['id']}/status"

    r = await client.patch(url, json={"status": "rejected", "notes": "Not a hostel issue"}, headers=_auth(admin_token))
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"
    assert r.json()["resolution_details"] is None

    r = await client.patch(url, json={"status": "resolved"}, headers=_auth(admin_token))
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_invalid_transitions(client, student, admin, submit):
    _, token = student
    _, admin_token = admin
    complaint = await submit(token)
    url = f"/api/v1/complaints/{complaint['id']}/status"

    r = await client.patch(url, json={"status": "closed"}, headers=_auth(admin_token))
    assert r.status_code == 400

    await client.patch(url, json={"status": "in-progress"}, headers=_auth(admin_token))
    r = await client.patch(url, json={"status": "pending"}, headers=_auth(admin_token))
    assert r.status_code == 400

    await client.patch(url, json={"status": "resolved"}, headers=_auth(admin_token))
    r = await client.patch(url, json={"status": "in-progress"}, headers=_auth(admin_token))
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_status_update_requires_complaint_permission(client, student, make_admin, submit):
    _, token = student
    _, viewer_token = await make_admin("viewer@hostel.example.com", can_manage_complaints=False)
    complaint = await submit(token)

    r = await client.patch(
        f"/api/v1/complaints/{complaint['id']}/status", json={"status": "in-progress"}, headers=_auth(viewer_token)
    )
    assert r.status_code == 403
    r = await client.patch(
        f"/api/v1/complaints/{complaint['id']}/status", json={"status": "in-progress"}, headers=_auth(token)
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_stale_version_is_rejected(client, student, admin, submit):
    _, token = student
    _, admin_token = admin
    complaint = await submit(token)
    url = f"/api/v1/complaints/{complaint['id']}/status"

    r = await client.patch(url, json={"status": "in-progress", "version": 1}, headers=_auth(admin_token))
    assert r.status_code == 200
    assert r.json()["version"] == 2

    r = await client.patch(url, json={"status": "resolved", "version": 1}, headers=_auth(admin_token))
    assert r.status_code == 409

    r = await client.get(f"/api/v1/complaints/{complaint['id']}", headers=_auth(admin_token))
    assert r.json()["status"] == "in-progress"
    assert r.json()["version"] == 2


@pytest.mark.asyncio
async def test_assign_overrides_and_reopens(client, student, admin, make_admin, submit):
    _, token = student
    admin_id, admin_token = admin
    other_id, _ = await make_admin("plumber@hostel.example.com")
    complaint = await submit(token)
    cid = complaint["id"]

    await client.patch(f"/api/v1/complaints/{cid}/status", json={"status": "resolved"}, headers=_auth(admin_token))
    r = await client.patch(f"/api/v1/complaints/{cid}/assign", json={"admin_id": other_id}, headers=_auth(admin_token))
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "in-progress"
    assert body["assigned_to"] == other_id
    # The earlier resolution record survives the reopen
    assert body["resolution_details"]["resolved_by"] == admin_id

    r = await client.get(f"/api/v1/complaints/{cid}/assignments", headers=_auth(admin_token))
    assert r.status_code == 200
    audits = r.json()
    assert len(audits) == 1
    assert audits[0]["assigned_by"] == admin_id
    assert audits[0]["assigned_to"] == other_id


@pytest.mark.asyncio
async def test_assign_unknown_admin_or_complaint(client, student, admin, submit):
    _, token = student
    _, admin_token = admin
    complaint = await submit(token)

    r = await client.patch(
        f"/api/v1/complaints/{complaint['id']}/assign", json={"admin_id": "nobody"}, headers=_auth(admin_token)
    )
    assert r.status_code == 404
    r = await client.patch("/api/v1/complaints/missing/assign", json={"admin_id": "nobody"}, headers=_auth(admin_token))
    assert r.status_code == 404
    r = await client.patch("/api/v1/complaints/missing/status", json={"status": "resolved"}, headers=_auth(admin_token))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_ownership_on_view(client, student, other_student, admin, submit):
    _, token = student
    _, other_token = other_student
    _, admin_token = admin
    complaint = await submit(token)
    url = f"/api/v1/complaints/{complaint['id']}"

    assert (await client.get(url, headers=_auth(token))).status_code == 200
    assert (await client.get(url, headers=_auth(other_token))).status_code == 403
    assert (await client.get(url, headers=_auth(admin_token))).status_code == 200
    assert (await client.get(url)).status_code == 401
    assert (await client.get("/api/v1/complaints/missing", headers=_auth(admin_token))).status_code == 404


@pytest.mark.asyncio
async def test_rating_rules(client, student, other_student, admin, submit):
    _, token = student
    _, other_token = other_student
    _, admin_token = admin
    complaint = await submit(token)
    cid = complaint["id"]
    rate_url = f"/api/v1/complaints/{cid}/rating"

    r = await client.post(rate_url, json={"rating": 5}, headers=_auth(token))
    assert r.status_code == 400
    assert r.json()["detail"] == "Only resolved complaints can be rated"

    await client.patch(f"/api/v1/complaints/{cid}/status", json={"status": "resolved"}, headers=_auth(admin_token))

    r = await client.post(rate_url, json={"rating": 5}, headers=_auth(other_token))
    assert r.status_code == 403
    r = await client.post(rate_url, json={"rating": 6}, headers=_auth(token))
    assert r.status_code == 422
    r = await client.post(rate_url, json={"rating": 5}, headers=_auth(admin_token))
    assert r.status_code == 403

    r = await client.post(rate_url, json={"rating": 5, "feedback": "Fixed quickly"}, headers=_auth(token))
    assert r.status_code == 200
    assert r.json()["rating"]["score"] == 5
    assert r.json()["rating"]["feedback"] == "Fixed quickly"

    r = await client.post(rate_url, json={"rating": 2}, headers=_auth(token))
    assert r.status_code == 200
    assert r.json()["rating"]["score"] == 2


@pytest.mark.asyncio
async def test_rate_complaint_rejects_out_of_range_score(client, session_factory, student, admin, submit):
    student_id, token = student
    _, admin_token = admin
    complaint = await submit(token)
    await client.patch(
        f"/api/v1/complaints/{complaint['id']}/status", json={"status": "resolved"}, headers=_auth(admin_token)
    )
    principal = Principal(id=student_id, role=STUDENT, account=None)

    for bad in (0, 6, True):
        async with session_factory() as session:
            with pytest.raises(HTTPException) as exc_info:
                await service.rate_complaint(session, complaint["id"], principal, bad)
        assert exc_info.value.status_code == 400

    r = await client.get(f"/api/v1/complaints/{complaint['id']}", headers=_auth(token))
    assert r.json()["rating"] is None
    assert r.json()["version"] == 2
