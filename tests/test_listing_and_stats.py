import pytest


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_my_complaints_only_lists_own(client, student, other_student, submit):
    _, token = student
    _, other_token = other_student
    await submit(token, title="First")
    await submit(token, title="Second")
    await submit(other_token, title="Other")

    r = await client.get("/api/v1/complaints/my", headers=_auth(token))
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    assert {c["title"] for c in body["items"]} == {"First", "Second"}

    r = await client.get("/api/v1/complaints/my?page_size=1&page=2", headers=_auth(token))
    body = r.json()
    assert len(body["items"]) == 1
    assert body["total_pages"] == 2


@pytest.mark.asyncio
async def test_admin_listing_filters(client, student, admin, make_admin, submit):
    _, token = student
    admin_id, admin_token = admin
    _, other_token = await make_admin("other@hostel.example.com")
    first = await submit(token, category="plumbing")
    second = await submit(token, category="electrical")
    await submit(token, category="electrical")

    await client.patch(f"/api/v1/complaints/{first['id']}/status", json={"status": "in-progress"}, headers=_auth(admin_token))
    await client.patch(f"/api/v1/complaints/{second['id']}/status", json={"status": "rejected"}, headers=_auth(other_token))

    r = await client.get("/api/v1/complaints", headers=_auth(admin_token))
    assert r.json()["total"] == 3

    r = await client.get("/api/v1/complaints?category=electrical", headers=_auth(admin_token))
    assert r.json()["total"] == 2

    r = await client.get("/api/v1/complaints?status=rejected", headers=_auth(admin_token))
    assert [c["id"] for c in r.json()["items"]] == [second["id"]]

    r = await client.get("/api/v1/complaints?assigned=me", headers=_auth(admin_token))
    assert [c["id"] for c in r.json()["items"]] == [first["id"]]

    r = await client.get("/api/v1/complaints?assigned=unassigned&status=all", headers=_auth(admin_token))
    assert r.json()["total"] == 2

    r = await client.get("/api/v1/complaints?assigned=someone", headers=_auth(admin_token))
    assert r.status_code == 422

    r = await client.get("/api/v1/complaints", headers=_auth(token))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_statistics(client, student, admin, submit):
    _, token = student
    _, admin_token = admin
    a = await submit(token, category="plumbing")
    b = await submit(token, category="plumbing")
    await submit(token, category="internet")
    c = await submit(token, category="internet")

    await client.patch(f"/api/v1/complaints/{a['id']}/status", json={"status": "resolved"}, headers=_auth(admin_token))
    await client.patch(f"/api/v1/complaints/{b['id']}/status", json={"status": "in-progress"}, headers=_auth(admin_token))
    await client.patch(f"/api/v1/complaints/{c['id']}/status", json={"status": "rejected"}, headers=_auth(admin_token))

    r = await client.get("/api/v1/complaints/stats/overview", headers=_auth(admin_token))
    assert r.status_code == 200
    stats = r.json()
    assert stats["total"] == 4
    assert stats["pending"] == 1
    assert stats["in_progress"] == 1
    assert stats["resolved"] == 1
    assert stats["rejected"] == 1
    assert stats["resolution_rate"] == 25.0
    assert stats["recently_resolved"] == 1
    assert stats["avg_resolution_days"] == 0.0
    by_category = {row["category"]: row for row in stats["category_stats"]}
    assert by_category["plumbing"] == {
        "category": "plumbing",
        "count": 2,
        "resolved": 1,
        "pending": 0,
        "in_progress": 1,
    }
    assert by_category["internet"]["count"] == 2

    r = await client.get("/api/v1/complaints/stats/overview", headers=_auth(token))
    assert r.status_code == 403

    r = await client.get("/api/v1/complaints/stats/public")
    assert r.status_code == 200
    assert r.json()["total"] == 4
    assert r.json()["resolution_rate"] == 25


@pytest.mark.asyncio
async def test_recent_public_is_capped(client, student, submit):
    _, token = student
    for n in range(16):
        await submit(token, title=f"Issue {n}")

    r = await client.get("/api/v1/complaints/recent/public")
    assert r.status_code == 200
    recent = r.json()
    assert len(recent) == 14
    assert set(recent[0]) == {"ticket_id", "title", "category", "status", "created_at"}


@pytest.mark.asyncio
async def test_health_and_metrics(client, student, submit):
    _, token = student
    await submit(token)

    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"
    assert r.json()["ticket_allocator"] == "sequence"

    r = await client.get("/metrics")
    assert r.status_code == 200
    assert "ticket_allocations_total" in r.text
