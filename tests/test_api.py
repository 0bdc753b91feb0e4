"""FastAPI endpoint tests using httpx.AsyncClient."""
from collections import deque

import pytest
from httpx import ASGITransport, AsyncClient

from access import audit
from auth import create_access_token, hash_password
from database.database import get_db
from database.models import ResourceType
from main import app


@pytest.fixture
async def client(session):
    async def _db():
        yield session

    app.dependency_overrides[get_db] = _db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_header(user) -> dict:
    token = create_access_token({"sub": user.id, "role": user.role, "school_id": user.school_id})
    return {"Authorization": f"Bearer {token}"}


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


async def test_login(client, session, catalog):
    catalog.teacher.password_hash = hash_password("teach123")
    await session.flush()

    resp = await client.post("/api/login", json={"email": "teacher@hillside.test", "password": "teach123"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["user_id"] == catalog.teacher.id
    assert body["school_id"] == catalog.school.id

    bad = await client.post("/api/login", json={"email": "teacher@hillside.test", "password": "nope"})
    assert bad.status_code == 401


async def test_check_requires_auth(client):
    resp = await client.get("/api/access/check", params={"resource_type": "SUBJECT", "resource_id": "x"})
    assert resp.status_code == 401


async def test_check_access(client, catalog, grants):
    await grants.library(ResourceType.ALL)
    resp = await client.get(
        "/api/access/check",
        params={"resource_type": "SUBJECT", "resource_id": catalog.maths.id},
        headers=auth_header(catalog.teacher),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["has_access"] is True
    assert body["grant_path"] == ["library_granted", "school_granted"]


async def test_check_bulk(client, catalog, grants):
    await grants.library(ResourceType.SUBJECT, subject_id=catalog.maths.id)
    resp = await client.post(
        "/api/access/check-bulk",
        json={"resources": [
            {"resource_type": "SUBJECT", "resource_id": catalog.maths.id},
            {"resource_type": "VIDEO", "resource_id": catalog.sci_video.id},
        ]},
        headers=auth_header(catalog.student1),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body[f"SUBJECT:{catalog.maths.id}"]["has_access"] is True
    assert body[f"VIDEO:{catalog.sci_video.id}"]["has_access"] is False


async def test_listings(client, catalog, grants):
    await grants.library(ResourceType.ALL)
    await grants.school_exclusion(catalog.science.id)
    headers = auth_header(catalog.student1)

    subjects = (await client.get("/api/access/subjects", headers=headers)).json()
    assert subjects["subject_ids"] == [catalog.maths.id]

    videos = (await client.get("/api/access/videos", headers=headers)).json()
    assert set(videos["video_ids"]) == {catalog.video_a.id, catalog.video_b.id}

    excluded = await client.get(f"/api/access/subjects/{catalog.maths.id}/excluded", headers=headers)
    assert excluded.status_code == 200
    assert excluded.json()["video_ids"] == []

    resources = await client.get("/api/access/resources", params={"resource_type": "SUBJECT"}, headers=headers)
    assert set(resources.json()["resource_ids"]) == {catalog.maths.id, catalog.science.id}


async def test_library_grant_forbidden_for_teachers(client, catalog):
    resp = await client.post(
        "/api/library-access/grant",
        json={"school_id": catalog.school.id, "resource_type": "ALL"},
        headers=auth_header(catalog.teacher),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Only library owners can manage library access"


async def test_library_grant_and_revoke(client, catalog):
    headers = auth_header(catalog.owner)
    resp = await client.post(
        "/api/library-access/grant",
        json={"school_id": catalog.school.id, "resource_type": "SUBJECT", "subject_id": catalog.maths.id},
        headers=headers,
    )
    assert resp.status_code == 200
    access_id = resp.json()["data"]["id"]

    dup = await client.post(
        "/api/library-access/grant",
        json={"school_id": catalog.school.id, "resource_type": "SUBJECT", "subject_id": catalog.maths.id},
        headers=headers,
    )
    assert dup.status_code == 400

    revoked = await client.delete(f"/api/library-access/{access_id}", params={"reason": "ended"}, headers=headers)
    assert revoked.status_code == 200
    assert revoked.json()["data"]["is_active"] is False


async def test_school_subject_exclusion_routes(client, catalog, grants):
    await grants.library(ResourceType.ALL)
    headers = auth_header(catalog.director)
    resp = await client.post("/api/school-access/exclusions", json={"subject_id": catalog.science.id},
                             headers=headers)
    assert resp.status_code == 200
    resp = await client.delete(f"/api/school-access/exclusions/{catalog.science.id}", headers=headers)
    assert resp.json()["message"] == "Subject included successfully"


async def test_teacher_exclude_unknown_class(client, catalog):
    resp = await client.post(
        "/api/teacher-access/exclude",
        json={"subject_id": catalog.maths.id, "resource_type": "VIDEO",
              "video_id": catalog.video_a.id, "class_id": catalog.other_class.id},
        headers=auth_header(catalog.teacher),
    )
    assert resp.status_code == 404


async def test_school_bulk_grant_route(client, catalog, grants):
    lib = await grants.library(ResourceType.ALL)
    resp = await client.post(
        "/api/school-access/grant-bulk",
        json={"library_resource_access_id": lib.id, "resource_type": "ALL",
              "class_ids": [catalog.class7.id, catalog.class8.id]},
        headers=auth_header(catalog.director),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["successful"] == 2

    empty = await client.post(
        "/api/school-access/grant-bulk",
        json={"library_resource_access_id": lib.id, "resource_type": "ALL"},
        headers=auth_header(catalog.director),
    )
    assert empty.status_code == 422


async def test_teacher_grant_routes(client, catalog, grants):
    lib = await grants.library(ResourceType.ALL)
    school_grant = await grants.school(lib, role_type="student")
    headers = auth_header(catalog.teacher)

    bulk = await client.post(
        "/api/teacher-access/grant-bulk",
        json={"school_resource_access_id": school_grant.id, "resource_type": "ALL",
              "student_ids": [catalog.student1.id, catalog.student2.id]},
        headers=headers,
    )
    assert bulk.status_code == 200
    access_id = bulk.json()["data"]["results"][0]["id"]

    updated = await client.patch(f"/api/teacher-access/{access_id}", json={"access_level": "LIMITED"},
                                 headers=headers)
    assert updated.status_code == 200
    assert updated.json()["data"]["access_level"] == "LIMITED"

    foreign = await client.delete(f"/api/teacher-access/{access_id}", headers=auth_header(catalog.director))
    assert foreign.status_code == 403

    revoked = await client.delete(f"/api/teacher-access/{access_id}", params={"reason": "left"}, headers=headers)
    assert revoked.status_code == 200
    assert revoked.json()["data"]["is_active"] is False

    missing = await client.patch("/api/teacher-access/nope", json={"is_active": True}, headers=headers)
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Access not found or does not belong to you"


@pytest.fixture
def audit_memory(monkeypatch, catalog):
    entries = deque([
        {"action": "CREATED", "entity_type": "LibraryResourceAccess",
         "platform_id": catalog.platform.id, "school_id": catalog.school.id},
        {"action": "EXCLUDED", "entity_type": "SchoolResourceExclusion",
         "platform_id": None, "school_id": catalog.school.id},
    ])
    monkeypatch.setattr(audit, "AUDIT_LOG_MEMORY", entries)
    return entries


async def test_audit_sample_for_school_director(client, catalog, audit_memory):
    resp = await client.get("/api/audit/sample", headers=auth_header(catalog.director))
    assert resp.status_code == 200
    assert [e["action"] for e in resp.json()["entries"]] == ["CREATED", "EXCLUDED"]


async def test_audit_sample_hides_other_schools(client, catalog, audit_memory):
    resp = await client.get("/api/audit/sample", headers=auth_header(catalog.other_director))
    assert resp.status_code == 200
    assert resp.json() == {"total_entries": 0, "entries": []}


async def test_audit_sample_for_library_owner(client, catalog, audit_memory):
    resp = await client.get("/api/audit/sample", headers=auth_header(catalog.owner))
    assert resp.status_code == 200
    entries = resp.json()["entries"]
    assert [e["entity_type"] for e in entries] == ["LibraryResourceAccess"]


@pytest.mark.parametrize("user", ["student1", "teacher"])
async def test_audit_sample_forbidden(client, catalog, audit_memory, user):
    resp = await client.get("/api/audit/sample", headers=auth_header(getattr(catalog, user)))
    assert resp.status_code == 403
