"""
Users API: provisioning endpoints (create-teacher, create-student).

Validates the request pipeline order (bearer → guard → body → orchestrator),
status mapping, response envelopes and non-cacheable responses.
"""
from __future__ import annotations

import pytest
import httpx
from httpx import ASGITransport

from backend.identity_access.stores import InMemoryIdentityStore
from backend.provisioning.repo import InMemoryProvisioningRepo, ProvisioningRepoError
from backend.tests.utils.provisioning import CallRecorder, seed_account
from backend.web import main
from backend.web.provisioning_wiring import ProvisioningServices, set_services


pytestmark = pytest.mark.anyio("asyncio")


async def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


TEACHER_BODY = {
    "email": "new.teacher@school.example",
    "full_name": "Nina Lehrer",
    "employee_id": "EMP-100",
    "subjects": ["Biology"],
    "joining_date": "2024-08-01",
    "temporary_password": "Welcome-2024",
}

STUDENT_BODY = {
    "student_full_name": "Jonas Klein",
    "admission_number": "ADM-100",
    "class_id": "4b0f5c1e-1111-4c1a-9f00-000000000002",
    "date_of_birth": "2014-05-02",
    "enrollment_date": "2024-09-01",
    "parent_email": "k.klein@family.example",
    "parent_full_name": "Karin Klein",
    "temporary_password": "Family-2024",
}


@pytest.fixture
def stores():
    identity = InMemoryIdentityStore()
    repo = InMemoryProvisioningRepo()
    set_services(ProvisioningServices(identity, repo))
    return identity, repo


def _token_for(stores, email: str, role: str, **kwargs) -> str:
    identity, repo = stores
    user = seed_account(identity, repo, email=email, role=role, **kwargs)
    return identity.issue_token(user.id)


@pytest.mark.anyio
async def test_create_teacher_success_returns_201_envelope(stores):
    identity, repo = stores
    token = _token_for(stores, "admin@school.example", "super_admin")
    async with (await _client()) as c:
        r = await c.post("/api/users/create-teacher", json=TEACHER_BODY, headers=_bearer(token))
    assert r.status_code == 201
    assert r.headers.get("Cache-Control") == "private, no-store"
    body = r.json()
    assert body["success"] is True
    assert body["message"] == "Teacher created successfully"
    data = body["data"]
    assert data["email"] == "new.teacher@school.example"
    assert data["temporary_password"] == "Welcome-2024"
    assert repo.get_teacher(data["teacher_id"])["user_id"] == data["user_id"]
    assert repo.get_profile(data["user_id"])["role"] == "teacher"


@pytest.mark.anyio
async def test_missing_bearer_is_401(stores):
    async with (await _client()) as c:
        r = await c.post("/api/users/create-teacher", json=TEACHER_BODY)
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized - No token provided"}
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_unknown_token_is_401(stores):
    async with (await _client()) as c:
        r = await c.post("/api/users/create-teacher", json=TEACHER_BODY, headers=_bearer("not-a-token"))
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized - Invalid token"}


@pytest.mark.anyio
async def test_teacher_caller_cannot_create_teacher_and_nothing_is_touched(stores):
    """Scenario: unauthorized caller; no store writes, body never validated."""
    identity, repo = stores
    token = _token_for(stores, "t@school.example", "teacher")
    spy_identity = CallRecorder(identity)
    spy_repo = CallRecorder(repo)
    set_services(ProvisioningServices(spy_identity, spy_repo))
    async with (await _client()) as c:
        # Invalid body: a 403 here means the guard ran before validation.
        r = await c.post("/api/users/create-teacher", json={"email": ""}, headers=_bearer(token))
    assert r.status_code == 403
    assert r.json() == {"error": "Forbidden - Super Admin access required"}
    assert r.headers.get("Cache-Control") == "private, no-store"
    names = [n for n, _ in spy_identity.calls + spy_repo.calls]
    assert names == ["get_user_for_token", "get_profile"]
    assert len(identity) == 1


@pytest.mark.anyio
async def test_caller_without_profile_is_403(stores):
    identity, _ = stores
    user = identity.create_user(email="ghost@school.example", password="whatever-123")
    token = identity.issue_token(user.id)
    async with (await _client()) as c:
        r = await c.post("/api/users/create-teacher", json=TEACHER_BODY, headers=_bearer(token))
    assert r.status_code == 403


@pytest.mark.anyio
async def test_inactive_admin_is_403(stores):
    token = _token_for(stores, "old.admin@school.example", "super_admin", is_active=False)
    async with (await _client()) as c:
        r = await c.post("/api/users/create-teacher", json=TEACHER_BODY, headers=_bearer(token))
    assert r.status_code == 403


@pytest.mark.anyio
async def test_missing_fields_are_400_without_store_writes(stores):
    identity, repo = stores
    token = _token_for(stores, "admin@school.example", "super_admin")
    body = dict(TEACHER_BODY)
    del body["employee_id"]
    body["temporary_password"] = ""
    async with (await _client()) as c:
        r = await c.post("/api/users/create-teacher", json=body, headers=_bearer(token))
    assert r.status_code == 400
    assert r.json() == {"error": "Missing required fields: employee_id, temporary_password"}
    assert len(identity) == 1
    assert repo.teachers == {}


@pytest.mark.anyio
async def test_malformed_fields_are_400(stores):
    token = _token_for(stores, "admin@school.example", "super_admin")
    async with (await _client()) as c:
        r1 = await c.post(
            "/api/users/create-teacher",
            json={**TEACHER_BODY, "joining_date": "first of august"},
            headers=_bearer(token),
        )
        r2 = await c.post(
            "/api/users/create-teacher",
            json={**TEACHER_BODY, "subjects": "Biology"},
            headers=_bearer(token),
        )
        r3 = await c.post(
            "/api/users/create-teacher",
            content=b"not json",
            headers={**_bearer(token), "Content-Type": "application/json"},
        )
    assert r1.status_code == 400
    assert r1.json() == {"error": "Invalid fields: joining_date"}
    assert r2.status_code == 400
    assert r2.json() == {"error": "Invalid fields: subjects"}
    assert r3.status_code == 400
    assert r3.json() == {"error": "Request body must be a JSON object"}


@pytest.mark.anyio
async def test_duplicate_email_is_400_with_step_message(stores):
    identity, repo = stores
    token = _token_for(stores, "admin@school.example", "super_admin")
    seed_account(identity, repo, email="new.teacher@school.example", role="teacher")
    async with (await _client()) as c:
        r = await c.post("/api/users/create-teacher", json=TEACHER_BODY, headers=_bearer(token))
    assert r.status_code == 400
    assert r.json() == {"error": "A user with this email address has already been registered"}


@pytest.mark.anyio
async def test_teacher_record_failure_is_400_and_rolled_back(stores, monkeypatch):
    identity, repo = stores
    token = _token_for(stores, "admin@school.example", "super_admin")

    def boom(**kwargs):
        raise ProvisioningRepoError("OperationalError", "connection reset")

    monkeypatch.setattr(repo, "insert_teacher", boom)
    async with (await _client()) as c:
        r = await c.post("/api/users/create-teacher", json=TEACHER_BODY, headers=_bearer(token))
    assert r.status_code == 400
    assert r.json() == {"error": "connection reset"}
    assert identity.find_user_by_email("new.teacher@school.example") is None
    assert len(repo.profiles) == 1


@pytest.mark.anyio
async def test_unexpected_error_is_500_generic(stores, monkeypatch):
    _, repo = stores
    token = _token_for(stores, "admin@school.example", "super_admin")
    from backend.provisioning import orchestrator as orchestrator_mod

    def explode(self, data):
        raise KeyError("boom")

    monkeypatch.setattr(orchestrator_mod.ProvisioningOrchestrator, "provision_teacher", explode)
    async with (await _client()) as c:
        r = await c.post("/api/users/create-teacher", json=TEACHER_BODY, headers=_bearer(token))
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_wrong_method_is_405(stores):
    async with (await _client()) as c:
        r = await c.get("/api/users/create-teacher", headers=_bearer("irrelevant"))
    # Bearer is checked first for /api/ paths; an unknown token never reaches routing.
    assert r.status_code == 401
    token = _token_for(stores, "admin@school.example", "super_admin")
    async with (await _client()) as c:
        r = await c.get("/api/users/create-teacher", headers=_bearer(token))
    assert r.status_code == 405


@pytest.mark.anyio
async def test_teacher_can_create_student_with_new_parent(stores):
    identity, repo = stores
    token = _token_for(stores, "t@school.example", "teacher")
    async with (await _client()) as c:
        r = await c.post("/api/users/create-student", json=STUDENT_BODY, headers=_bearer(token))
    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Student and parent created successfully"
    data = body["data"]
    assert data["parent_email"] == "k.klein@family.example"
    assert data["temporary_password"] == "Family-2024"
    assert repo.get_student(data["student_id"])["parent_id"] == data["parent_id"]
    assert repo.get_profile(data["parent_id"])["role"] == "parent"


@pytest.mark.anyio
async def test_existing_parent_response_omits_password(stores):
    identity, repo = stores
    token = _token_for(stores, "admin@school.example", "super_admin")
    parent = seed_account(identity, repo, email="k.klein@family.example", role="parent")
    async with (await _client()) as c:
        r = await c.post("/api/users/create-student", json=STUDENT_BODY, headers=_bearer(token))
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["parent_id"] == parent.id
    assert "temporary_password" not in data


@pytest.mark.anyio
async def test_student_cannot_create_student(stores):
    token = _token_for(stores, "s@school.example", "student")
    async with (await _client()) as c:
        r = await c.post("/api/users/create-student", json=STUDENT_BODY, headers=_bearer(token))
    assert r.status_code == 403
    assert r.json() == {"error": "Forbidden - Admin or Teacher access required"}


@pytest.mark.anyio
async def test_health_is_public():
    async with (await _client()) as c:
        r = await c.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers.get("X-Content-Type-Options") == "nosniff"


@pytest.mark.anyio
async def test_security_headers_do_not_reload_settings_per_response(monkeypatch):
    def fail_load():
        raise AssertionError("settings reloaded per response")

    monkeypatch.setattr(main._cfg, "load_settings", fail_load)
    async with (await _client()) as c:
        dev = await c.get("/health")
        monkeypatch.setattr(main, "_PROD_LIKE", True)
        prod = await c.get("/health")
    assert dev.status_code == 200
    assert "Strict-Transport-Security" not in dev.headers
    assert prod.headers.get("Strict-Transport-Security") == "max-age=31536000; includeSubDomains"
