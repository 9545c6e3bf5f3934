"""
HTTP-level tests for the RARS API.

Drives the FastAPI app through ``TestClient`` against the per-test SQLite
database, with the object store dependency replaced by the in-memory fake.

Usage:
    pytest backend/tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from rars.main import app
from rars.storage import get_storage

from conftest import PASSWORD


@pytest.fixture
def client(world):
    app.dependency_overrides[get_storage] = lambda: world.storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _login(client, principal) -> dict:
    response = client.post(
        "/api/v1/auth/login", json={"email": principal.email, "password": PASSWORD}
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _upload(client, headers, application_id, document_type):
    return client.post(
        f"/api/v1/applications/{application_id}/documents",
        headers=headers,
        data={"document_type": document_type},
        files={"file": (f"{document_type.lower()}.pdf", b"%PDF-1.4 api", "application/pdf")},
    )


# ============================================================================
# AUTH
# ============================================================================


class TestAuth:
    def test_login_and_me(self, client, world):
        headers = _login(client, world.director)
        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.status_code == 200
        body = response.json()
        assert body["email"] == world.director.email
        assert body["roles"] == ["EXECUTIVE_DIRECTOR"]
        assert body["primary_role"] == "EXECUTIVE_DIRECTOR"
        assert body["role_label"] == "Executive Director"

    def test_register_then_login(self, client):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "Neema@Clinic.example",
                "password": "long-enough-pass",
                "full_name": "Neema Kweka",
                "applicant_type": "CONSULTANT",
            },
        )
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["email"] == "neema@clinic.example"
        assert body["roles"] == ["APPLICANT"]

        login = client.post(
            "/api/v1/auth/login",
            json={"email": "neema@clinic.example", "password": "long-enough-pass"},
        )
        assert login.status_code == 200
        me = client.get(
            "/api/v1/auth/me",
            headers={"Authorization": f"Bearer {login.json()['access_token']}"},
        )
        assert me.json()["roles"] == ["APPLICANT"]

    def test_register_rejects_taken_email(self, client, world):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": world.applicant.email,
                "password": "long-enough-pass",
                "full_name": "Someone Else",
            },
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_FAILURE"

    def test_register_rejects_short_password(self, client):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": "a@b.example", "password": "short", "full_name": "A B"},
        )
        assert response.status_code == 422

    def test_wrong_password(self, client, world):
        response = client.post(
            "/api/v1/auth/login",
            json={"email": world.applicant.email, "password": "nope"},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_protected_route_needs_token(self, client):
        response = client.get("/api/v1/applications")
        assert response.status_code == 401

    def test_garbage_token(self, client):
        response = client.get(
            "/api/v1/applications", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401


# ============================================================================
# APPLICATIONS
# ============================================================================


class TestApplicationsApi:
    def test_create_and_fetch(self, client, world):
        headers = _login(client, world.applicant)
        response = client.post(
            "/api/v1/applications",
            headers=headers,
            json={"title": "Malaria surveillance", "institution": "NHI"},
        )
        assert response.status_code == 201, response.text
        created = response.json()
        assert created["status"] == "DRAFT"
        assert created["reference_number"].startswith("RARS-")
        assert created["ethics_approved"] is False

        fetched = client.get(f"/api/v1/applications/{created['id']}", headers=headers)
        assert fetched.status_code == 200
        assert fetched.json()["title"] == "Malaria surveillance"

        listed = client.get("/api/v1/applications", headers=headers).json()
        assert listed["total"] == 1

    def test_typed_error_shape(self, client, world):
        headers = _login(client, world.applicant)
        created = client.post(
            "/api/v1/applications", headers=headers, json={"title": "No ethics yet"}
        ).json()

        response = client.post(
            f"/api/v1/applications/{created['id']}/submit", headers=headers
        )
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "INVALID_TRANSITION"
        assert body["detail"] == "Ethics approval is mandatory before submission"
        assert body["request_id"] == response.headers["X-Request-ID"]

    def test_staff_cannot_create(self, client, world):
        headers = _login(client, world.officer)
        response = client.post(
            "/api/v1/applications", headers=headers, json={"title": "Not mine"}
        )
        assert response.status_code == 403
        assert response.json()["code"] == "UNAUTHORIZED"

    def test_missing_application(self, client, world):
        headers = _login(client, world.officer)
        response = client.get(
            "/api/v1/applications/00000000-0000-0000-0000-000000000000",
            headers=headers,
        )
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_bad_idempotency_key(self, client, world):
        headers = _login(client, world.applicant)
        created = client.post(
            "/api/v1/applications", headers=headers, json={"title": "Study"}
        ).json()
        response = client.post(
            f"/api/v1/applications/{created['id']}/submit",
            headers={**headers, "Idempotency-Key": "k" * 201},
        )
        assert response.status_code == 400


# ============================================================================
# END TO END
# ============================================================================


class TestEndToEnd:
    def test_submit_review_decide_verify(self, client, world):
        applicant = _login(client, world.applicant)
        officer = _login(client, world.officer)
        reviewer = _login(client, world.reviewer)
        director = _login(client, world.director)

        application = client.post(
            "/api/v1/applications",
            headers=applicant,
            json={"title": "Malaria surveillance", "institution": "NHI"},
        ).json()
        application_id = application["id"]

        for document_type in ("ETHICS_LETTER", "PROPOSAL"):
            uploaded = _upload(client, applicant, application_id, document_type)
            assert uploaded.status_code == 201, uploaded.text
            assert uploaded.json()["version"] == 1

        checklist = client.get(
            f"/api/v1/applications/{application_id}/checklist", headers=officer
        ).json()
        assert checklist["complete"] is True

        submitted = client.post(
            f"/api/v1/applications/{application_id}/submit",
            headers={**applicant, "Idempotency-Key": "submit-1"},
        )
        assert submitted.status_code == 200, submitted.text
        assert submitted.json()["status"] == "SUBMITTED"

        review = client.post(
            f"/api/v1/applications/{application_id}/reviews",
            headers=officer,
            json={"reviewer_id": str(world.reviewer.id), "stage": "PROGRAM"},
        )
        assert review.status_code == 201, review.text

        pending = client.get("/api/v1/me/reviews?pending=true", headers=reviewer).json()
        assert [r["id"] for r in pending] == [review.json()["id"]]

        done = client.post(
            f"/api/v1/reviews/{review.json()['id']}/submit",
            headers=reviewer,
            json={"recommendation": "APPROVE", "comments": "Sound"},
        )
        assert done.status_code == 200, done.text

        decision = client.post(
            f"/api/v1/applications/{application_id}/decision",
            headers=director,
            json={"decision": "APPROVED", "notes": "Proceed"},
        )
        assert decision.status_code == 200, decision.text
        token = decision.json()["verification_token"]
        assert token

        verified = client.get(f"/api/v1/verify/{token}")
        assert verified.status_code == 200
        assert verified.json()["valid"] is True
        assert verified.json()["applicant_name"] == "Amina Juma"
        assert verified.json()["reference_number"] == application["reference_number"]

        history = client.get(
            f"/api/v1/applications/{application_id}/history", headers=applicant
        ).json()
        assert [h["new_status"] for h in history] == [
            "DRAFT",
            "SUBMITTED",
            "IN_REVIEW",
            "ED_DECISION",
            "APPROVED",
        ]

        inbox = client.get("/api/v1/me/notifications", headers=applicant).json()
        assert inbox["unread"] >= 2
        marked = client.post("/api/v1/me/notifications/read-all", headers=applicant)
        assert marked.json()["updated"] == inbox["unread"]


# ============================================================================
# PUBLIC SURFACE
# ============================================================================


class TestPublic:
    def test_unknown_token_is_simply_invalid(self, client):
        response = client.get("/api/v1/verify/unknown")
        assert response.status_code == 200
        assert response.json() == {"valid": False}

    def test_repository_is_public(self, client):
        response = client.get("/api/v1/repository")
        assert response.status_code == 200
        assert response.json() == []

    def test_health(self, client):
        assert client.get("/").json()["status"] == "ok"
        body = client.get("/api/v1/health").json()
        assert body["services"]["database"] == "connected"
        assert body["status"] == "healthy"
        assert "document_storage" in body["degraded"]


# ============================================================================
# ADMINISTRATION
# ============================================================================


class TestAdminApi:
    def test_role_change_applies_on_next_request(self, client, world):
        admin = _login(client, world.admin)
        officer = _login(client, world.officer)

        listing = client.get("/api/v1/admin/users?search=amina", headers=admin)
        assert listing.status_code == 200
        assert [u["email"] for u in listing.json()["users"]] == [world.applicant.email]

        response = client.put(
            f"/api/v1/admin/users/{world.officer.id}/roles",
            headers=admin,
            json={"roles": ["ADMIN_OFFICER", "REVIEWER"]},
        )
        assert response.status_code == 200, response.text
        assert response.json()["roles"] == ["ADMIN_OFFICER", "REVIEWER"]

        me = client.get("/api/v1/auth/me", headers=officer)
        assert me.json()["roles"] == ["ADMIN_OFFICER", "REVIEWER"]

    def test_staff_cannot_administer(self, client, world):
        headers = _login(client, world.director)
        for response in (
            client.get("/api/v1/admin/users", headers=headers),
            client.get("/api/v1/admin/settings", headers=headers),
            client.get("/api/v1/admin/audit-logs", headers=headers),
        ):
            assert response.status_code == 403
            assert response.json()["code"] == "UNAUTHORIZED"

    def test_create_user_returns_generated_password_once(self, client, world):
        admin = _login(client, world.admin)
        response = client.post(
            "/api/v1/admin/users",
            headers=admin,
            json={
                "email": "reviewer3@rars.example",
                "full_name": "Third Reviewer",
                "roles": ["REVIEWER"],
            },
        )
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["roles"] == ["REVIEWER"]
        login = client.post(
            "/api/v1/auth/login",
            json={
                "email": "reviewer3@rars.example",
                "password": body["generated_password"],
            },
        )
        assert login.status_code == 200

    def test_deactivated_user_is_locked_out(self, client, world):
        admin = _login(client, world.admin)
        outsider = _login(client, world.outsider)
        response = client.patch(
            f"/api/v1/admin/users/{world.outsider.id}",
            headers=admin,
            json={"is_active": False},
        )
        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert client.get("/api/v1/auth/me", headers=outsider).status_code == 401

    def test_settings_update_and_validation(self, client, world):
        admin = _login(client, world.admin)
        response = client.put(
            "/api/v1/admin/settings/turnaround_days", headers=admin, json={"value": 45}
        )
        assert response.status_code == 200, response.text
        assert response.json()["value"] == 45

        settings = client.get("/api/v1/admin/settings", headers=admin).json()
        listing = {s["key"]: s for s in settings}
        assert listing["turnaround_days"]["value"] == 45
        assert listing["turnaround_days"]["is_default"] is False
        assert listing["screening_days"]["is_default"] is True

        bad = client.put(
            "/api/v1/admin/settings/turnaround_days", headers=admin, json={"value": -1}
        )
        assert bad.status_code == 422
        unknown = client.put(
            "/api/v1/admin/settings/theme", headers=admin, json={"value": "dark"}
        )
        assert unknown.status_code == 422

    def test_audit_log_filters_by_entity(self, client, world):
        admin = _login(client, world.admin)
        applicant = _login(client, world.applicant)
        created = client.post(
            "/api/v1/applications", headers=applicant, json={"title": "Audited study"}
        )
        application_id = created.json()["id"]

        response = client.get(
            "/api/v1/admin/audit-logs",
            headers=admin,
            params={"entity_type": "application", "entity_id": application_id},
        )
        assert response.status_code == 200
        entries = response.json()
        assert [e["action"] for e in entries] == ["create"]
        assert entries[0]["actor_id"] == str(world.applicant.id)
