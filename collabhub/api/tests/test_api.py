"""
API Tests

End-to-end HTTP tests through the application:
1. Authentication endpoints and the error body shape
2. Permission gating on admin and team endpoints
3. Role, incident and compliance administration
4. Request auditing and rate limiting middleware
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from collabhub.api.audit.types import IncidentCandidate, IncidentSeverity, IncidentType
from collabhub.api.auth.jwt import create_access_token
from collabhub.api.config import settings
from collabhub.api.db.ports import AuditLogFilter
from collabhub.api.services.background_tasks import (
    BackgroundWorkerManager,
    RetentionWorker,
    get_worker_manager,
)

API = "/api/v1"


def bearer(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}


async def audit_entries(uow_factory, **filters):
    async with uow_factory() as uow:
        entries, _ = await uow.audit_log.query(AuditLogFilter(**filters), 1, 50)
    return entries


# ==================== Health ====================


@pytest.mark.asyncio
async def test_health(async_client, recorder, uow_factory):
    response = await async_client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["audit_pipeline"] == "stopped"
    assert "X-RateLimit-Limit" not in response.headers

    await recorder.flush()
    assert await audit_entries(uow_factory) == []


# ==================== Authentication ====================


@pytest.mark.asyncio
async def test_login_success(async_client, member_user, user_password):
    response = await async_client.post(
        f"{API}/auth/login", json={"email": member_user.email, "password": user_password}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    assert data["roles"] == ["member"]
    assert "users:read" in data["permissions"]
    assert data["user"]["email"] == member_user.email
    assert response.headers["X-RateLimit-Limit"] == str(settings.RATE_LIMIT_AUTH[1])


@pytest.mark.asyncio
async def test_login_failure_is_generic(async_client, member_user):
    wrong_password = await async_client.post(
        f"{API}/auth/login", json={"email": member_user.email, "password": "nope"}
    )
    unknown_email = await async_client.post(
        f"{API}/auth/login", json={"email": "ghost@collabhub.io", "password": "nope"}
    )

    expected = {
        "success": False,
        "error": {"message": "Invalid email or password", "code": "AUTHENTICATION_ERROR"},
    }
    assert wrong_password.status_code == 401
    assert wrong_password.json() == expected
    assert unknown_email.status_code == 401
    assert unknown_email.json() == expected


@pytest.mark.asyncio
async def test_login_overlong_password(async_client, member_user):
    response = await async_client.post(
        f"{API}/auth/login", json={"email": member_user.email, "password": "p" * 100}
    )

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_token_grants_access(async_client, admin_user, user_password):
    login = await async_client.post(
        f"{API}/auth/login", json={"email": admin_user.email, "password": user_password}
    )
    token = login.json()["access_token"]

    response = await async_client.get(
        f"{API}/admin/roles", headers={"Authorization": f"Bearer {token}"}
    )

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_federated_disabled_without_secret(async_client, monkeypatch):
    monkeypatch.setattr(settings, "FEDERATION_SHARED_SECRET", None)

    response = await async_client.post(
        f"{API}/auth/federated",
        json={"provider": "github", "email": "dev@collabhub.io"},
        headers={"X-Federation-Secret": "anything"},
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_federated_login(async_client, default_roles, monkeypatch):
    monkeypatch.setattr(settings, "FEDERATION_SHARED_SECRET", "gateway-secret")
    payload = {"provider": "github", "email": "Dev@collabhub.io", "first_name": "Dev"}

    forged = await async_client.post(
        f"{API}/auth/federated", json=payload, headers={"X-Federation-Secret": "guess"}
    )
    missing = await async_client.post(f"{API}/auth/federated", json=payload)
    accepted = await async_client.post(
        f"{API}/auth/federated", json=payload, headers={"X-Federation-Secret": "gateway-secret"}
    )

    assert forged.status_code == 401
    assert missing.status_code == 401
    assert accepted.status_code == 200
    user = accepted.json()["user"]
    assert user["email"] == "dev@collabhub.io"
    assert user["auth_provider"] == "github"
    assert accepted.json()["roles"] == []


@pytest.mark.asyncio
async def test_federated_unknown_provider(async_client, monkeypatch):
    monkeypatch.setattr(settings, "FEDERATION_SHARED_SECRET", "gateway-secret")

    response = await async_client.post(
        f"{API}/auth/federated",
        json={"provider": "myspace", "email": "dev@collabhub.io"},
        headers={"X-Federation-Secret": "gateway-secret"},
    )

    assert response.status_code == 400


# ==================== Access Control ====================


@pytest.mark.asyncio
async def test_missing_token(async_client):
    response = await async_client.get(f"{API}/admin/roles")

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": {"message": "Authentication required", "code": "AUTHENTICATION_ERROR"},
    }


@pytest.mark.asyncio
async def test_invalid_token(async_client):
    response = await async_client.get(
        f"{API}/admin/roles", headers={"Authorization": "Bearer not-a-token"}
    )

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid or expired token"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,path",
    [
        ("GET", "/admin/audit-logs"),
        ("GET", "/admin/security/incidents"),
        ("GET", "/admin/roles"),
        ("POST", "/admin/system/init-roles"),
        ("GET", "/admin/compliance/report"),
    ],
)
async def test_member_denied_admin_endpoints(async_client, member_headers, method, path):
    response = await async_client.request(method, f"{API}{path}", headers=member_headers)

    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "error": {"message": "Access denied", "code": "AUTHORIZATION_ERROR"},
    }


@pytest.mark.asyncio
async def test_compliance_view_is_enough_for_reports(async_client, make_user, default_roles):
    hr_manager = await make_user(roles=["hr_manager"])

    response = await async_client.get(
        f"{API}/admin/compliance/report",
        params={"report_type": "soc2"},
        headers=bearer(hr_manager),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["report_type"] == "SOC2"
    assert set(data["metrics"]) == {
        "data_access_events",
        "sensitive_data_access_events",
        "gdpr_export_requests",
        "gdpr_delete_requests",
        "security_incidents",
        "user_creations",
        "user_deletions",
    }


# ==================== Roles ====================


@pytest.mark.asyncio
async def test_list_roles(async_client, admin_headers, member_user):
    response = await async_client.get(f"{API}/admin/roles", headers=admin_headers)

    assert response.status_code == 200
    roles = {r["name"]: r for r in response.json()}
    assert set(roles) == {"admin", "hr_manager", "team_lead", "member", "viewer"}
    assert roles["admin"]["user_count"] == 1
    assert roles["member"]["user_count"] == 1
    assert roles["member"]["is_system"] is True


@pytest.mark.asyncio
async def test_list_permissions(async_client, admin_headers):
    response = await async_client.get(f"{API}/admin/roles/permissions", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["admin:system"] == "System administration"


@pytest.mark.asyncio
async def test_create_role(async_client, admin_headers):
    response = await async_client.post(
        f"{API}/admin/roles",
        json={"name": "auditor", "permissions": ["admin:audit_logs", "users:read"]},
        headers=admin_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "auditor"
    assert data["permissions"] == ["users:read", "admin:audit_logs"]
    assert data["is_system"] is False


@pytest.mark.asyncio
async def test_create_role_invalid_permission(async_client, admin_headers):
    response = await async_client.post(
        f"{API}/admin/roles",
        json={"name": "broken", "permissions": ["users:read", "users:fly"]},
        headers=admin_headers,
    )

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INVALID_PERMISSION"
    assert error["details"] == {"invalid_permissions": ["users:fly"]}


@pytest.mark.asyncio
async def test_system_role_cannot_be_deleted(async_client, admin_headers):
    roles = (await async_client.get(f"{API}/admin/roles", headers=admin_headers)).json()
    member_role = next(r for r in roles if r["name"] == "member")

    response = await async_client.delete(
        f"{API}/admin/roles/{member_role['id']}", headers=admin_headers
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "SYSTEM_ROLE_PROTECTED"


@pytest.mark.asyncio
async def test_delete_custom_role(async_client, admin_headers, member_user):
    created = await async_client.post(
        f"{API}/admin/roles", json={"name": "contractor", "permissions": []}, headers=admin_headers
    )
    await async_client.post(
        f"{API}/admin/users/{member_user.id}/roles",
        json={"role_name": "contractor"},
        headers=admin_headers,
    )

    response = await async_client.delete(
        f"{API}/admin/roles/{created.json()['id']}", headers=admin_headers
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Role deleted (1 assignments removed)"


@pytest.mark.asyncio
async def test_assign_and_revoke_role(async_client, admin_headers, admin_user, member_user):
    path = f"{API}/admin/users/{member_user.id}/roles"

    assigned = await async_client.post(path, json={"role_name": "viewer"}, headers=admin_headers)
    duplicate = await async_client.post(path, json={"role_name": "viewer"}, headers=admin_headers)
    revoked = await async_client.delete(f"{path}/viewer", headers=admin_headers)
    absent = await async_client.delete(f"{path}/viewer", headers=admin_headers)
    unknown = await async_client.delete(f"{path}/wizard", headers=admin_headers)

    assert assigned.status_code == 201
    assert assigned.json()["user_id"] == str(member_user.id)
    assert assigned.json()["granted_by"] == str(admin_user.id)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "ROLE_ALREADY_ASSIGNED"
    assert revoked.json()["message"] == "Role revoked"
    assert absent.json()["message"] == "User does not have this role"
    assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_init_roles_is_idempotent(async_client, admin_headers):
    response = await async_client.post(f"{API}/admin/system/init-roles", headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {"message": "Default roles initialized", "roles": []}


@pytest.mark.asyncio
async def test_worker_stats(app, async_client, admin_headers, pipeline, uow_factory):
    retention = RetentionWorker(uow_factory, retention_days=30)
    app.dependency_overrides[get_worker_manager] = lambda: BackgroundWorkerManager(pipeline, retention)

    response = await async_client.get(f"{API}/admin/system/workers", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["audit_pipeline"]["running"] is False
    assert data["audit_pipeline"]["dropped"] == 0
    assert data["audit_retention"]["name"] == "audit_retention"
    assert data["audit_retention"]["run_count"] == 0


# ==================== Audit Logs ====================


@pytest.mark.asyncio
async def test_query_audit_logs(async_client, admin_headers, member_user, recorder):
    await async_client.post(
        f"{API}/auth/login", json={"email": member_user.email, "password": "nope"}
    )
    await recorder.flush()

    response = await async_client.get(
        f"{API}/admin/audit-logs",
        params={"action": "LOGIN_FAILED", "status": "FAILURE"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["pagination"]["total"] == 1
    assert data["logs"][0]["user_id"] == str(member_user.id)
    assert data["logs"][0]["status"] == "FAILURE"

    activity = await async_client.get(
        f"{API}/admin/audit-logs/user/{member_user.id}", headers=admin_headers
    )
    assert activity.json()["action_counts"] == [{"action": "LOGIN_FAILED", "count": 1}]


@pytest.mark.asyncio
async def test_cleanup_logs(async_client, admin_headers):
    response = await async_client.post(
        f"{API}/admin/system/cleanup-logs", json={"retention_days": 30}, headers=admin_headers
    )
    rejected = await async_client.post(
        f"{API}/admin/system/cleanup-logs", json={"retention_days": 0}, headers=admin_headers
    )

    assert response.status_code == 200
    assert response.json()["deleted_count"] == 0
    assert rejected.status_code == 422


# ==================== Security Incidents ====================


@pytest.mark.asyncio
async def test_list_and_resolve_incident(async_client, admin_headers, admin_user, pipeline):
    affected = uuid.uuid4()
    incident = await pipeline.incidents.create_or_merge(
        IncidentCandidate(
            type=IncidentType.UNAUTHORIZED_ACCESS,
            severity=IncidentSeverity.CRITICAL,
            title="Access from revoked session",
            description="Token used after revocation",
            affected_users=[affected],
        )
    )

    listed = await async_client.get(
        f"{API}/admin/security/incidents", params={"status": "OPEN"}, headers=admin_headers
    )
    assert listed.status_code == 200
    data = listed.json()
    assert data["pagination"]["total"] == 1
    assert data["incidents"][0]["id"] == str(incident.id)
    assert data["incidents"][0]["affected_users"] == [str(affected)]

    path = f"{API}/admin/security/incidents/{incident.id}/resolve"
    resolved = await async_client.put(path, json={"resolution": "Session keys rotated"}, headers=admin_headers)
    again = await async_client.put(path, json={"resolution": "Twice"}, headers=admin_headers)

    assert resolved.status_code == 200
    assert resolved.json()["status"] == "RESOLVED"
    assert resolved.json()["resolved_by"] == str(admin_user.id)
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_incident_status_transition(async_client, admin_headers, pipeline):
    incident = await pipeline.incidents.create_or_merge(
        IncidentCandidate(
            type=IncidentType.POLICY_VIOLATION,
            severity=IncidentSeverity.LOW,
            title="Policy violation",
            description="Shared account",
            affected_users=[uuid.uuid4()],
        )
    )
    path = f"{API}/admin/security/incidents/{incident.id}/status"

    investigating = await async_client.put(path, json={"status": "INVESTIGATING"}, headers=admin_headers)
    false_positive = await async_client.put(path, json={"status": "FALSE_POSITIVE"}, headers=admin_headers)
    missing = await async_client.put(
        f"{API}/admin/security/incidents/{uuid.uuid4()}/status",
        json={"status": "INVESTIGATING"},
        headers=admin_headers,
    )

    assert investigating.status_code == 200
    assert investigating.json()["status"] == "INVESTIGATING"
    assert false_positive.status_code == 409
    assert missing.status_code == 404


# ==================== Teams ====================


@pytest.mark.asyncio
async def test_team_member_management(async_client, admin_headers, member_headers, member_user, make_user):
    team_id = uuid.uuid4()
    owner = await make_user()
    members = f"{API}/teams/{team_id}/members"

    added_owner = await async_client.post(
        members, json={"user_id": str(owner.id), "role": "owner"}, headers=admin_headers
    )
    added_lead = await async_client.post(
        members, json={"user_id": str(member_user.id), "role": "LEAD"}, headers=admin_headers
    )
    assert added_owner.status_code == 201
    assert added_owner.json()["role"] == "OWNER"
    assert added_lead.json()["role"] == "LEAD"

    # The lead manages members of this team through the team role only
    listed = await async_client.get(members, headers=member_headers)
    elsewhere = await async_client.get(f"{API}/teams/{uuid.uuid4()}/members", headers=member_headers)
    assert listed.status_code == 200
    assert {m["user_id"] for m in listed.json()} == {str(owner.id), str(member_user.id)}
    assert elsewhere.status_code == 403

    # A lead cannot act on an owner
    over_lead = await async_client.delete(f"{members}/{owner.id}", headers=member_headers)
    assert over_lead.status_code == 403

    sole_owner = await async_client.delete(f"{members}/{owner.id}", headers=admin_headers)
    assert sole_owner.status_code == 409
    assert sole_owner.json()["error"]["code"] == "SOLE_OWNER"

    bad_role = await async_client.put(
        f"{members}/{member_user.id}", json={"role": "boss"}, headers=admin_headers
    )
    assert bad_role.status_code == 422

    promoted = await async_client.put(
        f"{members}/{member_user.id}", json={"role": "owner"}, headers=admin_headers
    )
    removed = await async_client.delete(f"{members}/{owner.id}", headers=member_headers)
    assert promoted.json()["role"] == "OWNER"
    assert removed.status_code == 204


@pytest.mark.asyncio
async def test_lead_cannot_grant_ownership(async_client, admin_headers, member_headers, member_user, make_user):
    team_id = uuid.uuid4()
    owner = await make_user()
    newcomer = await make_user()
    members = f"{API}/teams/{team_id}/members"
    await async_client.post(members, json={"user_id": str(owner.id), "role": "OWNER"}, headers=admin_headers)
    await async_client.post(members, json={"user_id": str(member_user.id), "role": "LEAD"}, headers=admin_headers)

    self_promoted = await async_client.put(
        f"{members}/{member_user.id}", json={"role": "OWNER"}, headers=member_headers
    )
    demoted = await async_client.put(f"{members}/{owner.id}", json={"role": "VIEWER"}, headers=member_headers)
    added_owner = await async_client.post(
        members, json={"user_id": str(newcomer.id), "role": "OWNER"}, headers=member_headers
    )
    added_member = await async_client.post(
        members, json={"user_id": str(newcomer.id), "role": "MEMBER"}, headers=member_headers
    )

    assert self_promoted.status_code == 403
    assert demoted.status_code == 403
    assert added_owner.status_code == 403
    assert added_member.status_code == 201

    roles = {m["user_id"]: m["role"] for m in (await async_client.get(members, headers=admin_headers)).json()}
    assert roles == {str(owner.id): "OWNER", str(member_user.id): "LEAD", str(newcomer.id): "MEMBER"}


@pytest.mark.asyncio
async def test_duplicate_member(async_client, admin_headers, member_user):
    members = f"{API}/teams/{uuid.uuid4()}/members"
    body = {"user_id": str(member_user.id)}

    first = await async_client.post(members, json=body, headers=admin_headers)
    second = await async_client.post(members, json=body, headers=admin_headers)

    assert first.json()["role"] == "MEMBER"
    assert second.status_code == 409


# ==================== Middleware ====================


@pytest.mark.asyncio
async def test_audit_middleware_records_request(async_client, admin_headers, admin_user, recorder, uow_factory):
    response = await async_client.post(
        f"{API}/admin/roles",
        json={"name": "auditor", "description": "do not log me", "permissions": []},
        headers={**admin_headers, "X-Forwarded-For": "198.51.100.4, 10.0.0.1"},
    )
    assert response.status_code == 201
    await recorder.flush()

    entries = await audit_entries(uow_factory, action="ADMIN_CREATE")
    assert len(entries) == 1
    entry = entries[0]
    assert entry.resource == "Admin"
    assert entry.user_id == admin_user.id
    assert entry.ip_address == "198.51.100.4"
    assert entry.duration_ms is not None
    assert entry.details == {
        "method": "POST",
        "path": f"{API}/admin/roles",
        "statusCode": 201,
        "bodyKeys": ["description", "name", "permissions"],
    }
    assert "do not log me" not in str(entry.details)

    created = await audit_entries(uow_factory, action="ROLE_CREATED")
    assert len(created) == 1


@pytest.mark.asyncio
async def test_audit_middleware_records_denials(async_client, member_headers, member_user, recorder, uow_factory):
    await async_client.get(f"{API}/admin/roles", headers=member_headers)
    await recorder.flush()

    entries = await audit_entries(uow_factory, action="ADMIN_READ")
    assert len(entries) == 1
    assert entries[0].user_id == member_user.id
    assert entries[0].status.value == "WARNING"
    assert entries[0].details["statusCode"] == 403


@pytest.mark.asyncio
async def test_audit_middleware_extracts_resource_id(async_client, admin_headers, member_user, recorder, uow_factory):
    await async_client.delete(
        f"{API}/admin/users/{member_user.id}/roles/viewer", headers=admin_headers
    )
    await recorder.flush()

    entries = await audit_entries(uow_factory, action="ADMIN_DELETE")
    assert entries[0].resource_id == str(member_user.id)


@pytest.mark.asyncio
async def test_rate_limit_headers(async_client, admin_headers):
    first = await async_client.get(f"{API}/admin/roles", headers=admin_headers)
    second = await async_client.get(f"{API}/admin/roles", headers=admin_headers)

    limit = settings.RATE_LIMIT_API[1]
    assert first.headers["X-RateLimit-Limit"] == str(limit)
    assert first.headers["X-RateLimit-Remaining"] == str(limit - 1)
    assert second.headers["X-RateLimit-Remaining"] == str(limit - 2)


@pytest.mark.asyncio
async def test_login_rate_limited(app_factory, member_user, monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_AUTH", (60, 2))
    transport = ASGITransport(app=app_factory())
    credentials = {"email": member_user.email, "password": "nope"}

    async with AsyncClient(transport=transport, base_url="http://test") as client:
        attempts = [await client.post(f"{API}/auth/login", json=credentials) for _ in range(3)]

    assert [r.status_code for r in attempts] == [401, 401, 429]
    limited = attempts[-1]
    assert int(limited.headers["Retry-After"]) >= 1
    assert limited.headers["X-RateLimit-Remaining"] == "0"
    assert limited.json()["error"]["code"] == "RATE_LIMITED"
