"""
HTTP tests for the authz service.
"""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from shared.config import AccessCoreConfig
from shared.errors import AuthenticationError
from service_authz.app.auth.jwks import Caller
from service_authz.app.entitlements.evaluator import EntitlementKeys
from service_authz.app.main import AuthzService
from service_authz.app.mfa import totp
from service_authz.app.store.memory import InMemoryDocumentStore
from service_authz.app.store.models import EntitlementScope, MemberRole, MembershipRecord


TEST_KEY_HEX = "00112233445566778899aabbccddeeff" * 2


class HeaderAuthenticator:
    """Trusts ``X-Test-Uid`` and ``X-Test-Iat`` instead of a bearer token."""

    async def authenticate(self, request):
        uid = request.headers.get("X-Test-Uid")
        if not uid:
            raise AuthenticationError("No authorization token provided", {"reason": "NO_TOKEN"})
        caller = Caller(
            uid=uid,
            email=f"{uid}@example.com",
            issued_at=int(request.headers.get("X-Test-Iat", "1000")),
        )
        request.state.caller = caller
        return caller


def as_user(uid, issued_at=None):
    headers = {"X-Test-Uid": uid}
    if issued_at is not None:
        headers["X-Test-Iat"] = str(issued_at)
    return headers


@pytest.fixture
def service():
    config = AccessCoreConfig(
        env="local",
        mfa_encryption_key=TEST_KEY_HEX,
        super_admin_uids="root-admin",
    )
    return AuthzService(config, store=InMemoryDocumentStore(), authenticator=HeaderAuthenticator())


@pytest.fixture
def client(service):
    with TestClient(service.app) as test_client:
        yield test_client


def create_tenant(client, uid="u1", name="Acme Care"):
    response = client.post(
        "/api/onboarding/create-tenant", json={"tenant_name": name}, headers=as_user(uid)
    )
    assert response.status_code == 201
    return response.json()["tenant"]["id"]


def enable_mfa_module(service, tenant_id):
    asyncio.run(service.tenancy.set_entitlement(
        EntitlementScope.tenant(tenant_id), EntitlementKeys.MODULE_MFA, True
    ))


def enroll(client, uid="u1"):
    setup = client.post("/api/mfa/setup", headers=as_user(uid))
    assert setup.status_code == 200
    body = setup.json()
    confirm = client.post(
        "/api/mfa/verify-setup",
        json={"code": totp.generate_code(body["secret"])},
        headers=as_user(uid),
    )
    assert confirm.status_code == 200
    return body


class TestServiceEndpoints:
    """Test cases for health, metrics and error format."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "authz"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"store": "ok"}

    def test_metrics(self, client):
        create_tenant(client)
        client.get("/api/tenant", headers=as_user("u1"))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "gate_decisions_total" in response.text

    def test_unauthenticated_request(self, client):
        response = client.get("/api/me")

        assert response.status_code == 401
        data = response.json()
        assert set(data) == {"trace_id", "code", "message", "details"}
        assert data["code"] == "AUTHENTICATION_ERROR"
        assert data["details"] == {"reason": "NO_TOKEN"}


class TestTenantEndpoints:
    """Test cases for onboarding and tenant context."""

    def test_me_before_onboarding(self, client):
        response = client.get("/api/me", headers=as_user("u1"))

        assert response.status_code == 200
        data = response.json()
        assert data["uid"] == "u1"
        assert data["needs_onboarding"] is True
        assert data["tenant"] is None
        assert data["mfa"] == {"enabled": False, "setup_in_progress": False, "required": False}

    def test_create_tenant_and_me(self, client):
        tenant_id = create_tenant(client)

        data = client.get("/api/me", headers=as_user("u1")).json()

        assert data["needs_onboarding"] is False
        assert data["tenant"] == {"id": tenant_id, "name": "Acme Care"}
        assert data["role"] == "admin"
        assert data["entitlements"][EntitlementKeys.MODULE_CALENDAR_CORE] is True

    def test_create_tenant_twice(self, client):
        tenant_id = create_tenant(client)

        response = client.post(
            "/api/onboarding/create-tenant", json={"tenant_name": "Other"}, headers=as_user("u1")
        )

        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_HAS_TENANT"
        assert response.json()["details"]["tenant_id"] == tenant_id

    def test_create_tenant_with_short_name(self, client):
        response = client.post(
            "/api/onboarding/create-tenant", json={"tenant_name": " A "}, headers=as_user("u1")
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_tenant_without_membership(self, client):
        response = client.get("/api/tenant", headers=as_user("u1"))

        assert response.status_code == 403
        assert response.json()["code"] == "NO_TENANT"

    def test_rename_tenant_as_admin(self, client):
        create_tenant(client)

        response = client.patch("/api/tenant", json={"name": "Renamed"}, headers=as_user("u1"))

        assert response.status_code == 200
        assert response.json()["tenant"]["name"] == "Renamed"

    def test_rename_tenant_requires_admin(self, service, client):
        tenant_id = create_tenant(client)
        asyncio.run(service.store.put_membership(
            tenant_id, MembershipRecord(uid="u2", role=MemberRole.EMPLOYEE)
        ))

        response = client.patch("/api/tenant", json={"name": "Renamed"}, headers=as_user("u2"))

        assert response.status_code == 403
        assert response.json()["code"] == "AUTHORIZATION_ERROR"


class TestMfaEndpoints:
    """Test cases for the MFA enrollment and session flow."""

    def test_setup_requires_mfa_module(self, client):
        create_tenant(client)

        response = client.post("/api/mfa/setup", headers=as_user("u1"))

        assert response.status_code == 403
        assert response.json()["details"]["missing_entitlements"] == [EntitlementKeys.MODULE_MFA]

    def test_setup_returns_enrollment_payload(self, service, client):
        enable_mfa_module(service, create_tenant(client))

        response = client.post("/api/mfa/setup", headers=as_user("u1"))

        assert response.status_code == 200
        data = response.json()
        assert data["qr_code"].startswith("data:image/svg+xml;base64,")
        assert data["otpauth_uri"].startswith("otpauth://totp/")
        assert len(data["backup_codes"]) == 8

    def test_full_session_flow(self, service, client):
        enable_mfa_module(service, create_tenant(client))
        setup = enroll(client)

        blocked = client.get("/api/tenant", headers=as_user("u1"))
        assert blocked.status_code == 403
        assert blocked.json()["code"] == "MFA_REQUIRED"
        assert blocked.json()["details"] == {"mfa_required": True}

        me = client.get("/api/me", headers=as_user("u1")).json()
        assert me["mfa"] == {"enabled": True, "setup_in_progress": False, "required": True}

        verified = client.post(
            "/api/mfa/verify", json={"code": setup["backup_codes"][0]}, headers=as_user("u1")
        )
        assert verified.status_code == 200
        assert verified.json() == {"verified": True, "method": "backup_code"}

        assert client.get("/api/tenant", headers=as_user("u1")).status_code == 200

    def test_new_session_requires_verification_again(self, service, client):
        enable_mfa_module(service, create_tenant(client))
        setup = enroll(client)
        client.post(
            "/api/mfa/verify", json={"code": totp.generate_code(setup["secret"])}, headers=as_user("u1")
        )
        assert client.get("/api/tenant", headers=as_user("u1")).status_code == 200

        later_token = int(time.time()) + 3600
        response = client.get("/api/tenant", headers=as_user("u1", issued_at=later_token))

        assert response.status_code == 403
        assert response.json()["code"] == "MFA_REQUIRED"

    def test_wrong_code(self, service, client):
        enable_mfa_module(service, create_tenant(client))
        enroll(client)

        response = client.post("/api/mfa/verify", json={"code": "ZZZZ0000"}, headers=as_user("u1"))

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_MFA_CODE"

    def test_empty_code_is_rejected(self, client):
        response = client.post("/api/mfa/verify", json={"code": ""}, headers=as_user("u1"))

        assert response.status_code == 422

    def test_corrupt_secret_blocks_login(self, service, client):
        enable_mfa_module(service, create_tenant(client))
        enroll(client)
        asyncio.run(service.store.update_user("u1", {"mfa_secret": "broken"}))

        response = client.post("/api/mfa/verify", json={"code": "123456"}, headers=as_user("u1"))

        assert response.status_code == 409
        assert response.json()["code"] == "MFA_SECRET_CORRUPTED"

    def test_gate_fails_closed(self, service, client):
        enable_mfa_module(service, create_tenant(client))
        service.mfa.get_status = AsyncMock(side_effect=RuntimeError("store unavailable"))

        response = client.get("/api/tenant", headers=as_user("u1"))

        assert response.status_code == 500
        assert response.json()["code"] == "MFA_CHECK_ERROR"
        assert response.json()["details"]["mfa_required"] is True

    def test_disable(self, service, client):
        enable_mfa_module(service, create_tenant(client))
        setup = enroll(client)
        client.post(
            "/api/mfa/verify", json={"code": setup["backup_codes"][1]}, headers=as_user("u1")
        )

        response = client.post("/api/mfa/disable", headers=as_user("u1"))

        assert response.status_code == 200
        assert response.json() == {"success": True}
        status = client.get("/api/mfa/status", headers=as_user("u1")).json()
        assert status["enabled"] is False

    def test_disable_when_not_enabled(self, service, client):
        enable_mfa_module(service, create_tenant(client))

        response = client.post("/api/mfa/disable", headers=as_user("u1"))

        assert response.status_code == 400
        assert response.json()["code"] == "MFA_STATE_ERROR"
