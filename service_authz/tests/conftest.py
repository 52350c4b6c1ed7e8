"""
Shared fixtures for authz tests.
"""

import pytest

from service_authz.app.gate.middleware import RequestGate
from service_authz.app.mfa.service import MfaService
from service_authz.app.staff.capability import PlatformStaffVerifier
from service_authz.app.store.memory import InMemoryDocumentStore
from service_authz.app.store.models import (
    EntitlementRecord, EntitlementScope, MemberRole, MembershipRecord, TenantRecord,
)
from service_authz.app.tenancy.resolver import TenantResolver
from service_authz.app.tenancy.service import TenancyService
from service_authz.app.vault.cipher import SecretVault


TEST_KEY_HEX = "00112233445566778899aabbccddeeff" * 2
SANDBOX_TENANT_ID = "dev-tenant"
SUPER_ADMIN_UID = "root-admin"


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def staff(store):
    return PlatformStaffVerifier(store, [SUPER_ADMIN_UID])


@pytest.fixture
def vault():
    return SecretVault(bytes.fromhex(TEST_KEY_HEX))


@pytest.fixture
def tenancy(store):
    return TenancyService(store)


@pytest.fixture
def resolver(store, staff):
    return TenantResolver(store, staff, SANDBOX_TENANT_ID)


@pytest.fixture
def mfa(store, vault, staff):
    return MfaService(store, vault, staff, issuer="TimeAM", window=2)


@pytest.fixture
def gate(resolver, tenancy, mfa, staff):
    return RequestGate(resolver, tenancy, mfa, staff)


@pytest.fixture
def add_member(store):
    """Create a tenant (if needed) with a membership and optional entitlements."""

    async def _add_member(tenant_id, uid, entitlements=None, role=MemberRole.EMPLOYEE, name=None):
        if await store.get_tenant(tenant_id) is None:
            await store.put_tenant(TenantRecord(id=tenant_id, name=name or f"Tenant {tenant_id}"))
        await store.put_membership(tenant_id, MembershipRecord(uid=uid, email=f"{uid}@example.com", role=role))
        scope = EntitlementScope.tenant(tenant_id)
        for key, value in (entitlements or {}).items():
            await store.put_entitlement(
                scope, EntitlementRecord(record_id=store.new_id(), key=key, value=value)
            )

    return _add_member
