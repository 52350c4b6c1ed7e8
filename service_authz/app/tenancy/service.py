"""
Tenant and entitlement administration.
"""

from typing import Dict, Optional

from shared.errors import ScopeNotFound, ValidationError
from shared.logging import get_logger

from ..entitlements.evaluator import DEFAULT_TENANT_ENTITLEMENTS
from ..store.base import DocumentStore
from ..store.models import (
    EntitlementRecord, EntitlementScope, EntitlementValue,
    MemberRole, MembershipRecord, TenantRecord,
)


MIN_TENANT_NAME_LENGTH = 2


async def load_entitlement_map(
    store: DocumentStore, scope: EntitlementScope
) -> Dict[str, EntitlementValue]:
    """Flatten the entitlement records of ``scope`` into ``key -> value``."""
    records = await store.list_entitlements(scope)
    return {record.key: record.value for record in records}


class TenancyService:
    """Reads and writes tenants and the entitlements of tenants and freelancers."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.logger = get_logger("authz.tenancy.service")

    async def get_entitlements(self, tenant_id: str) -> Dict[str, EntitlementValue]:
        return await load_entitlement_map(self.store, EntitlementScope.tenant(tenant_id))

    async def is_freelancer(self, uid: str) -> bool:
        user = await self.store.get_user(uid)
        return bool(user and user.is_freelancer)

    async def get_freelancer_entitlements(self, uid: str) -> Dict[str, EntitlementValue]:
        if await self.store.get_freelancer(uid) is None:
            return {}
        return await load_entitlement_map(self.store, EntitlementScope.freelancer(uid))

    async def set_entitlement(
        self, scope: EntitlementScope, key: str, value: EntitlementValue
    ) -> EntitlementRecord:
        """Grant or update ``key`` under ``scope``.

        Updates the existing record when one is present so that each scope
        holds at most one record per key.
        """
        if not await self.store.scope_exists(scope):
            raise ScopeNotFound(scope.kind.value, scope.owner_id)

        existing = await self.store.find_entitlements(scope, key)
        if existing:
            record = existing[0]
            record.value = value
        else:
            record = EntitlementRecord(record_id=self.store.new_id(), key=key, value=value)

        await self.store.put_entitlement(scope, record)
        self.logger.info(
            "Entitlement set",
            scope=scope.kind.value,
            owner_id=scope.owner_id,
            key=key,
            value=value,
        )
        return record

    async def delete_entitlement(self, scope: EntitlementScope, key: str) -> int:
        """Remove every record with ``key``; returns how many were removed."""
        records = await self.store.find_entitlements(scope, key)
        for record in records:
            await self.store.delete_entitlement(scope, record.record_id)
        if records:
            self.logger.info(
                "Entitlement removed",
                scope=scope.kind.value,
                owner_id=scope.owner_id,
                key=key,
                removed=len(records),
            )
        return len(records)

    async def create_tenant(self, uid: str, email: Optional[str], name: str) -> TenantRecord:
        """Create a tenant owned by ``uid`` with the default module set."""
        name = self._clean_name(name)
        tenant = TenantRecord(id=self.store.new_id(), name=name, created_by=uid)
        await self.store.put_tenant(tenant)
        await self.store.put_membership(
            tenant.id,
            MembershipRecord(uid=uid, email=email, role=MemberRole.ADMIN),
        )

        scope = EntitlementScope.tenant(tenant.id)
        for key, value in DEFAULT_TENANT_ENTITLEMENTS.items():
            await self.store.put_entitlement(
                scope, EntitlementRecord(record_id=self.store.new_id(), key=key, value=value)
            )

        await self.store.update_user(uid, {"email": email, "default_tenant_id": tenant.id})
        self.logger.info("Tenant created", tenant_id=tenant.id, uid=uid)
        return tenant

    async def update_tenant_name(self, tenant_id: str, name: str) -> TenantRecord:
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            raise ScopeNotFound("tenant", tenant_id)
        tenant.name = self._clean_name(name)
        await self.store.put_tenant(tenant)
        return tenant

    @staticmethod
    def _clean_name(name: str) -> str:
        cleaned = (name or "").strip()
        if len(cleaned) < MIN_TENANT_NAME_LENGTH:
            raise ValidationError(
                f"Tenant name must be at least {MIN_TENANT_NAME_LENGTH} characters",
                {"field": "name"},
            )
        return cleaned
