"""
Tenant resolution for authenticated callers.

The user's ``default_tenant_id`` is a denormalized cache of the tenant the
user was last resolved into. It is never trusted on its own: a membership
record must exist under that tenant. When the cache is missing or stale
the resolver scans every tenant, applies the sandbox tie-break and writes
the result back (read-repair). Repair writes are detached from the
request and best-effort; the store's last write wins.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from shared.errors import NoMembership
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..staff.capability import StaffCapability
from ..store.base import DocumentStore
from ..store.models import (
    EntitlementScope, EntitlementValue, MembershipRecord, TenantRecord,
)
from .service import load_entitlement_map


@dataclass
class ResolvedTenant:
    """Tenant, membership and entitlement map for one caller."""
    tenant: TenantRecord
    membership: MembershipRecord
    entitlements: Dict[str, EntitlementValue] = field(default_factory=dict)


@dataclass
class TenantCandidate:
    tenant_id: str
    is_sandbox: bool


class TenantResolver:
    """Resolves a caller uid to its tenant."""

    def __init__(
        self,
        store: DocumentStore,
        staff: StaffCapability,
        sandbox_tenant_id: str = "dev-tenant",
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.staff = staff
        self.sandbox_tenant_id = sandbox_tenant_id
        self.metrics = metrics
        self.logger = get_logger("authz.tenancy.resolver")
        self._repairs: Set[asyncio.Task] = set()

    async def resolve_tenant_for_user(self, uid: str) -> ResolvedTenant:
        """Resolve ``uid`` to its tenant or raise `NoMembership`."""
        repair: Dict[str, Any] = {}
        try:
            return await self._resolve(uid, repair)
        finally:
            if repair:
                self._schedule_repair(uid, repair)

    async def _resolve(self, uid: str, repair: Dict[str, Any]) -> ResolvedTenant:
        user = await self.store.get_user(uid)
        cached_id = user.default_tenant_id if user else None
        tenant_id: Optional[str] = None

        if cached_id:
            if await self.store.get_membership(cached_id, uid) is not None:
                tenant_id = cached_id
                self._count("cache_hit")
            else:
                self.logger.warning(
                    "Cached tenant has no membership, clearing cache",
                    uid=uid,
                    tenant_id=cached_id,
                )
                repair["default_tenant_id"] = None

        scanned = False
        if tenant_id is None:
            tenant_id = await self._scan_for_tenant(uid)
            if tenant_id is None:
                self._count("not_found")
                self.logger.info("No tenant membership found", uid=uid)
                raise NoMembership(uid)
            scanned = True
            self._count("scan")

        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            self._count("not_found")
            self.logger.error("Resolved tenant does not exist", uid=uid, tenant_id=tenant_id)
            if cached_id == tenant_id:
                repair["default_tenant_id"] = None
            raise NoMembership(uid, "Resolved tenant no longer exists")

        membership = await self.store.get_membership(tenant_id, uid)
        if membership is None:
            self._count("not_found")
            self.logger.error(
                "Membership disappeared between validation and use",
                uid=uid,
                tenant_id=tenant_id,
            )
            if cached_id == tenant_id:
                repair["default_tenant_id"] = None
            raise NoMembership(uid)

        # The pointer is only written once the tenant and membership are confirmed.
        if scanned:
            repair["default_tenant_id"] = tenant_id

        entitlements = await load_entitlement_map(self.store, EntitlementScope.tenant(tenant_id))
        return ResolvedTenant(tenant=tenant, membership=membership, entitlements=entitlements)

    async def _scan_for_tenant(self, uid: str) -> Optional[str]:
        """Scan all tenants for memberships and apply the sandbox tie-break."""
        found: List[TenantCandidate] = []
        for tenant_id in await self.store.list_tenant_ids():
            if await self.store.get_membership(tenant_id, uid) is not None:
                found.append(TenantCandidate(tenant_id, tenant_id == self.sandbox_tenant_id))

        normal = [c for c in found if not c.is_sandbox]
        has_sandbox = any(c.is_sandbox for c in found)

        if normal:
            return normal[0].tenant_id

        if not has_sandbox:
            return None

        if await self._is_staff(uid):
            self.logger.info("Staff member resolved into sandbox tenant", uid=uid)
            return self.sandbox_tenant_id

        self.logger.error(
            "Non-staff account is a member of the sandbox tenant",
            security_event="sandbox_membership_without_staff",
            uid=uid,
            tenant_id=self.sandbox_tenant_id,
        )
        # Only the sandbox was found, so there is no other tenant to fall back to.
        return None

    async def _is_staff(self, uid: str) -> bool:
        try:
            return await self.staff.is_verified_platform_staff(uid)
        except Exception as e:
            self.logger.warning("Staff check failed, treating caller as non-staff", uid=uid, error=str(e))
            return False

    def _schedule_repair(self, uid: str, changes: Dict[str, Any]) -> None:
        task = asyncio.create_task(self._repair_cache(uid, dict(changes)))
        self._repairs.add(task)
        task.add_done_callback(self._repairs.discard)

    async def _repair_cache(self, uid: str, changes: Dict[str, Any]) -> None:
        try:
            await self.store.update_user(uid, changes)
            self.logger.info("Tenant cache repaired", uid=uid, default_tenant_id=changes.get("default_tenant_id"))
        except Exception as e:
            self.logger.warning("Tenant cache repair failed", uid=uid, error=str(e))

    async def drain_repairs(self) -> None:
        """Wait for detached cache repairs, e.g. on shutdown."""
        if self._repairs:
            await asyncio.gather(*list(self._repairs), return_exceptions=True)

    def _count(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_tenant_resolution(outcome)
