"""
Request gate.

Two checks run for authenticated requests:

* the tenant gate resolves the caller's tenant and enforces the
  entitlements a route requires;
* the MFA gate rejects callers whose second factor is active but not
  verified for the current session. It fails closed: any unexpected
  error rejects the request.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Sequence

from fastapi import Request

from shared.errors import (
    MfaCheckFailed, MfaRequired, MissingEntitlement, NoMembership, SecretCorrupted,
)
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector

from ..auth.jwks import Caller
from ..entitlements.evaluator import EntitlementKeys, has_entitlement, missing_entitlements
from ..mfa.service import MfaService
from ..staff.capability import StaffCapability
from ..store.models import EntitlementValue
from ..tenancy.resolver import ResolvedTenant, TenantResolver
from ..tenancy.service import TenancyService


DEFAULT_MFA_EXEMPT_PATHS = (
    "/api/me",
    "/api/mfa/verify",
    "/api/mfa/verify-setup",
    "/api/mfa/status",
    "/api/onboarding/create-tenant",
)


@dataclass
class TenantContext:
    """Tenant context attached to ``request.state.tenant``."""
    tenant_id: Optional[str]
    tenant_name: Optional[str]
    entitlements: Dict[str, EntitlementValue] = field(default_factory=dict)
    role: Optional[str] = None


class TenantLookup:
    """Resolves one caller's tenant at most once per request.

    The MFA gate and the tenant gate share a lookup, so a cache miss scans
    the tenants once and schedules a single read-repair. A `NoMembership`
    outcome is remembered and raised again to every caller.
    """

    def __init__(self, resolver: TenantResolver, uid: str):
        self.resolver = resolver
        self.uid = uid
        self._resolved: Optional[ResolvedTenant] = None
        self._missing: Optional[NoMembership] = None

    async def get(self) -> ResolvedTenant:
        if self._missing is not None:
            raise self._missing
        if self._resolved is None:
            try:
                self._resolved = await self.resolver.resolve_tenant_for_user(self.uid)
            except NoMembership as e:
                self._missing = e
                raise
        return self._resolved


class RequestGate:
    """Tenant and MFA gates for authenticated requests."""

    def __init__(
        self,
        resolver: TenantResolver,
        tenancy: TenancyService,
        mfa: MfaService,
        staff: StaffCapability,
        exempt_paths: Iterable[str] = DEFAULT_MFA_EXEMPT_PATHS,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.resolver = resolver
        self.tenancy = tenancy
        self.mfa = mfa
        self.staff = staff
        self.exempt_paths = frozenset(exempt_paths)
        self.metrics = metrics
        self.logger = get_logger("authz.gate")

    def lookup(self, caller: Caller) -> TenantLookup:
        return TenantLookup(self.resolver, caller.uid)

    # Tenant gate

    async def require_tenant(
        self,
        caller: Caller,
        required: Sequence[str] = (),
        lookup: Optional[TenantLookup] = None,
    ) -> TenantContext:
        """Resolve the caller's tenant and check ``required`` entitlements.

        Freelancers are evaluated against their own entitlements rather
        than the tenant's, and the context carries that same map.
        """
        lookup = lookup or self.lookup(caller)
        try:
            resolved = await lookup.get()
        except NoMembership:
            self._count("tenant", "no_tenant")
            raise

        evaluated = resolved.entitlements
        if await self.is_freelancer(caller):
            evaluated = await self.tenancy.get_freelancer_entitlements(caller.uid)
        self._check_required(caller, evaluated, required)

        set_user_context(tenant_id=resolved.tenant.id)
        self._count("tenant", "allow")
        return TenantContext(
            tenant_id=resolved.tenant.id,
            tenant_name=resolved.tenant.name,
            entitlements=evaluated,
            role=resolved.membership.role.value,
        )

    async def require_entitlements_or_freelancer(
        self,
        caller: Caller,
        required: Sequence[str] = (),
        lookup: Optional[TenantLookup] = None,
    ) -> TenantContext:
        """Tenant gate that also admits freelancers without a tenant."""
        if not await self.is_freelancer(caller):
            return await self.require_tenant(caller, required, lookup)

        try:
            return await self.require_tenant(caller, required, lookup)
        except NoMembership:
            entitlements = await self.tenancy.get_freelancer_entitlements(caller.uid)
            self._check_required(caller, entitlements, required)
            self._count("tenant", "allow_freelancer")
            return TenantContext(tenant_id=None, tenant_name=None, entitlements=entitlements)

    def _check_required(
        self, caller: Caller, entitlements: Dict[str, EntitlementValue], required: Sequence[str]
    ) -> None:
        missing = missing_entitlements(entitlements, required)
        if missing:
            self._count("tenant", "missing_entitlement")
            self.logger.info("Missing entitlements", uid=caller.uid, missing=missing)
            raise MissingEntitlement(missing)

    # MFA gate

    def is_exempt(self, path: str) -> bool:
        """Exact match against the bootstrap allow-list; a trailing slash is ignored."""
        if len(path) > 1:
            path = path.rstrip("/")
        return path in self.exempt_paths

    async def require_mfa_verification(
        self,
        caller: Optional[Caller],
        path: str,
        lookup: Optional[TenantLookup] = None,
    ) -> None:
        """Reject the request when MFA is active but unverified this session."""
        if caller is None or self.is_exempt(path):
            self._count("mfa", "skip")
            return

        try:
            await self._check_mfa(caller, lookup or self.lookup(caller))
        except (MfaRequired, SecretCorrupted):
            self._count("mfa", "deny")
            raise
        except Exception as e:
            self._count("mfa", "error")
            self.logger.error("MFA gate check failed", uid=caller.uid, path=path, error=str(e))
            raise MfaCheckFailed() from e

        self._count("mfa", "allow")

    async def mfa_verification_pending(
        self, caller: Caller, lookup: Optional[TenantLookup] = None
    ) -> bool:
        """Return whether the MFA gate would ask ``caller`` for a code."""
        try:
            await self._check_mfa(caller, lookup or self.lookup(caller))
        except MfaRequired:
            return True
        return False

    async def _check_mfa(self, caller: Caller, lookup: TenantLookup) -> None:
        uid = caller.uid

        if await self.staff.is_verified_platform_staff(uid):
            status = await self.mfa.get_status(uid)
            if not status.enabled:
                return
            # None includes a secret that was just auto-repaired.
            if await self.mfa.get_secret(uid) is None:
                return
            if not status.session_verified:
                raise MfaRequired()
            return

        try:
            resolved = await lookup.get()
        except NoMembership:
            return

        mfa_module = has_entitlement(resolved.entitlements, EntitlementKeys.MODULE_MFA)
        if not mfa_module and await self.is_freelancer(caller):
            freelancer_entitlements = await self.tenancy.get_freelancer_entitlements(uid)
            mfa_module = has_entitlement(freelancer_entitlements, EntitlementKeys.MODULE_MFA)
        if not mfa_module:
            return

        status = await self.mfa.get_status(uid)
        if not status.enabled:
            return
        if not status.session_verified:
            raise MfaRequired()

    # Request integration

    async def authorize(
        self,
        request: Request,
        caller: Caller,
        required: Sequence[str] = (),
        allow_freelancer: bool = False,
    ) -> TenantContext:
        """Run the MFA gate and the tenant gate, then attach the tenant context.

        Both gates share one tenant lookup.
        """
        lookup = self.lookup(caller)
        await self.require_mfa_verification(caller, request.url.path, lookup)
        if allow_freelancer:
            context = await self.require_entitlements_or_freelancer(caller, required, lookup)
        else:
            context = await self.require_tenant(caller, required, lookup)
        request.state.tenant = context
        return context

    async def is_freelancer(self, caller: Caller) -> bool:
        if caller.is_freelancer:
            return True
        return await self.tenancy.is_freelancer(caller.uid)

    def _count(self, gate: str, decision: str) -> None:
        if self.metrics:
            self.metrics.record_gate_decision(gate, decision)
