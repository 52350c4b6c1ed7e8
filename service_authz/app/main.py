"""
Authorization and session verification service.
"""

from typing import Any, Dict, Optional

from fastapi import Request

from shared.base_service import BaseService
from shared.config import AccessCoreConfig, get_config
from shared.errors import (
    AuthorizationError, MfaStateError, NoMembership, TenantAlreadyAssigned,
)
from shared.logging import set_user_context

from .auth.jwks import Caller, JWKSAuthenticator
from .entitlements.evaluator import EntitlementKeys
from .gate.middleware import RequestGate, TenantContext
from .mfa.service import MfaService
from .models import (
    CreateTenantRequest, MeResponse, MfaCodeRequest, MfaDisableResponse, MfaSetupResponse,
    MfaState, MfaStatusResponse, MfaVerifyResponse, RenameTenantRequest,
    TenantContextResponse, TenantInfo,
)
from .staff.capability import PlatformStaffVerifier
from .store.base import DocumentStore
from .store.memory import InMemoryDocumentStore
from .store.models import MemberRole
from .tenancy.resolver import TenantResolver
from .tenancy.service import TenancyService
from .vault.cipher import SecretVault


MFA_MODULE = [EntitlementKeys.MODULE_MFA]


def build_store(config: AccessCoreConfig) -> DocumentStore:
    """Select the document store from configuration."""
    if config.postgres_dsn:
        from .store.postgres import PostgresDocumentStore
        return PostgresDocumentStore(config.postgres_dsn)
    return InMemoryDocumentStore()


def tenant_response(context: TenantContext) -> TenantContextResponse:
    tenant = None
    if context.tenant_id is not None:
        tenant = TenantInfo(id=context.tenant_id, name=context.tenant_name or "")
    return TenantContextResponse(tenant=tenant, role=context.role, entitlements=context.entitlements)


class AuthzService(BaseService):
    """Tenant resolution, entitlement gating and MFA session verification."""

    def __init__(
        self,
        config: Optional[AccessCoreConfig] = None,
        store: Optional[DocumentStore] = None,
        authenticator: Optional[Any] = None,
    ):
        config = config or get_config()
        super().__init__(config)

        self.store = store or build_store(config)
        self.vault = SecretVault.from_config(config.mfa_encryption_key, config.deployment_mode)
        self.staff = PlatformStaffVerifier(self.store, config.super_admin_uid_set())
        self.tenancy = TenancyService(self.store)
        self.resolver = TenantResolver(
            self.store, self.staff, config.sandbox_tenant_id, metrics=self.metrics
        )
        self.mfa = MfaService(
            self.store,
            self.vault,
            self.staff,
            issuer=config.mfa_issuer,
            window=config.totp_window,
            metrics=self.metrics,
        )
        self.gate = RequestGate(
            self.resolver, self.tenancy, self.mfa, self.staff, metrics=self.metrics
        )
        self.authenticator = authenticator or JWKSAuthenticator(
            config.jwks_url, config.jwt_audience, config.jwt_issuer
        )

        self._setup_authz_routes()

    async def startup(self):
        await self.store.start()
        self.logger.info("Authz service started", store=type(self.store).__name__)

    async def shutdown(self):
        await self.resolver.drain_repairs()
        close = getattr(self.authenticator, "close", None)
        if close is not None:
            await close()
        await self.store.stop()

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"store": await self.store.check_health()}

    async def authenticate(self, request: Request) -> Caller:
        """Authenticate the request and expire MFA verification from older sessions."""
        caller = await self.authenticator.authenticate(request)
        set_user_context(uid=caller.uid)
        await self.mfa.check_and_reset_for_new_session(caller.uid, caller.issued_at)
        return caller

    def _setup_authz_routes(self):
        """Set up authz routes."""

        @self.app.get("/api/me", response_model=MeResponse)
        async def me(request: Request):
            """Profile, tenant and MFA state of the caller."""
            caller = await self.authenticate(request)
            lookup = self.gate.lookup(caller)

            try:
                context = await self.gate.require_entitlements_or_freelancer(caller, lookup=lookup)
            except NoMembership:
                context = None

            status = await self.mfa.get_status(caller.uid)
            tenant_view = tenant_response(context) if context is not None else TenantContextResponse()
            return MeResponse(
                uid=caller.uid,
                email=caller.email,
                needs_onboarding=context is None,
                is_freelancer=await self.gate.is_freelancer(caller),
                tenant=tenant_view.tenant,
                role=tenant_view.role,
                entitlements=tenant_view.entitlements,
                mfa=MfaState(
                    enabled=status.enabled,
                    setup_in_progress=status.setup_in_progress,
                    required=await self.gate.mfa_verification_pending(caller, lookup),
                ),
            )

        @self.app.get("/api/tenant", response_model=TenantContextResponse)
        async def get_tenant(request: Request):
            """Resolved tenant context of the caller."""
            caller = await self.authenticate(request)
            context = await self.gate.authorize(request, caller)
            return tenant_response(context)

        @self.app.patch("/api/tenant", response_model=TenantContextResponse)
        async def rename_tenant(body: RenameTenantRequest, request: Request):
            """Rename the caller's tenant. Tenant admins only."""
            caller = await self.authenticate(request)
            context = await self.gate.authorize(request, caller)
            if context.role != MemberRole.ADMIN.value:
                raise AuthorizationError("Tenant admin role required", {"role": context.role})

            tenant = await self.tenancy.update_tenant_name(context.tenant_id, body.name)
            context.tenant_name = tenant.name
            return tenant_response(context)

        @self.app.post("/api/onboarding/create-tenant", status_code=201, response_model=TenantContextResponse)
        async def create_tenant(body: CreateTenantRequest, request: Request):
            """Create a tenant with the caller as its admin."""
            caller = await self.authenticate(request)
            try:
                existing = await self.resolver.resolve_tenant_for_user(caller.uid)
            except NoMembership:
                existing = None
            if existing is not None:
                raise TenantAlreadyAssigned(caller.uid, existing.tenant.id)

            tenant = await self.tenancy.create_tenant(caller.uid, caller.email, body.tenant_name)
            entitlements = await self.tenancy.get_entitlements(tenant.id)
            return TenantContextResponse(
                tenant=TenantInfo(id=tenant.id, name=tenant.name),
                role=MemberRole.ADMIN.value,
                entitlements=entitlements,
            )

        @self.app.get("/api/mfa/status", response_model=MfaStatusResponse)
        async def mfa_status(request: Request):
            caller = await self.authenticate(request)
            await self.gate.authorize(request, caller, MFA_MODULE, allow_freelancer=True)
            status = await self.mfa.get_status(caller.uid)
            return MfaStatusResponse(
                enabled=status.enabled,
                setup_in_progress=status.setup_in_progress,
                session_verified=status.session_verified,
            )

        @self.app.post("/api/mfa/setup", response_model=MfaSetupResponse)
        async def mfa_setup(request: Request):
            """Start MFA enrollment and return the QR code and backup codes."""
            caller = await self.authenticate(request)
            await self.gate.authorize(request, caller, MFA_MODULE, allow_freelancer=True)
            result = await self.mfa.begin_setup(caller.uid, caller.email)
            return MfaSetupResponse(
                qr_code=result.qr_code,
                secret=result.secret,
                otpauth_uri=result.otpauth_uri,
                backup_codes=result.backup_codes,
            )

        @self.app.post("/api/mfa/verify-setup", response_model=MfaVerifyResponse)
        async def mfa_verify_setup(body: MfaCodeRequest, request: Request):
            """Confirm enrollment with the first TOTP code."""
            caller = await self.authenticate(request)
            await self.gate.authorize(request, caller, MFA_MODULE, allow_freelancer=True)
            await self.mfa.confirm_setup(caller.uid, body.code)
            return MfaVerifyResponse(verified=True, method="totp")

        @self.app.post("/api/mfa/verify", response_model=MfaVerifyResponse)
        async def mfa_verify(body: MfaCodeRequest, request: Request):
            """Verify the current session with a TOTP or backup code.

            No entitlement check: this runs during login, before the tenant
            context is loaded.
            """
            caller = await self.authenticate(request)
            method = await self.mfa.verify_login(caller.uid, body.code)
            return MfaVerifyResponse(verified=True, method=method)

        @self.app.post("/api/mfa/disable", response_model=MfaDisableResponse)
        async def mfa_disable(request: Request):
            caller = await self.authenticate(request)
            await self.gate.authorize(request, caller, MFA_MODULE, allow_freelancer=True)
            status = await self.mfa.get_status(caller.uid)
            if not status.enabled:
                raise MfaStateError("MFA is not enabled")
            await self.mfa.disable_mfa(caller.uid)
            return MfaDisableResponse(success=True)


def create_app(config: Optional[AccessCoreConfig] = None):
    """Application factory for ASGI servers."""
    return AuthzService(config).app


if __name__ == "__main__":
    AuthzService().run()
