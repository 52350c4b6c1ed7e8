"""
Authz Service package for the Workforce Access Core.

This package decides, for every authenticated request, which tenant the
caller acts in, whether that tenant (or the freelancer) holds the
entitlements a route needs, and whether the caller has passed MFA for
the current session. It provides:

- app.main: API surface for profile, tenant context, onboarding and MFA.
- app.tenancy: Tenant resolution with read-repair and tenant administration.
- app.entitlements: Entitlement keys and value evaluation.
- app.mfa: TOTP enrollment, backup codes and session verification.
- app.vault: AES-256-GCM envelopes for MFA secrets.
- app.gate: Tenant and MFA gates applied to protected routes.
- app.auth: Bearer token verification against the identity provider JWKS.
- app.store: Record store boundary with in-memory and PostgreSQL backends.

Guidelines:
- The MFA gate fails closed; unexpected errors reject the request.
- Cached tenant pointers are hints and are always re-validated.
"""
