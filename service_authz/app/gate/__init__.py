"""
Request gate package.
"""

from .middleware import DEFAULT_MFA_EXEMPT_PATHS, RequestGate, TenantContext

__all__ = ["DEFAULT_MFA_EXEMPT_PATHS", "RequestGate", "TenantContext"]
