"""
Tenancy package: tenant resolution and tenant/entitlement administration.
"""

from .resolver import ResolvedTenant, TenantResolver
from .service import TenancyService, load_entitlement_map

__all__ = ["ResolvedTenant", "TenantResolver", "TenancyService", "load_entitlement_map"]
