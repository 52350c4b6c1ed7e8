"""
Entitlement evaluation package.

Pure functions deciding whether a tri-valued feature flag is granted.
"""

from .evaluator import (
    DEFAULT_TENANT_ENTITLEMENTS,
    EntitlementKeys,
    has_entitlement,
    is_granted,
    missing_entitlements,
)

__all__ = [
    "DEFAULT_TENANT_ENTITLEMENTS",
    "EntitlementKeys",
    "has_entitlement",
    "is_granted",
    "missing_entitlements",
]
