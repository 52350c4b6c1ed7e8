"""
Entitlement evaluation.

An entitlement value doubles as an on/off flag and as a limit: ``True``,
any non-empty string (e.g. a plan name such as ``"trial"``) and any
positive number count as granted. Everything else, including an absent
key, does not.
"""

from numbers import Real
from typing import Iterable, List, Mapping, Optional

from ..store.models import EntitlementValue


class EntitlementKeys:
    """Known entitlement keys."""

    # Modules
    MODULE_CALENDAR_CORE = "module.calendar_core"
    MODULE_TIME_TRACKING = "module.time_tracking"
    MODULE_SHIFT_POOL = "module.shift_pool"
    MODULE_REPORTS = "module.reports"
    MODULE_MFA = "module.mfa"

    # Features
    TIME_TRACKING_APPROVALS = "time_tracking.approvals"
    SHIFT_POOL_NOTIFICATIONS = "shift_pool.notifications"
    REPORTS_EXPORT = "reports.export"


DEFAULT_TENANT_ENTITLEMENTS = {
    EntitlementKeys.MODULE_CALENDAR_CORE: True,
    EntitlementKeys.MODULE_TIME_TRACKING: True,
    EntitlementKeys.MODULE_SHIFT_POOL: True,
    EntitlementKeys.MODULE_REPORTS: True,
}


def is_granted(value: Optional[EntitlementValue]) -> bool:
    """Return whether an entitlement value counts as granted."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value != ""
    if isinstance(value, Real):
        return value > 0
    return False


def has_entitlement(entitlements: Mapping[str, EntitlementValue], key: str) -> bool:
    return is_granted(entitlements.get(key))


def missing_entitlements(
    entitlements: Mapping[str, EntitlementValue], required: Iterable[str]
) -> List[str]:
    """Return every required key that is not granted, in request order."""
    return [key for key in required if not has_entitlement(entitlements, key)]
