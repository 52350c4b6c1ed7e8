"""
Platform staff capability check.

Injected into the tenant resolver, MFA service and request gate so the
staff/sandbox classification is decided in exactly one place.
"""

from abc import ABC, abstractmethod
from typing import Iterable

from ..store.base import DocumentStore


class StaffCapability(ABC):
    """Answers whether a caller is verified platform engineering staff."""

    @abstractmethod
    async def is_verified_platform_staff(self, uid: str) -> bool:
        ...


class PlatformStaffVerifier(StaffCapability):
    """Super-admins from configuration plus explicit platform staff records."""

    def __init__(self, store: DocumentStore, super_admin_uids: Iterable[str] = ()):
        self.store = store
        self.super_admin_uids = frozenset(super_admin_uids)

    def is_super_admin(self, uid: str) -> bool:
        return uid in self.super_admin_uids

    async def is_verified_platform_staff(self, uid: str) -> bool:
        if self.is_super_admin(uid):
            return True
        return await self.store.staff_member_exists(uid)
