"""
Record store boundary for the access core.

The core only needs point reads, field-scoped merges and collection scans;
everything else about the backing store (consistency, retries, timeouts)
is owned by the implementation.
"""

import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from .models import (
    EntitlementRecord, EntitlementScope, FreelancerRecord,
    MembershipRecord, ScopeKind, TenantRecord, UserRecord,
)


def normalize_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    """Convert enum members to their stored values."""
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in changes.items()
    }


class DocumentStore(ABC):
    """Async record store used by the resolver, MFA service and gate."""

    def new_id(self) -> str:
        return uuid.uuid4().hex

    async def start(self) -> None:
        """Open connections."""

    async def stop(self) -> None:
        """Close connections."""

    async def check_health(self) -> str:
        """Return 'ok' when the store is reachable, otherwise 'error'."""
        return "ok"

    # Users

    @abstractmethod
    async def get_user(self, uid: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def update_user(self, uid: str, changes: Dict[str, Any]) -> None:
        """Merge ``changes`` into the user document, creating it if absent.

        A value of ``None`` clears the field.
        """

    # Tenants and memberships

    @abstractmethod
    async def list_tenant_ids(self) -> List[str]:
        """Return every tenant id in stable store order."""

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        ...

    @abstractmethod
    async def put_tenant(self, tenant: TenantRecord) -> None:
        ...

    @abstractmethod
    async def get_membership(self, tenant_id: str, uid: str) -> Optional[MembershipRecord]:
        ...

    @abstractmethod
    async def put_membership(self, tenant_id: str, membership: MembershipRecord) -> None:
        ...

    @abstractmethod
    async def remove_membership(self, tenant_id: str, uid: str) -> None:
        ...

    # Freelancers

    @abstractmethod
    async def get_freelancer(self, uid: str) -> Optional[FreelancerRecord]:
        ...

    @abstractmethod
    async def put_freelancer(self, freelancer: FreelancerRecord) -> None:
        ...

    # Entitlements

    @abstractmethod
    async def list_entitlements(self, scope: EntitlementScope) -> List[EntitlementRecord]:
        ...

    @abstractmethod
    async def find_entitlements(self, scope: EntitlementScope, key: str) -> List[EntitlementRecord]:
        """Return the records under ``scope`` whose key equals ``key``."""

    @abstractmethod
    async def put_entitlement(self, scope: EntitlementScope, record: EntitlementRecord) -> None:
        """Insert or replace the record with ``record.record_id``."""

    @abstractmethod
    async def delete_entitlement(self, scope: EntitlementScope, record_id: str) -> None:
        ...

    async def scope_exists(self, scope: EntitlementScope) -> bool:
        if scope.kind == ScopeKind.TENANT:
            return await self.get_tenant(scope.owner_id) is not None
        return await self.get_freelancer(scope.owner_id) is not None

    # Platform staff

    @abstractmethod
    async def staff_member_exists(self, uid: str) -> bool:
        ...
