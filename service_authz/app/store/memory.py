"""
In-memory document store used for local runs and tests.
"""

import copy
from typing import Any, Dict, List, Optional, Tuple

from .base import DocumentStore, normalize_changes
from .models import (
    EntitlementRecord, EntitlementScope, FreelancerRecord,
    MembershipRecord, TenantRecord, UserRecord,
)


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed store; insertion order is the scan order."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.tenants: Dict[str, TenantRecord] = {}
        self.members: Dict[Tuple[str, str], MembershipRecord] = {}
        self.freelancers: Dict[str, FreelancerRecord] = {}
        self.entitlements: Dict[EntitlementScope, Dict[str, EntitlementRecord]] = {}
        self.staff: set = set()

    async def get_user(self, uid: str) -> Optional[UserRecord]:
        doc = self.users.get(uid)
        if doc is None:
            return None
        return UserRecord.from_document(uid, copy.deepcopy(doc))

    async def update_user(self, uid: str, changes: Dict[str, Any]) -> None:
        doc = self.users.setdefault(uid, {})
        for key, value in normalize_changes(changes).items():
            if value is None:
                doc.pop(key, None)
            else:
                doc[key] = copy.deepcopy(value)

    async def list_tenant_ids(self) -> List[str]:
        return list(self.tenants)

    async def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        return self.tenants.get(tenant_id)

    async def put_tenant(self, tenant: TenantRecord) -> None:
        self.tenants[tenant.id] = tenant

    async def get_membership(self, tenant_id: str, uid: str) -> Optional[MembershipRecord]:
        return self.members.get((tenant_id, uid))

    async def put_membership(self, tenant_id: str, membership: MembershipRecord) -> None:
        self.members[(tenant_id, membership.uid)] = membership

    async def remove_membership(self, tenant_id: str, uid: str) -> None:
        self.members.pop((tenant_id, uid), None)

    async def get_freelancer(self, uid: str) -> Optional[FreelancerRecord]:
        return self.freelancers.get(uid)

    async def put_freelancer(self, freelancer: FreelancerRecord) -> None:
        self.freelancers[freelancer.uid] = freelancer

    async def list_entitlements(self, scope: EntitlementScope) -> List[EntitlementRecord]:
        return list(self.entitlements.get(scope, {}).values())

    async def find_entitlements(self, scope: EntitlementScope, key: str) -> List[EntitlementRecord]:
        return [r for r in self.entitlements.get(scope, {}).values() if r.key == key]

    async def put_entitlement(self, scope: EntitlementScope, record: EntitlementRecord) -> None:
        self.entitlements.setdefault(scope, {})[record.record_id] = record

    async def delete_entitlement(self, scope: EntitlementScope, record_id: str) -> None:
        self.entitlements.get(scope, {}).pop(record_id, None)

    async def staff_member_exists(self, uid: str) -> bool:
        return uid in self.staff

    def add_staff_member(self, uid: str) -> None:
        self.staff.add(uid)
