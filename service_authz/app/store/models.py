"""
Document models for the access core record store.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


EntitlementValue = Union[bool, str, int, float]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemberRole(str, Enum):
    """Role of a member inside a tenant."""
    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class MfaSetupState(str, Enum):
    """Enrollment state of a user's second factor."""
    NONE = "none"
    PENDING = "pending"
    CONFIRMED = "confirmed"


class ScopeKind(str, Enum):
    """Owner type of an entitlement sub-collection."""
    TENANT = "tenant"
    FREELANCER = "freelancer"


@dataclass(frozen=True)
class EntitlementScope:
    """Addresses the entitlement sub-collection of a tenant or freelancer."""
    kind: ScopeKind
    owner_id: str

    @classmethod
    def tenant(cls, tenant_id: str) -> "EntitlementScope":
        return cls(ScopeKind.TENANT, tenant_id)

    @classmethod
    def freelancer(cls, uid: str) -> "EntitlementScope":
        return cls(ScopeKind.FREELANCER, uid)


@dataclass
class UserRecord:
    """Identity-scoped user document."""
    uid: str
    email: Optional[str] = None
    default_tenant_id: Optional[str] = None
    is_freelancer: bool = False
    mfa_setup_state: MfaSetupState = MfaSetupState.NONE
    mfa_session_verified: bool = False
    mfa_secret: Optional[str] = None
    mfa_backup_codes: Optional[List[str]] = None
    mfa_verified_at: Optional[int] = None

    @property
    def mfa_enabled(self) -> bool:
        return self.mfa_setup_state == MfaSetupState.CONFIRMED

    def to_document(self) -> Dict[str, Any]:
        doc = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "uid"}
        doc["mfa_setup_state"] = self.mfa_setup_state.value
        return doc

    @classmethod
    def from_document(cls, uid: str, doc: Dict[str, Any]) -> "UserRecord":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in doc.items() if k in known and k != "uid"}
        if "mfa_setup_state" in data and data["mfa_setup_state"] is not None:
            data["mfa_setup_state"] = MfaSetupState(data["mfa_setup_state"])
        else:
            data.pop("mfa_setup_state", None)
        for flag in ("is_freelancer", "mfa_session_verified"):
            if data.get(flag) is None:
                data.pop(flag, None)
        return cls(uid=uid, **data)


@dataclass
class TenantRecord:
    """Organization document."""
    id: str
    name: str
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class MembershipRecord:
    """Proof that a user belongs to a tenant."""
    uid: str
    email: Optional[str] = None
    role: MemberRole = MemberRole.EMPLOYEE
    joined_at: datetime = field(default_factory=utcnow)
    invited_by: Optional[str] = None


@dataclass
class EntitlementRecord:
    """Feature flag or limit granted to a tenant or freelancer."""
    record_id: str
    key: str
    value: EntitlementValue
    granted_at: datetime = field(default_factory=utcnow)


@dataclass
class FreelancerRecord:
    """Identity root for non-employee users."""
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
