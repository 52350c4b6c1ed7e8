"""
Record store package.

Defines the async `DocumentStore` boundary the access core reads and
writes through, with an in-memory implementation for local runs and
tests and a PostgreSQL implementation for deployments.
"""

from .base import DocumentStore
from .memory import InMemoryDocumentStore
from .models import (
    EntitlementRecord, EntitlementScope, EntitlementValue, FreelancerRecord,
    MembershipRecord, MemberRole, MfaSetupState, ScopeKind, TenantRecord, UserRecord,
)

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "EntitlementRecord",
    "EntitlementScope",
    "EntitlementValue",
    "FreelancerRecord",
    "MembershipRecord",
    "MemberRole",
    "MfaSetupState",
    "ScopeKind",
    "TenantRecord",
    "UserRecord",
]
