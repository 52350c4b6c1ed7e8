"""
PostgreSQL document store for the access core.
"""

import json
from typing import Any, Dict, List, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import AccessLayerException

from .base import DocumentStore, normalize_changes
from .models import (
    EntitlementRecord, EntitlementScope, FreelancerRecord,
    MembershipRecord, MemberRole, TenantRecord, UserRecord,
)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        uid VARCHAR(255) PRIMARY KEY,
        doc JSONB NOT NULL DEFAULT '{}'
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS tenants (
        id VARCHAR(255) PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        created_by VARCHAR(255),
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS tenant_members (
        tenant_id VARCHAR(255) NOT NULL,
        uid VARCHAR(255) NOT NULL,
        email VARCHAR(320),
        role VARCHAR(20) NOT NULL,
        joined_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        invited_by VARCHAR(255),
        PRIMARY KEY (tenant_id, uid)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS freelancers (
        uid VARCHAR(255) PRIMARY KEY,
        email VARCHAR(320),
        display_name VARCHAR(255)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS entitlements (
        scope_kind VARCHAR(20) NOT NULL,
        owner_id VARCHAR(255) NOT NULL,
        record_id VARCHAR(64) NOT NULL,
        key VARCHAR(255) NOT NULL,
        value JSONB NOT NULL,
        granted_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        PRIMARY KEY (scope_kind, owner_id, record_id)
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_entitlements_key ON entitlements(scope_kind, owner_id, key);
    """,
    """
    CREATE TABLE IF NOT EXISTS platform_staff (
        uid VARCHAR(255) PRIMARY KEY
    );
    """,
)


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


class PostgresDocumentStore(DocumentStore):
    """Document store backed by PostgreSQL tables and JSONB user documents."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self.logger = get_logger("authz.store.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Open the connection pool and create tables."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30,
                init=_init_connection,
            )
            async with self.pool.acquire() as conn:
                for statement in SCHEMA:
                    await conn.execute(statement)

            self.logger.info("PostgreSQL document store started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL document store", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL document store stopped")

    async def check_health(self) -> str:
        try:
            await self._require_pool().fetchval("SELECT 1")
            return "ok"
        except Exception as e:
            self.logger.error("PostgreSQL health check failed", error=str(e))
            return "error"

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise AccessLayerException("POSTGRES_NOT_STARTED", "Document store has not been started")
        return self.pool

    async def get_user(self, uid: str) -> Optional[UserRecord]:
        row = await self._require_pool().fetchrow("SELECT doc FROM users WHERE uid = $1", uid)
        if not row:
            return None
        return UserRecord.from_document(uid, row["doc"])

    async def update_user(self, uid: str, changes: Dict[str, Any]) -> None:
        normalized = normalize_changes(changes)
        set_fields = {k: v for k, v in normalized.items() if v is not None}
        cleared = [k for k, v in normalized.items() if v is None]
        await self._require_pool().execute(
            """
            INSERT INTO users (uid, doc) VALUES ($1, $2::jsonb)
            ON CONFLICT (uid) DO UPDATE SET doc = (users.doc || $2::jsonb) - $3::text[]
            """,
            uid, set_fields, cleared,
        )

    async def list_tenant_ids(self) -> List[str]:
        rows = await self._require_pool().fetch("SELECT id FROM tenants ORDER BY created_at ASC, id ASC")
        return [row["id"] for row in rows]

    async def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        row = await self._require_pool().fetchrow(
            "SELECT id, name, created_by, created_at FROM tenants WHERE id = $1", tenant_id
        )
        if not row:
            return None
        return TenantRecord(
            id=row["id"], name=row["name"], created_by=row["created_by"], created_at=row["created_at"]
        )

    async def put_tenant(self, tenant: TenantRecord) -> None:
        await self._require_pool().execute(
            """
            INSERT INTO tenants (id, name, created_by, created_at) VALUES ($1, $2, $3, $4)
            ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name
            """,
            tenant.id, tenant.name, tenant.created_by, tenant.created_at,
        )

    async def get_membership(self, tenant_id: str, uid: str) -> Optional[MembershipRecord]:
        row = await self._require_pool().fetchrow(
            """
            SELECT uid, email, role, joined_at, invited_by FROM tenant_members
            WHERE tenant_id = $1 AND uid = $2
            """,
            tenant_id, uid,
        )
        if not row:
            return None
        return MembershipRecord(
            uid=row["uid"],
            email=row["email"],
            role=MemberRole(row["role"]),
            joined_at=row["joined_at"],
            invited_by=row["invited_by"],
        )

    async def put_membership(self, tenant_id: str, membership: MembershipRecord) -> None:
        await self._require_pool().execute(
            """
            INSERT INTO tenant_members (tenant_id, uid, email, role, joined_at, invited_by)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (tenant_id, uid) DO UPDATE SET
                email = EXCLUDED.email,
                role = EXCLUDED.role
            """,
            tenant_id, membership.uid, membership.email, membership.role.value,
            membership.joined_at, membership.invited_by,
        )

    async def remove_membership(self, tenant_id: str, uid: str) -> None:
        await self._require_pool().execute(
            "DELETE FROM tenant_members WHERE tenant_id = $1 AND uid = $2", tenant_id, uid
        )

    async def put_freelancer(self, freelancer: FreelancerRecord) -> None:
        await self._require_pool().execute(
            """
            INSERT INTO freelancers (uid, email, display_name) VALUES ($1, $2, $3)
            ON CONFLICT (uid) DO UPDATE SET
                email = EXCLUDED.email,
                display_name = EXCLUDED.display_name
            """,
            freelancer.uid, freelancer.email, freelancer.display_name,
        )

    async def get_freelancer(self, uid: str) -> Optional[FreelancerRecord]:
        row = await self._require_pool().fetchrow(
            "SELECT uid, email, display_name FROM freelancers WHERE uid = $1", uid
        )
        if not row:
            return None
        return FreelancerRecord(uid=row["uid"], email=row["email"], display_name=row["display_name"])

    async def list_entitlements(self, scope: EntitlementScope) -> List[EntitlementRecord]:
        rows = await self._require_pool().fetch(
            """
            SELECT record_id, key, value, granted_at FROM entitlements
            WHERE scope_kind = $1 AND owner_id = $2
            ORDER BY granted_at ASC
            """,
            scope.kind.value, scope.owner_id,
        )
        return [self._row_to_entitlement(row) for row in rows]

    async def find_entitlements(self, scope: EntitlementScope, key: str) -> List[EntitlementRecord]:
        rows = await self._require_pool().fetch(
            """
            SELECT record_id, key, value, granted_at FROM entitlements
            WHERE scope_kind = $1 AND owner_id = $2 AND key = $3
            """,
            scope.kind.value, scope.owner_id, key,
        )
        return [self._row_to_entitlement(row) for row in rows]

    async def put_entitlement(self, scope: EntitlementScope, record: EntitlementRecord) -> None:
        await self._require_pool().execute(
            """
            INSERT INTO entitlements (scope_kind, owner_id, record_id, key, value, granted_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6)
            ON CONFLICT (scope_kind, owner_id, record_id) DO UPDATE SET
                value = EXCLUDED.value,
                granted_at = EXCLUDED.granted_at
            """,
            scope.kind.value, scope.owner_id, record.record_id, record.key,
            record.value, record.granted_at,
        )

    async def delete_entitlement(self, scope: EntitlementScope, record_id: str) -> None:
        await self._require_pool().execute(
            "DELETE FROM entitlements WHERE scope_kind = $1 AND owner_id = $2 AND record_id = $3",
            scope.kind.value, scope.owner_id, record_id,
        )

    async def staff_member_exists(self, uid: str) -> bool:
        row = await self._require_pool().fetchrow("SELECT 1 FROM platform_staff WHERE uid = $1", uid)
        return row is not None

    def _row_to_entitlement(self, row) -> EntitlementRecord:
        return EntitlementRecord(
            record_id=row["record_id"],
            key=row["key"],
            value=row["value"],
            granted_at=row["granted_at"],
        )
