"""Tenant provisioning and lifecycle operations.

Creating a store touches two things that cannot share a transaction: the
registry row (global schema) and the tenant schema itself (DDL on separate
connections). The row is written first, in CREATING; if the schema work
fails afterwards the tenant is moved to FAILED, which is visible, never
resolvable, and can be retried. A build that dies without reaching either
state leaves the tenant in PROVISIONING; retry and delete pick it up from
there.

    CREATING -> PROVISIONING -> (create + migrate schema) -> ACTIVE
                            \\-> FAILED -> PROVISIONING (retry)
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.orm import sessionmaker

from multistore.core.config import Settings, get_settings
from multistore.core.errors import InvalidTransitionError, ProvisioningError, TenancyError
from multistore.models.tenant import Tenant, TenantCreate, TenantStatus
from multistore.tenancy.lifecycle import SchemaLifecycleManager
from multistore.tenancy.locks import KeyedLock
from multistore.tenancy.registry import TenantRegistry

logger = logging.getLogger(__name__)

MIGRATABLE_STATUSES = (TenantStatus.ACTIVE, TenantStatus.SUSPENDED)


@dataclass
class MigrationResult:
    store_key: str
    schema_name: str
    applied: list[int] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TenantProvisioner:
    def __init__(
        self,
        session_factory: sessionmaker,
        lifecycle: SchemaLifecycleManager,
        settings: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.lifecycle = lifecycle
        self.settings = settings or get_settings()
        self._locks = KeyedLock()

    # ── Provisioning ──────────────────────────────────────────

    async def provision(self, body: TenantCreate) -> Tenant:
        """Register a store and build its schema.

        Raises TenantConflictError before any schema work when the key is
        taken, and ProvisioningError (tenant left FAILED) when the schema
        cannot be created or migrated.
        """
        async with self._locks.hold(body.store_key):
            async with self.session_factory() as session:
                tenant = await TenantRegistry(session, self.settings).create(body)
            return await self._build(tenant.id)

    async def retry(self, tenant_id: uuid.UUID) -> Tenant:
        """Re-run provisioning for a FAILED tenant. Schema creation is idempotent.

        A tenant stuck in PROVISIONING (its build was interrupted) is marked
        FAILED first and then rebuilt.
        """
        tenant = await self._require(tenant_id)
        async with self._locks.hold(tenant.store_key):
            await self._recover_interrupted(tenant_id)
            return await self._build(tenant_id)

    async def _build(self, tenant_id: uuid.UUID) -> Tenant:
        async with self.session_factory() as session:
            registry = TenantRegistry(session, self.settings)
            tenant = await registry.transition(tenant_id, TenantStatus.PROVISIONING)
            store_key, schema_name = tenant.store_key, tenant.schema_name
            try:
                applied = await self.lifecycle.create_schema(schema_name)
                tenant = await registry.transition(tenant_id, TenantStatus.ACTIVE)
            except Exception as exc:
                logger.exception("Provisioning failed for tenant %s", store_key)
                await self._mark_failed(tenant_id, store_key)
                raise ProvisioningError(
                    f"Provisioning of tenant '{store_key}' failed: {exc}",
                    tenant_id=str(tenant_id),
                ) from exc

        logger.info("Provisioned tenant %s (schema %s, applied %s)",
                    store_key, schema_name, applied)
        return tenant

    async def _mark_failed(self, tenant_id: uuid.UUID, store_key: str) -> None:
        # Fresh session: the provisioning one may be mid-rollback
        try:
            async with self.session_factory() as session:
                await TenantRegistry(session, self.settings).transition(
                    tenant_id, TenantStatus.FAILED
                )
        except TenancyError:
            logger.exception("Could not mark tenant %s as failed", store_key)

    async def _recover_interrupted(self, tenant_id: uuid.UUID) -> None:
        # Caller holds the key lock, so no build of this tenant runs in this
        # process; PROVISIONING here means a build died before finishing
        tenant = await self._require(tenant_id)
        if tenant.status == TenantStatus.PROVISIONING:
            logger.warning("Tenant %s was left provisioning; marking it failed",
                           tenant.store_key)
            await self._transition(tenant_id, TenantStatus.FAILED, tenant.version)

    # ── Status changes ────────────────────────────────────────

    async def suspend(self, tenant_id: uuid.UUID, expected_version: int | None = None) -> Tenant:
        return await self._transition(tenant_id, TenantStatus.SUSPENDED, expected_version)

    async def reactivate(self, tenant_id: uuid.UUID, expected_version: int | None = None) -> Tenant:
        return await self._transition(tenant_id, TenantStatus.ACTIVE, expected_version)

    async def delete(self, tenant_id: uuid.UUID, expected_version: int | None = None) -> Tenant:
        """Soft delete: the tenant stops resolving, its schema and data stay.

        Waits for a running build of the same tenant. One left in PROVISIONING
        by an interrupted build is marked FAILED and then deleted.
        """
        tenant = await self._require(tenant_id)
        async with self._locks.hold(tenant.store_key):
            if expected_version is None:
                await self._recover_interrupted(tenant_id)
            return await self._transition(tenant_id, TenantStatus.DELETING, expected_version)

    async def purge(self, tenant_id: uuid.UUID, *, confirm: bool = False) -> Tenant:
        """Drop the schema of a soft-deleted tenant and mark it DELETED."""
        tenant = await self._require(tenant_id)
        if tenant.status != TenantStatus.DELETING:
            raise InvalidTransitionError(
                f"Tenant '{tenant.store_key}' must be deleted before it is purged"
            )
        async with self._locks.hold(tenant.store_key):
            await self.lifecycle.drop_schema(tenant.schema_name, confirm=confirm)
            return await self._transition(tenant_id, TenantStatus.DELETED)

    async def _transition(
        self,
        tenant_id: uuid.UUID,
        target: TenantStatus,
        expected_version: int | None = None,
    ) -> Tenant:
        async with self.session_factory() as session:
            return await TenantRegistry(session, self.settings).transition(
                tenant_id, target, expected_version
            )

    # ── Migrations ────────────────────────────────────────────

    async def migrate(self, tenant_id: uuid.UUID) -> list[int]:
        tenant = await self._require(tenant_id)
        if tenant.status not in MIGRATABLE_STATUSES:
            raise InvalidTransitionError(
                f"Tenant '{tenant.store_key}' is {tenant.status}; only active or "
                "suspended tenants are migrated"
            )
        return await self.lifecycle.migrate_schema(tenant.schema_name)

    async def migrate_all(self) -> list[MigrationResult]:
        """Bring every live tenant schema up to date.

        Runs at most ``migration_concurrency`` schemas at a time. A failing
        schema is reported in its result and does not stop the others.
        """
        async with self.session_factory() as session:
            registry = TenantRegistry(session, self.settings)
            tenants = []
            for status in MIGRATABLE_STATUSES:
                tenants.extend(await registry.list(status=status))

        semaphore = asyncio.Semaphore(max(1, self.settings.migration_concurrency))

        async def _one(tenant: Tenant) -> MigrationResult:
            result = MigrationResult(store_key=tenant.store_key, schema_name=tenant.schema_name)
            async with semaphore:
                try:
                    result.applied = await self.lifecycle.migrate_schema(tenant.schema_name)
                except TenancyError as exc:
                    logger.error("Migration of %s failed: %s", tenant.schema_name, exc.detail)
                    result.error = exc.detail
            return result

        results = await asyncio.gather(*(_one(t) for t in tenants))
        failed = sum(1 for r in results if not r.ok)
        logger.info("Migrated %d tenant schemas (%d failed)", len(results), failed)
        return list(results)

    async def _require(self, tenant_id: uuid.UUID) -> Tenant:
        async with self.session_factory() as session:
            return await TenantRegistry(session, self.settings).require(tenant_id)
