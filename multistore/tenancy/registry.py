"""Tenant registry: the authoritative list of stores, in the global schema.

Status changes and edits are guarded UPDATEs on the ``version`` column, so
two administrators (or an admin and a background job) acting on the same
tenant cannot silently overwrite each other. Rows are never hard-deleted.
"""

import json
import logging
import uuid

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from multistore.core.cache import by_key, by_subdomain, tenant_lookups
from multistore.core.config import Settings, get_settings
from multistore.core.errors import (
    InvalidTransitionError,
    StaleTenantError,
    TenantConflictError,
    TenantNotFoundError,
)
from multistore.models.base import utcnow
from multistore.models.tenant import (
    Tenant,
    TenantCreate,
    TenantStatus,
    TenantUpdate,
    schema_name_for,
)
from multistore.tenancy.dialect import validate_schema_name

logger = logging.getLogger(__name__)


class TenantRegistry:
    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    # ── Lookups ───────────────────────────────────────────────

    async def get(self, tenant_id: uuid.UUID) -> Tenant | None:
        return await self.session.get(Tenant, tenant_id, populate_existing=True)

    async def require(self, tenant_id: uuid.UUID) -> Tenant:
        tenant = await self.get(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"Tenant {tenant_id} not found")
        return tenant

    async def get_by_key(self, store_key: str) -> Tenant | None:
        return await self._first(Tenant.store_key == store_key)

    async def get_by_subdomain(self, subdomain: str) -> Tenant | None:
        return await self._first(Tenant.subdomain == subdomain.lower())

    async def get_by_schema(self, schema_name: str) -> Tenant | None:
        return await self._first(Tenant.schema_name == schema_name)

    async def list(
        self,
        status: TenantStatus | None = None,
        include_deleted: bool = False,
    ) -> list[Tenant]:
        stmt = select(Tenant).order_by(Tenant.created_at.asc())  # type: ignore[union-attr]
        if status is not None:
            stmt = stmt.where(Tenant.status == status)
        elif not include_deleted:
            stmt = stmt.where(Tenant.status != TenantStatus.DELETED)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        stmt = select(Tenant.status, func.count()).group_by(Tenant.status)
        result = await self.session.execute(stmt)
        return {str(row[0]): row[1] for row in result.all()}

    async def _first(self, *criteria) -> Tenant | None:
        result = await self.session.execute(select(Tenant).where(*criteria))
        return result.scalar_one_or_none()

    # ── Writes ────────────────────────────────────────────────

    async def create(self, body: TenantCreate) -> Tenant:
        """Register a tenant in CREATING. Its schema is not touched here."""
        subdomain = body.subdomain or body.store_key
        schema_name = validate_schema_name(
            schema_name_for(body.store_key, self.settings.schema_prefix)
        )

        # Deleted tenants still hold their key, subdomain and schema name
        existing = await self.session.execute(
            select(Tenant).where(
                or_(
                    Tenant.store_key == body.store_key,
                    Tenant.subdomain == subdomain,
                    Tenant.schema_name == schema_name,
                )
            )
        )
        if existing.scalars().first() is not None:
            raise TenantConflictError(
                f"Store key '{body.store_key}' or subdomain '{subdomain}' is already taken"
            )

        tenant = Tenant(
            store_key=body.store_key,
            name=body.name,
            subdomain=subdomain,
            schema_name=schema_name,
            status=TenantStatus.CREATING,
            billing_plan=body.billing_plan,
            settings=json.dumps(body.settings),
        )
        self.session.add(tenant)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent create of the same key
            await self.session.rollback()
            raise TenantConflictError(
                f"Store key '{body.store_key}' or subdomain '{subdomain}' is already taken"
            ) from exc
        await self.session.refresh(tenant)
        logger.info("Registered tenant %s (schema %s)", tenant.store_key, tenant.schema_name)
        return tenant

    async def transition(
        self,
        tenant_id: uuid.UUID,
        target: TenantStatus,
        expected_version: int | None = None,
    ) -> Tenant:
        """Move a tenant to ``target`` if the status table allows it."""
        tenant = await self.require(tenant_id)
        current = TenantStatus(tenant.status)
        if not current.can_transition_to(target):
            raise InvalidTransitionError(
                f"Tenant '{tenant.store_key}' cannot go from {current} to {target}"
            )
        self._check_version(tenant, expected_version)

        await self._guarded_update(tenant, status=target)
        logger.info("Tenant %s: %s -> %s", tenant.store_key, current, target)
        return await self.require(tenant_id)

    async def update(self, tenant_id: uuid.UUID, body: TenantUpdate) -> Tenant:
        """Edit name, billing plan or settings. Identity fields never change."""
        tenant = await self.require(tenant_id)
        if tenant.status == TenantStatus.DELETED:
            raise InvalidTransitionError(f"Tenant '{tenant.store_key}' is deleted")

        data = body.model_dump(exclude_unset=True)
        self._check_version(tenant, data.pop("expected_version", None))

        values = {}
        for field in ("name", "billing_plan"):
            if data.get(field) is not None:
                values[field] = data[field]
        if data.get("settings") is not None:
            values["settings"] = json.dumps(data["settings"])
        if not values:
            return tenant

        await self._guarded_update(tenant, **values)
        logger.info("Updated tenant %s: %s", tenant.store_key, sorted(values))
        return await self.require(tenant_id)

    async def soft_delete(
        self, tenant_id: uuid.UUID, expected_version: int | None = None
    ) -> Tenant:
        return await self.transition(tenant_id, TenantStatus.DELETING, expected_version)

    # ── Internal helpers ──────────────────────────────────────

    @staticmethod
    def _check_version(tenant: Tenant, expected_version: int | None) -> None:
        if expected_version is not None and expected_version != tenant.version:
            raise StaleTenantError(
                f"Tenant '{tenant.store_key}' is at version {tenant.version}, "
                f"not {expected_version}"
            )

    async def _guarded_update(self, tenant: Tenant, **values) -> None:
        # Attributes expire on rollback; read them up front
        store_key, subdomain = tenant.store_key, tenant.subdomain
        stmt = (
            update(Tenant)
            .where(Tenant.id == tenant.id, Tenant.version == tenant.version)
            .values(version=tenant.version + 1, updated_at=utcnow(), **values)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            await self.session.rollback()
            raise StaleTenantError(
                f"Tenant '{store_key}' was modified concurrently; reload and retry"
            )
        await self.session.commit()
        tenant_lookups.invalidate(by_key(store_key), by_subdomain(subdomain))
