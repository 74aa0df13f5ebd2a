"""Tenant administration: provisioning, lifecycle and schema migrations.

Every route here requires the operator token and runs against the global
schema; none of them is tenant-routed.
"""

import uuid

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from multistore.api.deps import AdminAuth, Provisioner, Registry, Services
from multistore.models.tenant import TenantCreate, TenantRead, TenantStatus, TenantUpdate

router = APIRouter(prefix="/tenants", tags=["tenants"], dependencies=[AdminAuth])


# ── Schemas ──────────────────────────────────────────────────

class VersionGuard(BaseModel):
    """Optional optimistic-concurrency guard for status changes."""
    expected_version: int | None = None


class MigrationStatus(BaseModel):
    schema_name: str
    applied_versions: list[int]
    available_versions: list[int]
    pending_versions: list[int]


class MigrationRun(BaseModel):
    schema_name: str
    applied: list[int]


# ── Routes ────────────────────────────────────────────────────

@router.post(
    "",
    response_model=TenantRead,
    status_code=status.HTTP_201_CREATED,
    summary="Provision a new store",
)
async def create_tenant(body: TenantCreate, provisioner: Provisioner) -> TenantRead:
    """Register the store, create its schema and apply all migrations.

    Responds 409 if the store key or subdomain is taken. If the schema work
    fails the tenant is left FAILED and can be retried.
    """
    tenant = await provisioner.provision(body)
    return TenantRead.from_tenant(tenant)


@router.get("", response_model=list[TenantRead])
async def list_tenants(
    registry: Registry,
    status_filter: TenantStatus | None = Query(default=None, alias="status"),
    include_deleted: bool = False,
) -> list[TenantRead]:
    tenants = await registry.list(status=status_filter, include_deleted=include_deleted)
    return [TenantRead.from_tenant(t) for t in tenants]


@router.get("/{tenant_id}", response_model=TenantRead)
async def get_tenant(tenant_id: uuid.UUID, registry: Registry) -> TenantRead:
    return TenantRead.from_tenant(await registry.require(tenant_id))


@router.patch("/{tenant_id}", response_model=TenantRead)
async def update_tenant(
    tenant_id: uuid.UUID,
    body: TenantUpdate,
    registry: Registry,
) -> TenantRead:
    """Change name, billing plan or settings. Store key and schema never change."""
    tenant = await registry.update(tenant_id, body)
    return TenantRead.from_tenant(tenant)


@router.post("/{tenant_id}/suspend", response_model=TenantRead)
async def suspend_tenant(
    tenant_id: uuid.UUID,
    provisioner: Provisioner,
    body: VersionGuard | None = None,
) -> TenantRead:
    expected = body.expected_version if body else None
    return TenantRead.from_tenant(await provisioner.suspend(tenant_id, expected))


@router.post("/{tenant_id}/activate", response_model=TenantRead)
async def activate_tenant(
    tenant_id: uuid.UUID,
    provisioner: Provisioner,
    body: VersionGuard | None = None,
) -> TenantRead:
    expected = body.expected_version if body else None
    return TenantRead.from_tenant(await provisioner.reactivate(tenant_id, expected))


@router.post("/{tenant_id}/retry", response_model=TenantRead)
async def retry_provisioning(tenant_id: uuid.UUID, provisioner: Provisioner) -> TenantRead:
    """Re-run schema creation for a FAILED tenant or an interrupted build."""
    return TenantRead.from_tenant(await provisioner.retry(tenant_id))


@router.post("/{tenant_id}/migrate", response_model=MigrationRun)
async def migrate_tenant(
    tenant_id: uuid.UUID,
    registry: Registry,
    provisioner: Provisioner,
) -> MigrationRun:
    tenant = await registry.require(tenant_id)
    applied = await provisioner.migrate(tenant_id)
    return MigrationRun(schema_name=tenant.schema_name, applied=applied)


@router.get("/{tenant_id}/migrations", response_model=MigrationStatus)
async def migration_status(
    tenant_id: uuid.UUID,
    registry: Registry,
    services: Services,
) -> MigrationStatus:
    tenant = await registry.require(tenant_id)
    applied = await services.lifecycle.applied_versions(tenant.schema_name)
    available = [m.version for m in services.lifecycle.migrations]
    return MigrationStatus(
        schema_name=tenant.schema_name,
        applied_versions=applied,
        available_versions=available,
        pending_versions=[v for v in available if v not in applied],
    )


@router.delete("/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_tenant(tenant_id: uuid.UUID, provisioner: Provisioner) -> None:
    """Soft delete: the store stops resolving immediately; its data is kept."""
    await provisioner.delete(tenant_id)


@router.post("/{tenant_id}/purge", response_model=TenantRead)
async def purge_tenant(
    tenant_id: uuid.UUID,
    provisioner: Provisioner,
    confirm: bool = False,
) -> TenantRead:
    """Drop the schema of a deleted store. Irreversible.

    Needs ``?confirm=true`` and ``ALLOW_SCHEMA_DROP`` enabled on the server.
    """
    return TenantRead.from_tenant(await provisioner.purge(tenant_id, confirm=confirm))
