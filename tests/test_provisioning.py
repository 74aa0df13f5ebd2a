"""Tests for the provisioning saga and tenant lifecycle operations."""

import asyncio
import uuid

import pytest

from multistore.core.errors import (
    InvalidTransitionError,
    ProvisioningError,
    MigrationError,
    SchemaDropRefusedError,
    TenantConflictError,
)
from multistore.models.tenant import TenantCreate, TenantStatus
from multistore.tenancy.registry import TenantRegistry


def _body(key: str, **kwargs) -> TenantCreate:
    return TenantCreate(store_key=key, name=f"{key} shop", **kwargs)


async def _status(services, tenant_id) -> TenantStatus:
    async with services.session_factory() as session:
        return (await TenantRegistry(session, services.settings).require(tenant_id)).status


async def test_provision_creates_active_tenant_with_schema(services, cluster):
    tenant = await services.provisioner.provision(_body("acme"))

    assert tenant.status == TenantStatus.ACTIVE
    assert "store_acme" in cluster.schemas
    assert sorted(cluster.schemas["store_acme"]["history"]) == [1, 2, 3, 4]


async def test_duplicate_key_conflicts_before_schema_work(services, cluster):
    await services.provisioner.provision(_body("acme"))
    cluster.applied_log.clear()

    with pytest.raises(TenantConflictError):
        await services.provisioner.provision(_body("acme"))
    assert cluster.applied_log == []


async def test_concurrent_same_key_creates_one_schema(services, cluster):
    results = await asyncio.gather(
        *(services.provisioner.provision(_body("acme")) for _ in range(5)),
        return_exceptions=True,
    )

    created = [r for r in results if not isinstance(r, BaseException)]
    conflicts = [r for r in results if isinstance(r, TenantConflictError)]
    assert len(created) == 1
    assert len(conflicts) == 4
    assert created[0].status == TenantStatus.ACTIVE
    assert [v for s, v in cluster.applied_log if s == "store_acme"] == [1, 2, 3, 4]


async def test_schema_failure_leaves_tenant_failed(services, cluster):
    cluster.fail_create.add("store_acme")

    with pytest.raises(ProvisioningError) as exc_info:
        await services.provisioner.provision(_body("acme"))

    async with services.session_factory() as session:
        tenant = await TenantRegistry(session, services.settings).get_by_key("acme")
    assert tenant.status == TenantStatus.FAILED
    assert exc_info.value.tenant_id == str(tenant.id)


async def test_migration_failure_leaves_tenant_failed(services, cluster):
    cluster.fail_versions.add(2)

    with pytest.raises(ProvisioningError):
        await services.provisioner.provision(_body("acme"))

    async with services.session_factory() as session:
        tenant = await TenantRegistry(session, services.settings).get_by_key("acme")
    assert tenant.status == TenantStatus.FAILED


async def test_retry_after_failure(services, cluster):
    cluster.fail_versions.add(3)
    with pytest.raises(ProvisioningError):
        await services.provisioner.provision(_body("acme"))

    cluster.fail_versions.clear()
    async with services.session_factory() as session:
        failed = await TenantRegistry(session, services.settings).get_by_key("acme")

    tenant = await services.provisioner.retry(failed.id)

    assert tenant.status == TenantStatus.ACTIVE
    assert sorted(cluster.schemas["store_acme"]["history"]) == [1, 2, 3, 4]


async def test_retry_only_from_failed(services):
    tenant = await services.provisioner.provision(_body("acme"))
    with pytest.raises(InvalidTransitionError):
        await services.provisioner.retry(tenant.id)


async def test_suspend_and_reactivate(services):
    tenant = await services.provisioner.provision(_body("acme"))

    suspended = await services.provisioner.suspend(tenant.id)
    assert suspended.status == TenantStatus.SUSPENDED

    active = await services.provisioner.reactivate(tenant.id, expected_version=suspended.version)
    assert active.status == TenantStatus.ACTIVE


async def test_delete_keeps_schema(services, cluster):
    tenant = await services.provisioner.provision(_body("acme"))

    deleted = await services.provisioner.delete(tenant.id)

    assert deleted.status == TenantStatus.DELETING
    assert "store_acme" in cluster.schemas


async def test_purge_drops_schema_and_marks_deleted(services, cluster):
    tenant = await services.provisioner.provision(_body("acme"))
    await services.provisioner.delete(tenant.id)

    purged = await services.provisioner.purge(tenant.id, confirm=True)

    assert purged.status == TenantStatus.DELETED
    assert cluster.dropped == ["store_acme"]


async def test_purge_without_confirmation_changes_nothing(services, cluster):
    tenant = await services.provisioner.provision(_body("acme"))
    await services.provisioner.delete(tenant.id)

    with pytest.raises(SchemaDropRefusedError):
        await services.provisioner.purge(tenant.id)

    assert "store_acme" in cluster.schemas
    assert await _status(services, tenant.id) == TenantStatus.DELETING


async def test_purge_requires_soft_delete_first(services, cluster):
    tenant = await services.provisioner.provision(_body("acme"))
    with pytest.raises(InvalidTransitionError):
        await services.provisioner.purge(tenant.id, confirm=True)
    assert cluster.dropped == []


async def test_migrate_one_tenant(services, cluster):
    tenant = await services.provisioner.provision(_body("acme"))
    assert await services.provisioner.migrate(tenant.id) == []


async def test_migrate_refuses_failed_tenant(services, cluster):
    cluster.fail_create.add("store_acme")
    with pytest.raises(ProvisioningError) as exc_info:
        await services.provisioner.provision(_body("acme"))

    with pytest.raises(InvalidTransitionError):
        await services.provisioner.migrate(uuid.UUID(exc_info.value.tenant_id))


async def test_migrate_all_reports_per_tenant(services, cluster, migrations):
    await services.provisioner.provision(_body("a-shop"))
    b = await services.provisioner.provision(_body("b-shop"))
    await services.provisioner.suspend(b.id)

    # Pretend both schemas were created before V4 existed
    for schema in ("store_a_shop", "store_b_shop"):
        del cluster.schemas[schema]["history"][4]
    cluster.schemas["store_b_shop"]["history"].pop(3)
    cluster.fail_versions.add(3)

    results = {r.schema_name: r for r in await services.provisioner.migrate_all()}

    assert results["store_a_shop"].applied == [4]
    assert results["store_a_shop"].ok
    assert not results["store_b_shop"].ok
    assert "V3" in results["store_b_shop"].error


async def _interrupted_build(services, cluster) -> uuid.UUID:
    """Leave ``acme`` in PROVISIONING with V1 and V2 applied, as a crashed build would."""
    async with services.session_factory() as session:
        registry = TenantRegistry(session, services.settings)
        tenant = await registry.create(_body("acme"))
        tenant_id = tenant.id
        await registry.transition(tenant_id, TenantStatus.PROVISIONING)

    cluster.fail_versions.add(3)
    with pytest.raises(MigrationError):
        await services.lifecycle.create_schema("store_acme")
    cluster.fail_versions.clear()
    cluster.applied_log.clear()
    return tenant_id


async def test_retry_recovers_interrupted_build(services, cluster):
    tenant_id = await _interrupted_build(services, cluster)
    assert await _status(services, tenant_id) == TenantStatus.PROVISIONING

    tenant = await services.provisioner.retry(tenant_id)

    assert tenant.status == TenantStatus.ACTIVE
    assert cluster.applied_log == [("store_acme", 3), ("store_acme", 4)]

    deleted = await services.provisioner.delete(tenant_id)
    assert deleted.status == TenantStatus.DELETING


async def test_delete_recovers_interrupted_build(services, cluster):
    tenant_id = await _interrupted_build(services, cluster)

    deleted = await services.provisioner.delete(tenant_id)

    assert deleted.status == TenantStatus.DELETING
    assert "store_acme" in cluster.schemas

    purged = await services.provisioner.purge(tenant_id, confirm=True)
    assert purged.status == TenantStatus.DELETED
