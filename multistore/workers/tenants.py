"""Background jobs for tenant schemas: migrations and provisioning retries.

Jobs receive tenant identifiers as arguments and never inherit a tenant
context from whoever enqueued them.
"""

import logging
import uuid

from multistore.core.errors import TenancyError
from multistore.tenancy.services import TenancyServices

logger = logging.getLogger(__name__)


def _services(ctx: dict) -> TenancyServices:
    return ctx["tenancy"]


async def migrate_all_tenants(ctx: dict) -> dict:
    """ARQ task: apply pending migrations to every active or suspended tenant.

    Returns:
        dict with per-schema applied versions and the schemas that failed.
    """
    results = await _services(ctx).provisioner.migrate_all()
    return {
        "migrated": {r.schema_name: r.applied for r in results if r.ok},
        "failed": {r.schema_name: r.error for r in results if not r.ok},
    }


async def migrate_tenant(ctx: dict, tenant_id: str) -> dict:
    """ARQ task: migrate one tenant's schema."""
    try:
        applied = await _services(ctx).provisioner.migrate(uuid.UUID(tenant_id))
    except TenancyError as exc:
        logger.error("Migration job for tenant %s failed: %s", tenant_id, exc.detail)
        return {"error": exc.detail}
    return {"applied": applied}


async def retry_provisioning(ctx: dict, tenant_id: str) -> dict:
    """ARQ task: retry schema creation for a FAILED tenant."""
    try:
        tenant = await _services(ctx).provisioner.retry(uuid.UUID(tenant_id))
    except TenancyError as exc:
        logger.error("Provisioning retry for tenant %s failed: %s", tenant_id, exc.detail)
        return {"error": exc.detail}
    return {"status": str(tenant.status), "schema_name": tenant.schema_name}
