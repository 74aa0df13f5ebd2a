"""ARQ worker entrypoint."""

import asyncio

from arq.connections import RedisSettings

from multistore.core.config import get_settings
from multistore.tenancy.cleanup import RequestScopeCleanupHook
from multistore.workers.tenants import migrate_all_tenants, migrate_tenant, retry_provisioning

clear_tenant_context = RequestScopeCleanupHook()


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    return RedisSettings.from_dsn(get_settings().redis_url)


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from multistore.core.database import init_db
    from multistore.tenancy.services import build_services

    services = build_services(get_settings())
    await init_db(services.engine)
    ctx["tenancy"] = services


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""
    services = ctx.pop("tenancy", None)
    if services is not None:
        await services.dispose()


async def on_job_start(ctx: dict) -> None:
    clear_tenant_context(ctx)


async def after_job_end(ctx: dict) -> None:
    clear_tenant_context(ctx)


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [migrate_all_tenants, migrate_tenant, retry_provisioning]
    on_startup = startup
    on_shutdown = shutdown
    on_job_start = on_job_start
    after_job_end = after_job_end
    redis_settings = _redis_settings()
    max_jobs = 10
    job_timeout = 1800  # migrating every schema can take a while


if __name__ == "__main__":
    from arq import run_worker
    asyncio.run(run_worker(WorkerSettings))  # type: ignore[arg-type]
