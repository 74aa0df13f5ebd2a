"""System health endpoint: registry database reachability and tenant counts."""

import time

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from multistore.api.deps import Registry, Services, Session

router = APIRouter(prefix="/system", tags=["system"])

_start_time = time.time()


class ServiceHealth(BaseModel):
    status: str  # "ok" or "error"
    detail: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    uptime_seconds: int
    database: ServiceHealth
    tenants_by_status: dict[str, int]
    migration_versions: list[int]


@router.get("/health", response_model=HealthResponse)
async def system_health(
    session: Session,
    registry: Registry,
    services: Services,
) -> HealthResponse:
    """Check the registry database and summarise tenants per status."""
    db = await _check_database(session)
    counts = await registry.count_by_status() if db.status == "ok" else {}
    return HealthResponse(
        status="ok" if db.status == "ok" else "degraded",
        uptime_seconds=int(time.time() - _start_time),
        database=db,
        tenants_by_status=counts,
        migration_versions=[m.version for m in services.lifecycle.migrations],
    )


async def _check_database(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        latency = int((time.monotonic() - t0) * 1000)
        return ServiceHealth(status="ok", latency_ms=latency)
    except Exception as exc:
        await session.rollback()
        return ServiceHealth(status="error", detail=str(exc)[:200])
