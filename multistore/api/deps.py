"""FastAPI dependencies for admin authentication and tenant-routed database access."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from multistore.core.security import verify_admin_token
from multistore.tenancy.context import TenantContext
from multistore.tenancy.provisioning import TenantProvisioner
from multistore.tenancy.registry import TenantRegistry
from multistore.tenancy.services import TenancyServices

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> TenancyServices:
    return request.app.state.tenancy


Services = Annotated[TenancyServices, Depends(get_services)]


# ── Global (registry) schema ─────────────────────────────────

async def get_session(services: Services) -> AsyncGenerator[AsyncSession, None]:
    """Session on the global schema, for registry reads and writes."""
    async with services.session_factory() as session:
        yield session


Session = Annotated[AsyncSession, Depends(get_session)]


def get_registry(session: Session, services: Services) -> TenantRegistry:
    return TenantRegistry(session, services.settings)


def get_provisioner(services: Services) -> TenantProvisioner:
    return services.provisioner


Registry = Annotated[TenantRegistry, Depends(get_registry)]
Provisioner = Annotated[TenantProvisioner, Depends(get_provisioner)]


# ── Admin authentication ─────────────────────────────────────

async def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    services: Services,
) -> None:
    """Accept only the operator token configured via ``ADMIN_TOKEN_HASH``."""
    if credentials is None or not verify_admin_token(credentials.credentials, services.settings):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token",
            headers={"WWW-Authenticate": "Bearer"},
        )


AdminAuth = Depends(require_admin)


# ── Tenant schema ────────────────────────────────────────────

async def get_tenant_connection(
    services: Services,
) -> AsyncGenerator[AsyncConnection, None]:
    """Connection bound to the resolved tenant; released when the request ends."""
    schema_name = TenantContext.require()
    async with services.schema_router.connection(schema_name) as conn:
        yield conn


async def get_tenant_session(
    services: Services,
) -> AsyncGenerator[AsyncSession, None]:
    """Session whose queries run against the resolved tenant's schema only."""
    schema_name = TenantContext.require()
    async with services.schema_router.session(schema_name) as session:
        yield session


# Typed shorthand for use in route signatures
TenantConnection = Annotated[AsyncConnection, Depends(get_tenant_connection)]
TenantSession = Annotated[AsyncSession, Depends(get_tenant_session)]
