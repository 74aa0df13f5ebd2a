"""Wiring for the tenancy subsystem.

One ``TenancyServices`` per process, built at startup and shared by the
HTTP app (``app.state.tenancy``) and the arq worker (``ctx["tenancy"]``).
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from multistore.core.config import Settings, get_settings
from multistore.core.database import create_engine, create_session_factory
from multistore.tenancy.dialect import PostgresSchemaDialect, SchemaDialect
from multistore.tenancy.lifecycle import SchemaLifecycleManager
from multistore.tenancy.provisioning import TenantProvisioner
from multistore.tenancy.resolver import TenantResolver
from multistore.tenancy.router import ConnectionSchemaRouter
from multistore.tenancy.scripts import load_migrations


@dataclass
class TenancyServices:
    settings: Settings
    engine: AsyncEngine
    session_factory: sessionmaker
    schema_router: ConnectionSchemaRouter
    lifecycle: SchemaLifecycleManager
    resolver: TenantResolver
    provisioner: TenantProvisioner

    async def dispose(self) -> None:
        await self.engine.dispose()


def build_services(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    schema_engine: AsyncEngine | None = None,
    dialect: SchemaDialect | None = None,
    migrations=None,
) -> TenancyServices:
    """Assemble the subsystem.

    ``engine`` serves the registry; ``schema_engine`` (defaults to the same
    engine) serves routed tenant connections and schema DDL.
    """
    settings = settings or get_settings()
    engine = engine or create_engine(settings)
    schema_engine = schema_engine or engine
    dialect = dialect or PostgresSchemaDialect()
    session_factory = create_session_factory(engine)

    lifecycle = SchemaLifecycleManager(
        schema_engine,
        dialect,
        migrations if migrations is not None else load_migrations(),
        settings,
    )
    return TenancyServices(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        schema_router=ConnectionSchemaRouter(schema_engine, dialect, settings),
        lifecycle=lifecycle,
        resolver=TenantResolver(session_factory, settings),
        provisioner=TenantProvisioner(session_factory, lifecycle, settings),
    )
