"""Shared test fixtures: aiosqlite registry, in-memory tenant pool and a test client."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

# Import all models so metadata is populated
import multistore.models  # noqa: F401
from multistore.core.cache import tenant_lookups
from multistore.core.config import Settings
from multistore.core.security import hash_token
from multistore.main import create_app
from multistore.tenancy.context import TenantContext
from multistore.tenancy.scripts import load_migrations
from multistore.tenancy.services import build_services
from tests.fakes import FakeCluster, FakeDialect, FakeEngine

ADMIN_TOKEN = "admin-secret"
JWT_SECRET = "test-jwt-secret"


# ── Fixtures ─────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def _clean_tenant_state():
    TenantContext.clear()
    tenant_lookups.clear()
    yield
    TenantContext.clear()
    tenant_lookups.clear()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}",
        admin_token_hash=hash_token(ADMIN_TOKEN),
        jwt_secret_key=JWT_SECRET,
        base_domain="shop.test",
        default_tenant_schema="public",
        allow_schema_drop=True,
        acquire_attempts=3,
        acquire_backoff_seconds=0,
        resolver_cache_ttl=60,
    )


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def fake_engine(cluster) -> FakeEngine:
    return FakeEngine(cluster)


@pytest.fixture
def dialect(cluster) -> FakeDialect:
    return FakeDialect(cluster)


@pytest.fixture
def migrations():
    return load_migrations()


@pytest.fixture
async def engine(settings):
    eng = create_async_engine(settings.database_url, echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def services(settings, engine, fake_engine, dialect, migrations):
    return build_services(
        settings,
        engine=engine,
        schema_engine=fake_engine,
        dialect=dialect,
        migrations=migrations,
    )


@pytest.fixture
def session_factory(services):
    return services.session_factory


@pytest.fixture
async def client(services) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client against an app wired to the fakes."""
    app = create_app(services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://api.shop.test") as ac:
        yield ac


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}
