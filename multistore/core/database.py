"""Async database engine and session factory for the global (registry) schema."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from multistore.core.config import Settings


def create_engine(settings: Settings) -> AsyncEngine:
    """Build the shared engine; one pool serves the registry and every tenant."""
    kwargs: dict = {
        "echo": False,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_pre_ping": True,
    }
    if settings.database_url.startswith("postgresql+asyncpg"):
        # Fresh connections start on the neutral schema, like reset ones
        kwargs["connect_args"] = {
            "server_settings": {"search_path": settings.neutral_schema},
        }
    return create_async_engine(settings.database_url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create the registry tables. Use Alembic migrations in production."""
    # Import models so SQLModel.metadata picks them up
    import multistore.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
