"""Connection schema router: the single choke point between the pool and tenants.

Every connection handed to tenant code goes through ``acquire`` and comes
back through ``release``:

    acquire: checkout -> bind schema -> (verify) -> hand out
    release: rollback leftovers -> reset to neutral schema -> return to pool

A connection never re-enters the pool while bound to a tenant schema. When
a bind, verification or reset fails the connection is invalidated, so the
pool discards it instead of handing it to the next caller.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from multistore.core.config import Settings, get_settings
from multistore.core.errors import SchemaBindError, SchemaMismatchError, TenancyError
from multistore.tenancy.dialect import SchemaDialect, validate_schema_name

logger = logging.getLogger(__name__)


class ConnectionSchemaRouter:
    def __init__(
        self,
        engine: AsyncEngine,
        dialect: SchemaDialect,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.engine = engine
        self.dialect = dialect
        self.neutral_schema = validate_schema_name(settings.neutral_schema)
        self.verify = settings.verify_schema_bind
        self._attempts = max(1, settings.acquire_attempts)
        self._backoff = settings.acquire_backoff_seconds

    # ── Acquire / release ─────────────────────────────────────

    async def acquire(self, schema: str | None = None) -> AsyncConnection:
        """Check out a connection bound to ``schema`` (neutral schema if None).

        Raises SchemaBindError (or SchemaMismatchError) after discarding the
        connection. A failed bind is not retried: it usually means the
        schema was dropped or renamed.
        """
        target = validate_schema_name(schema or self.neutral_schema)
        conn = await self._checkout()
        try:
            await self.dialect.bind(conn, target)
            if self.verify:
                active = await self.dialect.current_schema(conn)
                if active != target:
                    raise SchemaMismatchError(target, active)
        except SchemaMismatchError:
            logger.error("Schema verification failed for %s; discarding connection", target)
            await self._discard(conn)
            raise
        except Exception as exc:
            logger.error("Failed to bind connection to schema %s", target, exc_info=True)
            await self._discard(conn)
            raise SchemaBindError(f"Could not bind connection to schema {target!r}") from exc

        logger.debug("Bound connection to schema %s", target)
        return conn

    async def release(self, schema: str | None, conn: AsyncConnection) -> None:
        """Reset ``conn`` to the neutral schema and return it to the pool."""
        try:
            if conn.in_transaction():
                await conn.rollback()
            await self.dialect.reset(conn, self.neutral_schema)
        except Exception:
            logger.warning(
                "Failed to reset connection used for schema %s; discarding it",
                schema,
                exc_info=True,
            )
            await self._discard(conn)
            return
        await conn.close()
        logger.debug("Released connection used for schema %s", schema)

    # ── Scoped helpers ────────────────────────────────────────

    @asynccontextmanager
    async def connection(self, schema: str | None) -> AsyncIterator[AsyncConnection]:
        conn = await self.acquire(schema)
        try:
            yield conn
        finally:
            await self.release(schema, conn)

    @asynccontextmanager
    async def session(self, schema: str | None) -> AsyncIterator[AsyncSession]:
        """An ``AsyncSession`` whose every query runs against ``schema``."""
        async with self.connection(schema) as conn:
            async with AsyncSession(bind=conn, expire_on_commit=False) as session:
                yield session

    # ── Internal helpers ──────────────────────────────────────

    async def _checkout(self) -> AsyncConnection:
        """Pool checkout; exhaustion is the one locally retried failure."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(PoolTimeoutError),
            stop=stop_after_attempt(self._attempts),
            wait=wait_exponential(multiplier=self._backoff, max=2),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self.engine.connect()
        raise TenancyError("Connection checkout did not run")  # pragma: no cover

    async def _discard(self, conn: AsyncConnection) -> None:
        try:
            await conn.invalidate()
        finally:
            await conn.close()
        logger.warning("Discarded connection from pool")
