"""Schema lifecycle: create, migrate and (carefully) drop tenant schemas.

DDL here never joins a caller's transaction. Each step checks out its own
connection from the engine and commits on its own; each migration script
runs in a dedicated transaction. Work on one schema name is serialized
(in-process lock plus the dialect's lock), different names run
concurrently.
"""

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine

from multistore.core.config import Settings, get_settings
from multistore.core.errors import (
    MigrationChecksumError,
    MigrationError,
    MigrationOrderError,
    SchemaDropRefusedError,
)
from multistore.tenancy.dialect import AppliedMigration, SchemaDialect, validate_schema_name
from multistore.tenancy.locks import KeyedLock
from multistore.tenancy.scripts import MigrationScript, load_migrations, ordered

logger = logging.getLogger(__name__)


class SchemaLifecycleManager:
    def __init__(
        self,
        engine: AsyncEngine,
        dialect: SchemaDialect,
        migrations: Sequence[MigrationScript] | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.engine = engine
        self.dialect = dialect
        self.migrations = ordered(migrations if migrations is not None else load_migrations())
        self.neutral_schema = settings.neutral_schema
        self.schema_prefix = settings.schema_prefix
        self.allow_drop = settings.allow_schema_drop
        self._locks = KeyedLock()

    # ── Queries ───────────────────────────────────────────────

    async def schema_exists(self, name: str) -> bool:
        validate_schema_name(name)
        async with self.engine.connect() as conn:
            return await self.dialect.schema_exists(conn, name)

    async def list_schemas(self) -> list[str]:
        async with self.engine.connect() as conn:
            return await self.dialect.list_schemas(conn, self.schema_prefix)

    async def applied_versions(self, name: str) -> list[int]:
        validate_schema_name(name)
        async with self.engine.connect() as conn:
            if not await self.dialect.schema_exists(conn, name):
                return []
            await self.dialect.ensure_history_table(conn, name)
            applied = await self.dialect.applied_migrations(conn, name)
        return [a.version for a in applied if a.success]

    # ── Create / migrate ──────────────────────────────────────

    async def create_schema(self, name: str) -> list[int]:
        """Create ``name`` if absent, then bring it up to date.

        Returns the versions applied by this call.
        """
        validate_schema_name(name)
        async with self._exclusive(name):
            logger.info("Creating schema: %s", name)
            async with self.engine.connect() as conn:
                await self.dialect.create_schema(conn, name)
            return await self._migrate_locked(name)

    async def migrate_schema(self, name: str) -> list[int]:
        """Apply every pending script to ``name`` in version order.

        A no-op (returns ``[]``) when the schema is already current.
        """
        validate_schema_name(name)
        async with self._exclusive(name):
            return await self._migrate_locked(name)

    async def _migrate_locked(self, name: str) -> list[int]:
        async with self.engine.connect() as conn:
            await self.dialect.ensure_history_table(conn, name)
            applied = await self.dialect.applied_migrations(conn, name)

        pending = self.plan(applied)
        if not pending:
            logger.info("Schema %s is up to date", name)
            return []

        done = []
        for script in pending:
            logger.info("Applying V%d (%s) to %s", script.version, script.description, name)
            try:
                async with self.engine.connect() as conn:
                    async with conn.begin():
                        await self.dialect.apply_migration(conn, name, script)
            except Exception as exc:
                logger.exception("Migration V%d failed on schema %s", script.version, name)
                await self._record_failure(name, script)
                raise MigrationError(
                    f"Migration V{script.version} ({script.description}) failed on {name}"
                ) from exc
            done.append(script.version)

        logger.info("Migrations completed for schema %s: %s", name, done)
        return done

    def plan(self, applied: Sequence[AppliedMigration]) -> list[MigrationScript]:
        """Validate history against the known scripts and return what is pending.

        Failed entries are retried; checksum drift and gaps are fatal.
        """
        scripts = {s.version: s for s in self.migrations}
        succeeded = {a.version: a for a in applied if a.success}

        for version, record in succeeded.items():
            script = scripts.get(version)
            if script is None:
                raise MigrationOrderError(
                    f"Applied version {version} ({record.description}) has no script"
                )
            if script.checksum != record.checksum:
                raise MigrationChecksumError(
                    f"Checksum mismatch for version {version} ({script.description})"
                )

        pending = [s for s in self.migrations if s.version not in succeeded]
        if pending and succeeded and pending[0].version < max(succeeded):
            raise MigrationOrderError(
                f"Version {pending[0].version} is older than applied version {max(succeeded)}"
            )
        return pending

    async def _record_failure(self, name: str, script: MigrationScript) -> None:
        try:
            async with self.engine.connect() as conn:
                async with conn.begin():
                    await self.dialect.record_failure(conn, name, script)
        except Exception:
            # The migration error itself is what the caller needs to see
            logger.exception("Could not record failure of V%d on %s", script.version, name)

    # ── Drop ──────────────────────────────────────────────────

    async def drop_schema(self, name: str, *, confirm: bool = False) -> None:
        """Irreversibly drop ``name`` and everything in it.

        Needs both ``allow_schema_drop`` in settings and ``confirm=True``.
        """
        validate_schema_name(name)
        if not self.allow_drop:
            raise SchemaDropRefusedError("Schema drop is disabled (allow_schema_drop is off)")
        if not confirm:
            raise SchemaDropRefusedError(f"Dropping {name} requires explicit confirmation")
        if name == self.neutral_schema:
            raise SchemaDropRefusedError(f"Refusing to drop the neutral schema {name}")

        async with self._exclusive(name):
            logger.warning("Dropping schema: %s", name)
            async with self.engine.connect() as conn:
                await self.dialect.drop_schema(conn, name)
            logger.info("Schema dropped: %s", name)

    # ── Locking ───────────────────────────────────────────────

    @asynccontextmanager
    async def _exclusive(self, name: str) -> AsyncIterator[None]:
        async with self._locks.hold(name):
            async with self.engine.connect() as lock_conn:
                await self.dialect.acquire_lock(lock_conn, name)
                try:
                    yield
                finally:
                    await self._release(lock_conn, name)

    async def _release(self, lock_conn, name: str) -> None:
        try:
            await self.dialect.release_lock(lock_conn, name)
        except BaseException:
            # A session lock outlives the checkout; the connection must not
            # go back to the pool still holding it
            logger.error("Could not release schema lock on %s; discarding connection", name)
            await lock_conn.invalidate()
            raise
