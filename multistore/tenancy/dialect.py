"""SQL for schema binding and schema DDL.

The router and the lifecycle manager decide *when* to bind, reset, create
or migrate; a ``SchemaDialect`` decides *how* on a given database engine.
Every method that is not documented as running inside a caller-managed
transaction leaves the connection idle (committed) when it returns, so a
session bound to the connection afterwards starts its own transaction.
"""

import logging
import re
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from multistore.core.errors import InvalidSchemaNameError
from multistore.tenancy.scripts import MigrationScript

logger = logging.getLogger(__name__)

# Lives inside every tenant schema; prefixed to stay clear of business tables
HISTORY_TABLE = "tenant_schema_history"

_SCHEMA_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]{0,62}$")


def validate_schema_name(name: str) -> str:
    """Reject anything that is not a plain lower-case identifier."""
    if not name or not _SCHEMA_NAME_RE.match(name) or name.startswith("pg_"):
        raise InvalidSchemaNameError(f"Invalid schema name: {name!r}")
    return name


def quote_schema(name: str) -> str:
    return f'"{validate_schema_name(name)}"'


@dataclass(frozen=True, slots=True)
class AppliedMigration:
    version: int
    description: str
    checksum: str
    success: bool


class SchemaDialect:
    """Interface implemented per database engine."""

    # ── Routing ───────────────────────────────────────────────

    async def bind(self, conn: AsyncConnection, schema: str) -> None:
        raise NotImplementedError

    async def current_schema(self, conn: AsyncConnection) -> str | None:
        raise NotImplementedError

    async def reset(self, conn: AsyncConnection, neutral_schema: str) -> None:
        await self.bind(conn, neutral_schema)

    # ── Schema DDL ────────────────────────────────────────────

    async def schema_exists(self, conn: AsyncConnection, schema: str) -> bool:
        raise NotImplementedError

    async def list_schemas(self, conn: AsyncConnection, prefix: str) -> list[str]:
        raise NotImplementedError

    async def create_schema(self, conn: AsyncConnection, schema: str) -> None:
        raise NotImplementedError

    async def drop_schema(self, conn: AsyncConnection, schema: str) -> None:
        raise NotImplementedError

    # ── Migration history ─────────────────────────────────────

    async def ensure_history_table(self, conn: AsyncConnection, schema: str) -> None:
        raise NotImplementedError

    async def applied_migrations(
        self, conn: AsyncConnection, schema: str
    ) -> list[AppliedMigration]:
        raise NotImplementedError

    async def apply_migration(
        self, conn: AsyncConnection, schema: str, script: MigrationScript
    ) -> None:
        """Run one script and record it. Runs inside a caller-managed transaction."""
        raise NotImplementedError

    async def record_failure(
        self, conn: AsyncConnection, schema: str, script: MigrationScript
    ) -> None:
        """Mark a version as failed. Runs inside a caller-managed transaction."""
        raise NotImplementedError

    # ── Locking ───────────────────────────────────────────────

    async def acquire_lock(self, conn: AsyncConnection, schema: str) -> None:
        """Take a lock on ``schema`` held by ``conn`` until ``release_lock``."""

    async def release_lock(self, conn: AsyncConnection, schema: str) -> None:
        pass


class PostgresSchemaDialect(SchemaDialect):
    """``search_path`` based routing on PostgreSQL."""

    async def bind(self, conn: AsyncConnection, schema: str) -> None:
        # Only the tenant schema: a missing table must fail, not fall through
        await conn.execute(text(f"SET search_path TO {quote_schema(schema)}"))
        await conn.commit()

    async def current_schema(self, conn: AsyncConnection) -> str | None:
        value = await conn.scalar(text("SELECT current_schema()"))
        await conn.commit()
        return value

    async def schema_exists(self, conn: AsyncConnection, schema: str) -> bool:
        result = await conn.scalar(
            text(
                "SELECT EXISTS(SELECT 1 FROM information_schema.schemata "
                "WHERE schema_name = :schema)"
            ),
            {"schema": schema},
        )
        await conn.commit()
        return bool(result)

    async def list_schemas(self, conn: AsyncConnection, prefix: str) -> list[str]:
        result = await conn.execute(
            text(
                "SELECT schema_name FROM information_schema.schemata "
                "WHERE left(schema_name, length(:prefix)) = :prefix "
                "ORDER BY schema_name"
            ),
            {"prefix": prefix},
        )
        names = [row[0] for row in result.fetchall()]
        await conn.commit()
        return names

    async def create_schema(self, conn: AsyncConnection, schema: str) -> None:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quote_schema(schema)}"))
        await conn.commit()

    async def drop_schema(self, conn: AsyncConnection, schema: str) -> None:
        await conn.execute(text(f"DROP SCHEMA IF EXISTS {quote_schema(schema)} CASCADE"))
        await conn.commit()

    async def ensure_history_table(self, conn: AsyncConnection, schema: str) -> None:
        await conn.execute(
            text(
                f"CREATE TABLE IF NOT EXISTS {quote_schema(schema)}.{HISTORY_TABLE} ("
                "version INTEGER PRIMARY KEY, "
                "description VARCHAR(200) NOT NULL, "
                "checksum CHAR(64) NOT NULL, "
                "success BOOLEAN NOT NULL, "
                "applied_at TIMESTAMP NOT NULL DEFAULT now())"
            )
        )
        await conn.commit()

    async def applied_migrations(
        self, conn: AsyncConnection, schema: str
    ) -> list[AppliedMigration]:
        result = await conn.execute(
            text(
                "SELECT version, description, checksum, success "
                f"FROM {quote_schema(schema)}.{HISTORY_TABLE} ORDER BY version"
            )
        )
        applied = [
            AppliedMigration(
                version=row.version,
                description=row.description,
                checksum=row.checksum,
                success=row.success,
            )
            for row in result
        ]
        await conn.commit()
        return applied

    async def apply_migration(
        self, conn: AsyncConnection, schema: str, script: MigrationScript
    ) -> None:
        # SET LOCAL ends with the transaction; the connection stays neutral
        await conn.execute(text(f"SET LOCAL search_path TO {quote_schema(schema)}"))
        for statement in script.statements:
            await conn.exec_driver_sql(statement)
        await self._write_history(conn, schema, script, success=True)

    async def record_failure(
        self, conn: AsyncConnection, schema: str, script: MigrationScript
    ) -> None:
        await self._write_history(conn, schema, script, success=False)

    async def _write_history(
        self,
        conn: AsyncConnection,
        schema: str,
        script: MigrationScript,
        success: bool,
    ) -> None:
        table = f"{quote_schema(schema)}.{HISTORY_TABLE}"
        await conn.execute(
            text(f"DELETE FROM {table} WHERE version = :version"),
            {"version": script.version},
        )
        await conn.execute(
            text(
                f"INSERT INTO {table} (version, description, checksum, success) "
                "VALUES (:version, :description, :checksum, :success)"
            ),
            {
                "version": script.version,
                "description": script.description[:200],
                "checksum": script.checksum,
                "success": success,
            },
        )

    async def acquire_lock(self, conn: AsyncConnection, schema: str) -> None:
        # Session-level advisory lock: also excludes other application processes
        await conn.execute(
            text("SELECT pg_advisory_lock(hashtext(:key))"),
            {"key": f"multistore:schema:{schema}"},
        )
        await conn.commit()

    async def release_lock(self, conn: AsyncConnection, schema: str) -> None:
        await conn.execute(
            text("SELECT pg_advisory_unlock(hashtext(:key))"),
            {"key": f"multistore:schema:{schema}"},
        )
        await conn.commit()
