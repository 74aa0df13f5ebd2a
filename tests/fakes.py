"""In-memory stand-ins for the routed connection pool and the schema SQL.

SQLite cannot emulate PostgreSQL schemas, so tests run the router and the
lifecycle manager against these. ``FakeEngine`` behaves like a small pool
(a returned connection keeps whatever ``search_path`` it had, just like a
real one) and ``FakeDialect`` keeps each schema's rows and migration
history in a ``FakeCluster``.
"""

import asyncio
from contextlib import asynccontextmanager

from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from multistore.tenancy.dialect import AppliedMigration, SchemaDialect


class FakeCluster:
    """Schemas, their rows and migration history, plus fault switches."""

    def __init__(self, neutral: str = "public") -> None:
        self.schemas: dict[str, dict] = {neutral: {"history": {}, "rows": []}}
        self.fail_bind: set[str] = set()
        self.fail_versions: set[int] = set()
        self.fail_create: set[str] = set()
        self.fail_reset = False
        self.fail_release = False
        self.report_schema: str | None = None  # force current_schema() to lie
        self.applied_log: list[tuple[str, int]] = []
        self.dropped: list[str] = []
        self.advisory: dict[str, asyncio.Lock] = {}
        self.holders: dict[str, int] = {}
        self.max_holders: dict[str, int] = {}

    def rows(self, schema: str) -> list:
        return self.schemas[schema]["rows"]

    def unlock(self, conn: "FakeConnection", schema: str) -> None:
        conn.held_locks.discard(schema)
        self.holders[schema] -= 1
        self.advisory[schema].release()


class FakeConnection:
    def __init__(self, engine: "FakeEngine") -> None:
        self.engine = engine
        self.search_path = engine.neutral
        self.invalidated = False
        self.closed = False
        self.held_locks: set[str] = set()
        self._in_tx = False

    def in_transaction(self) -> bool:
        return self._in_tx

    async def commit(self) -> None:
        self._in_tx = False

    async def rollback(self) -> None:
        self._in_tx = False
        self.engine.rollbacks += 1

    async def invalidate(self) -> None:
        self.invalidated = True
        # The server ends the session, and its advisory locks with it
        for schema in list(self.held_locks):
            self.engine.cluster.unlock(self, schema)

    async def close(self) -> None:
        if self.closed:
            return
        if self._in_tx:
            await self.rollback()
        self.closed = True
        self.engine.checkin(self)

    @asynccontextmanager
    async def begin(self):
        self._in_tx = True
        try:
            yield self
        except BaseException:
            await self.rollback()
            raise
        else:
            await self.commit()

    # Tenant data access used by the isolation tests
    def write(self, value) -> None:
        schema = self.engine.cluster.schemas[self.search_path]
        schema["rows"].append(value)

    def read(self) -> list:
        return list(self.engine.cluster.schemas[self.search_path]["rows"])


class _Checkout:
    """What ``engine.connect()`` returns: awaitable and an async context manager."""

    def __init__(self, engine: "FakeEngine") -> None:
        self.engine = engine
        self.conn: FakeConnection | None = None

    def __await__(self):
        return self.engine.checkout().__await__()

    async def __aenter__(self) -> FakeConnection:
        self.conn = await self.engine.checkout()
        return self.conn

    async def __aexit__(self, *exc_info) -> None:
        await self.conn.close()


class FakeEngine:
    def __init__(self, cluster: FakeCluster, pool_size: int = 10, neutral: str = "public") -> None:
        self.cluster = cluster
        self.pool_size = pool_size
        self.neutral = neutral
        self.idle: list[FakeConnection] = []
        self.checked_out = 0
        self.discarded = 0
        self.rollbacks = 0
        self.fail_checkouts = 0
        self.checkout_attempts = 0

    def connect(self) -> _Checkout:
        return _Checkout(self)

    async def checkout(self) -> FakeConnection:
        self.checkout_attempts += 1
        if self.fail_checkouts > 0:
            self.fail_checkouts -= 1
            raise PoolTimeoutError("QueuePool limit reached, connection timed out")
        if not self.idle and self.checked_out >= self.pool_size:
            raise PoolTimeoutError("QueuePool limit reached, connection timed out")
        conn = self.idle.pop() if self.idle else FakeConnection(self)
        conn.closed = False
        self.checked_out += 1
        return conn

    def checkin(self, conn: FakeConnection) -> None:
        self.checked_out -= 1
        if conn.invalidated:
            self.discarded += 1
        else:
            self.idle.append(conn)

    async def dispose(self) -> None:
        self.idle.clear()


class FakeDialect(SchemaDialect):
    def __init__(self, cluster: FakeCluster) -> None:
        self.cluster = cluster

    async def bind(self, conn, schema):
        if schema in self.cluster.fail_bind:
            raise ConnectionError(f"server closed the connection while binding {schema}")
        conn.search_path = schema

    async def current_schema(self, conn):
        if self.cluster.report_schema is not None:
            return self.cluster.report_schema
        # Like PostgreSQL: a search_path naming a missing schema reports NULL
        return conn.search_path if conn.search_path in self.cluster.schemas else None

    async def reset(self, conn, neutral_schema):
        if self.cluster.fail_reset:
            raise ConnectionError("server closed the connection during reset")
        conn.search_path = neutral_schema

    async def schema_exists(self, conn, schema):
        return schema in self.cluster.schemas

    async def list_schemas(self, conn, prefix):
        return sorted(s for s in self.cluster.schemas if s.startswith(prefix))

    async def create_schema(self, conn, schema):
        if schema in self.cluster.fail_create:
            raise PermissionError(f"permission denied to create schema {schema}")
        self.cluster.schemas.setdefault(schema, {"history": {}, "rows": []})

    async def drop_schema(self, conn, schema):
        self.cluster.schemas.pop(schema, None)
        self.cluster.dropped.append(schema)

    async def ensure_history_table(self, conn, schema):
        self.cluster.schemas[schema].setdefault("history", {})

    async def applied_migrations(self, conn, schema):
        history = self.cluster.schemas[schema]["history"]
        return [history[v] for v in sorted(history)]

    async def apply_migration(self, conn, schema, script):
        assert conn.in_transaction(), "migrations must run inside their own transaction"
        if script.version in self.cluster.fail_versions:
            raise RuntimeError(f"syntax error in V{script.version}")
        self.cluster.applied_log.append((schema, script.version))
        self.cluster.schemas[schema]["history"][script.version] = AppliedMigration(
            script.version, script.description, script.checksum, True
        )

    async def record_failure(self, conn, schema, script):
        self.cluster.schemas[schema]["history"][script.version] = AppliedMigration(
            script.version, script.description, script.checksum, False
        )

    async def acquire_lock(self, conn, schema):
        lock = self.cluster.advisory.setdefault(schema, asyncio.Lock())
        await lock.acquire()
        holders = self.cluster.holders.get(schema, 0) + 1
        self.cluster.holders[schema] = holders
        self.cluster.max_holders[schema] = max(self.cluster.max_holders.get(schema, 0), holders)
        conn.held_locks.add(schema)

    async def release_lock(self, conn, schema):
        if self.cluster.fail_release:
            raise ConnectionError(f"connection lost while unlocking {schema}")
        self.cluster.unlock(conn, schema)


