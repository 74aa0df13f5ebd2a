"""Tenant context management using contextvars.

The active tenant is a bare schema name held in a ``ContextVar``. Under
asyncio each task works on its own copy of the context; plain threads get
their own as well. Workers and tasks are reused across unrelated units of
work, so every unit that sets a value must clear it on the way out (see
``multistore.tenancy.cleanup``).
"""

import contextvars
import logging
from collections.abc import Iterator
from contextlib import contextmanager

from multistore.core.errors import TenantRequiredError

logger = logging.getLogger(__name__)

_current_schema: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tenant_schema", default=None
)


class TenantContext:
    """Execution-scoped holder of the active tenant schema."""

    @staticmethod
    def set(schema_name: str) -> None:
        if not schema_name:
            raise ValueError("schema_name must not be empty")
        logger.debug("Setting tenant schema to %s", schema_name)
        _current_schema.set(schema_name)

    @staticmethod
    def get() -> str | None:
        """Return the active schema name, or None when nothing is set."""
        return _current_schema.get()

    @staticmethod
    def require() -> str:
        """Return the active schema name, raising if none is set.

        Use this in code paths that must run against a tenant.
        """
        schema_name = _current_schema.get()
        if schema_name is None:
            raise TenantRequiredError("No tenant context available for this operation")
        return schema_name

    @staticmethod
    def clear() -> None:
        """Erase the active schema. Safe to call when nothing is set."""
        _current_schema.set(None)


@contextmanager
def tenant_scope(schema_name: str) -> Iterator[str]:
    """Run a block against ``schema_name``, restoring the previous value after.

    For background jobs and admin tooling that act on behalf of a tenant
    outside a request:

        with tenant_scope("store_acme"):
            await do_work()
    """
    if not schema_name:
        raise ValueError("schema_name must not be empty")
    token = _current_schema.set(schema_name)
    try:
        yield schema_name
    finally:
        _current_schema.reset(token)
