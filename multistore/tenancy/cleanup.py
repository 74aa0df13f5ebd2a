"""Clear the tenant context at the end of every unit of work.

Request handlers and arq jobs run on reused tasks and workers; a schema
name left behind by one unit of work must never be visible to the next.
"""

import logging

from starlette.types import ASGIApp, Receive, Scope, Send

from multistore.tenancy.context import TenantContext

logger = logging.getLogger(__name__)


class RequestScopeCleanupHook:
    """Callable that erases the tenant context. Safe to call repeatedly."""

    def __call__(self, *_args, **_kwargs) -> None:
        previous = TenantContext.get()
        TenantContext.clear()
        if previous is not None:
            logger.debug("Cleared tenant context (was %s)", previous)


class RequestScopeCleanupMiddleware:
    """Outermost ASGI middleware: clears the context on every exit path."""

    def __init__(self, app: ASGIApp, hook: RequestScopeCleanupHook | None = None) -> None:
        self.app = app
        self.hook = hook or RequestScopeCleanupHook()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return
        # A stale value must not leak in from a previous unit of work
        self.hook()
        try:
            await self.app(scope, receive, send)
        finally:
            self.hook()
