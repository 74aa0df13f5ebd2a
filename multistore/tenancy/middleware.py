"""ASGI middleware that resolves the tenant before the request reaches a route.

Resolution failures are answered here, with the error's status code, so a
request for an unknown or suspended store never gets as far as acquiring a
database connection.
"""

import logging

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from multistore.core.errors import TenantResolutionError
from multistore.tenancy.resolver import TenantHints

logger = logging.getLogger(__name__)

# Administrative, health and documentation routes run without a tenant
EXCLUDED_PREFIXES = (
    "/health",
    "/v1/tenants",
    "/v1/system",
    "/docs",
    "/redoc",
    "/openapi.json",
)


def hints_from_scope(scope: Scope, tenant_header: str) -> TenantHints:
    headers = Headers(scope=scope)
    token = None
    authorization = headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        token = credentials
    return TenantHints(
        header_key=headers.get(tenant_header),
        host=headers.get("host"),
        bearer_token=token,
    )


class TenantResolutionMiddleware:
    def __init__(self, app: ASGIApp, excluded_prefixes: tuple[str, ...] = EXCLUDED_PREFIXES) -> None:
        self.app = app
        self.excluded_prefixes = excluded_prefixes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self._is_excluded(scope["path"]):
            await self.app(scope, receive, send)
            return

        services = scope["app"].state.tenancy
        hints = hints_from_scope(scope, services.settings.tenant_header)
        try:
            await services.resolver.resolve(hints)
        except TenantResolutionError as exc:
            logger.info("Tenant resolution failed for %s: %s", scope["path"], exc.detail)
            response = JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)

    def _is_excluded(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix.rstrip("/") + "/")
            for prefix in self.excluded_prefixes
        )
