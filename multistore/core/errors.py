"""Exception hierarchy for tenant routing and schema lifecycle.

Every error carries the HTTP status it maps to, so the API layer and the
resolution middleware (which runs outside FastAPI's exception handlers)
render them the same way.
"""

from fastapi import status


class TenancyError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


# ── Resolution ────────────────────────────────────────────────

class TenantResolutionError(TenancyError):
    status_code = status.HTTP_400_BAD_REQUEST


class UnknownTenantError(TenantResolutionError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, source: str, key: str) -> None:
        super().__init__(f"Unknown tenant '{key}' (from {source})")
        self.source = source
        self.key = key


class TenantNotActiveError(TenantResolutionError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, key: str, tenant_status: str) -> None:
        super().__init__(f"Tenant '{key}' is not active (status: {tenant_status})")
        self.key = key
        self.tenant_status = tenant_status


class TenantMismatchError(TenantResolutionError):
    pass


class TenantRequiredError(TenantResolutionError):
    pass


# ── Registry ──────────────────────────────────────────────────

class TenantNotFoundError(TenancyError):
    status_code = status.HTTP_404_NOT_FOUND


class TenantConflictError(TenancyError):
    status_code = status.HTTP_409_CONFLICT


class InvalidTransitionError(TenancyError):
    status_code = status.HTTP_409_CONFLICT


class StaleTenantError(TenancyError):
    status_code = status.HTTP_409_CONFLICT


# ── Schema routing / lifecycle ────────────────────────────────

class InvalidSchemaNameError(TenancyError):
    status_code = status.HTTP_400_BAD_REQUEST


class SchemaBindError(TenancyError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class SchemaMismatchError(SchemaBindError):
    def __init__(self, requested: str, active: str | None) -> None:
        super().__init__(
            f"Connection reports schema {active!r} after binding {requested!r}"
        )
        self.requested = requested
        self.active = active


class MigrationError(TenancyError):
    pass


class MigrationChecksumError(MigrationError):
    pass


class MigrationOrderError(MigrationError):
    pass


class SchemaDropRefusedError(TenancyError):
    status_code = status.HTTP_403_FORBIDDEN


class ProvisioningError(TenancyError):
    def __init__(self, detail: str, tenant_id: str | None = None) -> None:
        super().__init__(detail)
        self.tenant_id = tenant_id
