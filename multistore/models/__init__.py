"""Import all models so SQLModel.metadata picks them up."""

from multistore.models.tenant import (
    ALLOWED_TRANSITIONS,
    Tenant,
    TenantCreate,
    TenantRead,
    TenantStatus,
    TenantUpdate,
    schema_name_for,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Tenant",
    "TenantCreate",
    "TenantRead",
    "TenantStatus",
    "TenantUpdate",
    "schema_name_for",
]
