"""Tenant model: one store, one database schema."""

import json
import re
import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import field_validator
from sqlalchemy import Text
from sqlmodel import Column, Field, SQLModel

from multistore.models.base import TimestampMixin, VersionedMixin, new_uuid

STORE_KEY_PATTERN = r"^[a-z0-9][a-z0-9\-]{1,48}$"
SUBDOMAIN_PATTERN = r"^[a-z0-9][a-z0-9\-]{0,62}$"


class TenantStatus(StrEnum):
    CREATING = "creating"
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    FAILED = "failed"
    DELETING = "deleting"
    DELETED = "deleted"

    def can_transition_to(self, target: "TenantStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: dict[TenantStatus, frozenset[TenantStatus]] = {
    TenantStatus.CREATING: frozenset({TenantStatus.PROVISIONING, TenantStatus.FAILED}),
    TenantStatus.PROVISIONING: frozenset({TenantStatus.ACTIVE, TenantStatus.FAILED}),
    TenantStatus.FAILED: frozenset({TenantStatus.PROVISIONING, TenantStatus.DELETING}),
    TenantStatus.ACTIVE: frozenset({TenantStatus.SUSPENDED, TenantStatus.DELETING}),
    TenantStatus.SUSPENDED: frozenset({TenantStatus.ACTIVE, TenantStatus.DELETING}),
    TenantStatus.DELETING: frozenset({TenantStatus.DELETED}),
    TenantStatus.DELETED: frozenset(),
}


def schema_name_for(store_key: str, prefix: str = "store_") -> str:
    """Derive the schema name for a store key: ``store_`` + key, dashes to underscores."""
    return f"{prefix}{store_key.lower().replace('-', '_')}"


class Tenant(TimestampMixin, VersionedMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    store_key: str = Field(max_length=50, unique=True, nullable=False, index=True)
    name: str = Field(max_length=255, nullable=False)
    subdomain: str = Field(max_length=63, unique=True, nullable=False, index=True)

    # Set once at creation; never reused, even after deletion
    schema_name: str = Field(max_length=63, unique=True, nullable=False)

    status: TenantStatus = Field(default=TenantStatus.CREATING, index=True)
    billing_plan: str = Field(default="BASIC", max_length=50)

    # Opaque settings blob stored as JSON text
    settings: str = Field(default="{}", sa_column=Column(Text, nullable=False, server_default="{}"))

    @property
    def settings_dict(self) -> dict[str, Any]:
        return json.loads(self.settings or "{}")

    @property
    def is_resolvable(self) -> bool:
        return self.status == TenantStatus.ACTIVE


# ── Pydantic schemas ─────────────────────────────────────────

class TenantCreate(SQLModel):
    store_key: str = Field(max_length=50)
    name: str = Field(max_length=255)
    subdomain: str | None = Field(default=None, max_length=63)
    billing_plan: str = Field(default="BASIC", max_length=50)
    settings: dict = Field(default_factory=dict)

    @field_validator("store_key")
    @classmethod
    def _check_store_key(cls, value: str) -> str:
        if not re.match(STORE_KEY_PATTERN, value):
            raise ValueError("store_key must be lowercase letters, digits and dashes")
        return value

    @field_validator("subdomain")
    @classmethod
    def _normalize_subdomain(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().lower()
        if not re.match(SUBDOMAIN_PATTERN, value):
            raise ValueError("subdomain must be a single DNS label")
        return value


class TenantUpdate(SQLModel):
    name: str | None = Field(default=None, max_length=255)
    billing_plan: str | None = Field(default=None, max_length=50)
    settings: dict | None = None
    expected_version: int | None = None


class TenantRead(SQLModel):
    id: uuid.UUID
    store_key: str
    name: str
    subdomain: str
    schema_name: str
    status: TenantStatus
    billing_plan: str
    settings: dict
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "TenantRead":
        data = tenant.model_dump()
        data["settings"] = tenant.settings_dict
        return cls.model_validate(data)
