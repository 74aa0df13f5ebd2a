"""Turn request hints into the schema name of the tenant a unit of work targets.

Precedence, first match wins:

1. a schema already present in ``TenantContext`` (never overridden);
2. the explicit tenant header and the token claim (they must agree);
3. the host's subdomain under ``base_domain``;
4. ``default_tenant_schema`` when configured.

A key that was named explicitly but is unknown or not ACTIVE fails the
request; it never falls through to a later source or to the default.
"""

import logging
from dataclasses import dataclass

from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from multistore.core.cache import LookupCache, by_key, by_subdomain, tenant_lookups
from multistore.core.config import Settings, get_settings
from multistore.core.errors import (
    TenantMismatchError,
    TenantNotActiveError,
    TenantRequiredError,
    UnknownTenantError,
)
from multistore.core.security import decode_jwt
from multistore.models.tenant import Tenant, TenantStatus
from multistore.tenancy.context import TenantContext
from multistore.tenancy.registry import TenantRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TenantHints:
    """Raw tenant identifiers carried by a request or job."""

    header_key: str | None = None
    host: str | None = None
    bearer_token: str | None = None


class TenantResolver:
    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings | None = None,
        cache: LookupCache | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else tenant_lookups

    async def resolve(self, hints: TenantHints) -> str:
        """Return the schema name for ``hints`` and store it in TenantContext."""
        existing = TenantContext.get()
        if existing is not None:
            return existing

        schema_name = await self._resolve(hints)
        TenantContext.set(schema_name)
        return schema_name

    async def _resolve(self, hints: TenantHints) -> str:
        header_key = _store_key(hints.header_key)
        claim_key = self._claim_key(hints.bearer_token)

        if header_key and claim_key and header_key != claim_key:
            raise TenantMismatchError(
                f"Tenant header '{header_key}' does not match token tenant '{claim_key}'"
            )

        if header_key:
            return await self._lookup_key("header", header_key)
        if claim_key:
            return await self._lookup_key("token", claim_key)

        subdomain = self.subdomain_of(hints.host)
        if subdomain:
            return await self._lookup_subdomain(subdomain)

        if self.settings.default_tenant_schema:
            logger.debug("No tenant hint; using default schema %s",
                         self.settings.default_tenant_schema)
            return self.settings.default_tenant_schema
        raise TenantRequiredError("No tenant identifier supplied and no default configured")

    # ── Sources ───────────────────────────────────────────────

    def _claim_key(self, token: str | None) -> str | None:
        token = _clean(token)
        if not token or not self.settings.jwt_secret_key:
            return None
        try:
            payload = decode_jwt(token, self.settings)
        except JWTError:
            # Authentication is enforced elsewhere; a bad token just names no tenant
            logger.debug("Ignoring undecodable bearer token for tenant resolution")
            return None
        claim = payload.get(self.settings.tenant_claim)
        return _store_key(claim) if isinstance(claim, str) else None

    def subdomain_of(self, host: str | None) -> str | None:
        """Leftmost label of ``host`` when it sits directly under ``base_domain``."""
        host = _clean(host)
        if not host:
            return None
        host = host.lower().split(":", 1)[0]
        base = self.settings.base_domain.lower().strip(".")
        suffix = "." + base
        if not host.endswith(suffix):
            return None
        label = host[: -len(suffix)]
        if not label or "." in label:
            return None
        if label in self.settings.reserved_subdomains:
            return None
        return label

    # ── Registry lookups ──────────────────────────────────────

    async def _lookup_key(self, source: str, store_key: str) -> str:
        cached = self.cache.get(by_key(store_key), self.settings.resolver_cache_ttl)
        if cached is not None:
            return cached
        async with self.session_factory() as session:
            tenant = await TenantRegistry(session, self.settings).get_by_key(store_key)
        return self._accept(source, store_key, tenant, by_key(store_key))

    async def _lookup_subdomain(self, subdomain: str) -> str:
        key = by_subdomain(subdomain)
        cached = self.cache.get(key, self.settings.resolver_cache_ttl)
        if cached is not None:
            return cached
        async with self.session_factory() as session:
            tenant = await TenantRegistry(session, self.settings).get_by_subdomain(subdomain)
        return self._accept("host", subdomain, tenant, key)

    def _accept(self, source: str, key: str, tenant: Tenant | None, cache_key) -> str:
        if tenant is None:
            logger.info("Rejected unknown tenant '%s' from %s", key, source)
            raise UnknownTenantError(source, key)
        if tenant.status != TenantStatus.ACTIVE:
            logger.info("Rejected tenant '%s' in status %s", key, tenant.status)
            raise TenantNotActiveError(key, str(tenant.status))
        self.cache.put(cache_key, tenant.schema_name)
        logger.debug("Resolved tenant '%s' from %s to %s", key, source, tenant.schema_name)
        return tenant.schema_name


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _store_key(value: str | None) -> str | None:
    # Store keys are always lowercase
    value = _clean(value)
    return value.lower() if value else None
