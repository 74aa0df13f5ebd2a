"""Lightweight in-memory TTL cache for tenant lookups.

The resolver hits the registry on every request that names a tenant by
header, claim or host. Identical lookups within a short window are served
from here instead. Only ACTIVE tenants are stored, and the registry drops
entries whenever a tenant changes status, so a suspension takes effect on
the next request in this process. Other processes only notice once their
entry expires (``resolver_cache_ttl``).
"""

import time
from collections.abc import Hashable
from typing import Any

# Default TTL in seconds
DEFAULT_TTL = 5.0


class LookupCache:
    def __init__(self) -> None:
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def get(self, key: Hashable, ttl: float = DEFAULT_TTL) -> Any | None:
        """Return cached value if present and not expired, else None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if time.monotonic() - stored_at > ttl:
            self._entries.pop(key, None)
            return None
        return value

    def put(self, key: Hashable, value: Any) -> None:
        self._entries[key] = (time.monotonic(), value)

    def invalidate(self, *keys: Hashable) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


# Shared by the resolver (reads) and the registry (invalidation)
tenant_lookups = LookupCache()


def by_key(store_key: str) -> tuple[str, str]:
    return ("store_key", store_key)


def by_subdomain(subdomain: str) -> tuple[str, str]:
    return ("subdomain", subdomain)
