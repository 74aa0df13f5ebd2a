"""Tests for request-scoped resolution, routing and cleanup over HTTP."""

import pytest
from httpx import AsyncClient

from multistore.core.security import create_jwt
from multistore.tenancy.context import TenantContext


async def _provision(client: AsyncClient, headers: dict, key: str, **extra) -> dict:
    resp = await client.post("/v1/tenants", json={"store_key": key, "name": key, **extra},
                             headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_header_routes_connection_to_tenant_schema(client: AsyncClient, admin_headers):
    await _provision(client, admin_headers, "acme")

    resp = await client.get("/v1/context", headers={"X-Tenant-ID": "acme"})

    assert resp.status_code == 200
    assert resp.json() == {"schema_name": "store_acme", "connection_schema": "store_acme"}


@pytest.mark.asyncio
async def test_subdomain_routes_request(client: AsyncClient, admin_headers):
    await _provision(client, admin_headers, "acme", subdomain="acme-store")

    resp = await client.get("/v1/context", headers={"Host": "acme-store.shop.test"})

    assert resp.json()["schema_name"] == "store_acme"


@pytest.mark.asyncio
async def test_token_claim_routes_request(client: AsyncClient, admin_headers, settings):
    await _provision(client, admin_headers, "acme")
    token = create_jwt("user-1", "acme", settings)

    resp = await client.get("/v1/context", headers={"Authorization": f"Bearer {token}"})

    assert resp.json()["schema_name"] == "store_acme"


@pytest.mark.asyncio
async def test_no_hint_uses_default_schema(client: AsyncClient):
    resp = await client.get("/v1/context")
    assert resp.json() == {"schema_name": "public", "connection_schema": "public"}


@pytest.mark.asyncio
async def test_unknown_tenant_rejected_before_connection(client: AsyncClient, fake_engine):
    resp = await client.get("/v1/context", headers={"X-Tenant-ID": "ghost"})

    assert resp.status_code == 404
    assert "ghost" in resp.json()["detail"]
    assert fake_engine.checkout_attempts == 0


@pytest.mark.asyncio
async def test_suspended_tenant_rejected(client: AsyncClient, admin_headers, fake_engine):
    acme = await _provision(client, admin_headers, "acme")
    await client.post(f"/v1/tenants/{acme['id']}/suspend", headers=admin_headers)
    attempts = fake_engine.checkout_attempts

    resp = await client.get("/v1/context", headers={"X-Tenant-ID": "acme"})

    assert resp.status_code == 403
    assert fake_engine.checkout_attempts == attempts


@pytest.mark.asyncio
async def test_header_claim_mismatch_rejected(client: AsyncClient, admin_headers, settings):
    await _provision(client, admin_headers, "acme")
    await _provision(client, admin_headers, "other")
    token = create_jwt("user-1", "other", settings)

    resp = await client.get("/v1/context", headers={
        "X-Tenant-ID": "acme",
        "Authorization": f"Bearer {token}",
    })
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_context_cleared_and_connection_reset_after_request(
    client: AsyncClient, admin_headers, fake_engine
):
    await _provision(client, admin_headers, "acme")

    await client.get("/v1/context", headers={"X-Tenant-ID": "acme"})

    assert TenantContext.get() is None
    assert fake_engine.checked_out == 0
    assert all(conn.search_path == "public" for conn in fake_engine.idle)


@pytest.mark.asyncio
async def test_alternating_tenants_never_leak(client: AsyncClient, admin_headers):
    for key in ("alpha", "beta"):
        await _provision(client, admin_headers, key)

    for key in ("alpha", "beta", "alpha", "beta"):
        resp = await client.get("/v1/context", headers={"X-Tenant-ID": key})
        assert resp.json()["connection_schema"] == f"store_{key}"


@pytest.mark.asyncio
async def test_bind_failure_returns_503(client: AsyncClient, admin_headers, cluster, fake_engine):
    await _provision(client, admin_headers, "acme")
    cluster.fail_bind.add("store_acme")

    resp = await client.get("/v1/context", headers={"X-Tenant-ID": "acme"})

    assert resp.status_code == 503
    assert fake_engine.discarded == 1


@pytest.mark.asyncio
async def test_health_needs_no_tenant(client: AsyncClient, services):
    strict = services.settings.model_copy(update={"default_tenant_schema": None})
    services.resolver.settings = strict

    resp = await client.get("/health")
    assert resp.status_code == 200

    resp = await client.get("/v1/context")
    assert resp.status_code == 400
