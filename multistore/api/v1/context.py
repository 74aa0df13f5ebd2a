"""Tenant-scoped diagnostic endpoint.

Shows which schema the request was resolved to and which schema the routed
connection actually reports, so an operator can check a store's routing end
to end.
"""

from fastapi import APIRouter
from pydantic import BaseModel

from multistore.api.deps import Services, TenantConnection
from multistore.tenancy.context import TenantContext

router = APIRouter(prefix="/context", tags=["context"])


class ContextResponse(BaseModel):
    schema_name: str
    connection_schema: str | None


@router.get("", response_model=ContextResponse)
async def current_context(conn: TenantConnection, services: Services) -> ContextResponse:
    return ContextResponse(
        schema_name=TenantContext.require(),
        connection_schema=await services.schema_router.dialect.current_schema(conn),
    )
