"""V1 API router aggregation."""

from fastapi import APIRouter

from multistore.api.v1.context import router as context_router
from multistore.api.v1.system import router as system_router
from multistore.api.v1.tenants import router as tenants_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(tenants_router)
v1_router.include_router(context_router)
v1_router.include_router(system_router)
