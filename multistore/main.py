"""FastAPI application entrypoint."""

import logging.config
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from multistore.api.v1 import v1_router
from multistore.core.config import get_settings
from multistore.core.database import init_db
from multistore.core.errors import TenancyError
from multistore.tenancy.cleanup import RequestScopeCleanupMiddleware
from multistore.tenancy.middleware import TenantResolutionMiddleware
from multistore.tenancy.services import TenancyServices, build_services


def configure_logging(level: str) -> None:
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "default"},
        },
        "loggers": {
            "multistore": {"level": level.upper(), "handlers": ["console"], "propagate": False},
        },
    })


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    services: TenancyServices = app.state.tenancy
    configure_logging(services.settings.log_level)
    # Startup: ensure the registry table exists (use Alembic in production)
    await init_db(services.engine)
    yield
    await services.dispose()


async def tenancy_error_handler(_request: Request, exc: TenancyError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def create_app(services: TenancyServices | None = None) -> FastAPI:
    app = FastAPI(
        title="Multistore",
        version="0.1.0",
        description="Schema-per-tenant routing and lifecycle for multi-store commerce",
        lifespan=lifespan,
    )
    app.state.tenancy = services or build_services(get_settings())

    # ── Middleware (last added runs first) ───────────────────
    app.add_middleware(TenantResolutionMiddleware)
    app.add_middleware(RequestScopeCleanupMiddleware)

    app.add_exception_handler(TenancyError, tenancy_error_handler)

    # ── API routes ───────────────────────────────────────────
    app.include_router(v1_router)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
