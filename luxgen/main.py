"""LuxGen FastAPI application."""

from __future__ import annotations

import importlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from luxgen import __version__
from luxgen.api.errors import register_exception_handlers
from luxgen.api.middleware import RequestLoggingMiddleware, TenantPathMiddleware
from luxgen.config.settings import Settings, settings as default_settings
from luxgen.config.tenants_loader import apply_tenant_seeds, load_tenant_seeds
from luxgen.db import create_all
from luxgen.multitenancy.limits import UsageStore
from luxgen.multitenancy.registry import TenantRegistry
from luxgen.services import TenancyServices, build_services

logger = logging.getLogger(__name__)

_route_modules = [
    "luxgen.api.routes.health",
    "luxgen.api.routes.tenant",
    "luxgen.api.routes.users",
    "luxgen.api.routes.polls",
    "luxgen.api.routes.jobs",
    "luxgen.api.routes.activities",
    "luxgen.api.routes.admin",
]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def startup(services: TenancyServices) -> None:
    """Check the database, create tables if asked and apply the seed file."""
    async with services.engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    if services.settings.DATABASE_AUTO_CREATE:
        await create_all(services.engine)
        logger.info("Created database tables")

    seed_file = services.settings.TENANT_SEED_FILE
    if seed_file:
        seeds = load_tenant_seeds(seed_file)
        await apply_tenant_seeds(services.registry, seeds)
        logger.info("Loaded %d tenant(s) from %s", len(seeds.tenants), seed_file)


def create_app(
    settings: Settings | None = None,
    *,
    engine: AsyncEngine | None = None,
    registry: TenantRegistry | None = None,
    usage_store: UsageStore | None = None,
) -> FastAPI:
    """Build the application with its own set of tenancy services.

    Args:
        settings: Settings to use; the environment-derived ones by default.
        engine: Database engine override (tests pass an in-memory one).
        registry: Tenant registry override.
        usage_store: Usage counter store override.
    """
    settings = settings or default_settings
    services = build_services(
        settings, engine=engine, registry=registry, usage_store=usage_store
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        await startup(services)
        yield
        await services.dispose()

    app = FastAPI(
        title="LuxGen Tenancy",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(TenantPathMiddleware, path_prefix=settings.TENANT_PATH_PREFIX)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Tenant-Slug"],
    )

    for mod_path in _route_modules:
        module = importlib.import_module(mod_path)
        app.include_router(module.router)

    register_exception_handlers(app)
    return app


def run() -> None:
    """Entry point for ``python -m luxgen.main``."""
    import uvicorn

    configure_logging(default_settings.LOG_LEVEL)
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
