"""Health check endpoint."""

from fastapi import APIRouter, Depends

from luxgen import __version__
from luxgen.api.dependencies import get_services
from luxgen.services import TenancyServices

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check(services: TenancyServices = Depends(get_services)) -> dict:
    return {
        "status": "ok",
        "version": __version__,
        "default_tenant": services.settings.DEFAULT_TENANT_SLUG,
    }
