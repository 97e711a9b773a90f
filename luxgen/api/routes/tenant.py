"""Current-tenant profile and usage endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from luxgen.api.dependencies import get_services, get_tenant_context
from luxgen.multitenancy.context import TenantContext
from luxgen.services import TenancyServices

router = APIRouter(prefix="/api", tags=["tenant"])


@router.get("/tenant")
async def current_tenant(
    context: TenantContext = Depends(get_tenant_context),
    services: TenancyServices = Depends(get_services),
) -> dict:
    record = await services.registry.get_by_id(context.tenant_id)
    return {
        "success": True,
        "data": {
            **record.public_profile(),
            "resolved_from": context.resolved_from.value,
        },
    }


@router.get("/usage")
async def current_usage(
    context: TenantContext = Depends(get_tenant_context),
    services: TenancyServices = Depends(get_services),
) -> dict:
    report = await services.limits.usage_report(context.tenant_id)
    return {"success": True, "data": report}
