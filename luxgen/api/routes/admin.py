"""Tenant administration endpoints.

Protected by the ``ADMIN_API_KEY`` bearer token. These routes manage the
registry itself and run without a tenant context.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from luxgen.api.dependencies import get_services, require_admin
from luxgen.multitenancy.tenant import SLUG_PATTERN, ResourceKind, TenantRecord, TenantStatus
from luxgen.services import TenancyServices

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/tenants",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)

PlanName = Literal["free", "basic", "professional", "enterprise"]
StatusName = Literal["active", "suspended", "pending", "inactive"]


def _check_limits(v: dict[str, int] | None) -> dict[str, int] | None:
    if v is None:
        return v
    known = {kind.value for kind in ResourceKind}
    for kind, value in v.items():
        if kind not in known:
            raise ValueError(f"Unknown resource kind {kind!r}")
        if value < 0:
            raise ValueError(f"Limit for {kind} must be >= 0")
    return v


class TenantCreate(BaseModel):
    slug: str = Field(..., pattern=SLUG_PATTERN.pattern)
    display_name: str = Field(..., min_length=1, max_length=256)
    plan: PlanName = "free"
    status: StatusName = "active"
    features: list[str] = Field(default_factory=list)
    limits: dict[str, int] = Field(default_factory=dict)
    domain: str | None = None
    branding: dict[str, Any] = Field(default_factory=dict)

    @field_validator("limits")
    @classmethod
    def _validate_limits(cls, v):
        return _check_limits(v)


class TenantUpdate(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=256)
    plan: PlanName | None = None
    status: StatusName | None = None
    limits: dict[str, int] | None = None
    domain: str | None = None
    branding: dict[str, Any] | None = None

    @field_validator("limits")
    @classmethod
    def _validate_limits(cls, v):
        return _check_limits(v)


class FeaturesUpdate(BaseModel):
    features: list[str]


@router.get("")
async def list_tenants(
    include_inactive: bool = True,
    services: TenancyServices = Depends(get_services),
) -> dict:
    records = await (services.registry.list_all() if include_inactive else services.registry.list_active())
    return {"success": True, "data": [r.to_dict() for r in records]}


@router.post("", status_code=201)
async def create_tenant(body: TenantCreate, services: TenancyServices = Depends(get_services)) -> dict:
    record = TenantRecord.create(
        slug=body.slug,
        display_name=body.display_name,
        plan=body.plan,
        features=body.features,
        limits=body.limits,
        status=body.status,
        domain=body.domain,
        branding=body.branding,
    )
    saved = await services.registry.upsert(record)
    logger.info("Admin created tenant %s (%s)", saved.slug, saved.id)
    return {"success": True, "data": saved.to_dict()}


@router.get("/{tenant_id}")
async def get_tenant(tenant_id: str, services: TenancyServices = Depends(get_services)) -> dict:
    record = await services.registry.get_by_id(tenant_id)
    return {"success": True, "data": record.to_dict()}


@router.patch("/{tenant_id}")
async def update_tenant(
    tenant_id: str,
    body: TenantUpdate,
    services: TenancyServices = Depends(get_services),
) -> dict:
    changes = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key == "domain"
    }
    record = await services.registry.update(tenant_id, **changes)
    logger.info("Admin updated tenant %s: %s", record.slug, sorted(changes))
    return {"success": True, "data": record.to_dict()}


@router.delete("/{tenant_id}")
async def deactivate_tenant(tenant_id: str, services: TenancyServices = Depends(get_services)) -> dict:
    record = await services.registry.deactivate(tenant_id)
    logger.info("Admin deactivated tenant %s", record.slug)
    return {"success": True, "data": record.to_dict()}


@router.put("/{tenant_id}/features")
async def set_features(
    tenant_id: str,
    body: FeaturesUpdate,
    services: TenancyServices = Depends(get_services),
) -> dict:
    record = await services.registry.update(tenant_id, features=frozenset(body.features))
    return {"success": True, "data": record.to_dict()}


@router.post("/{tenant_id}/suspend")
async def suspend_tenant(tenant_id: str, services: TenancyServices = Depends(get_services)) -> dict:
    record = await services.registry.set_status(tenant_id, TenantStatus.SUSPENDED)
    logger.info("Admin suspended tenant %s", record.slug)
    return {"success": True, "data": record.to_dict()}


@router.post("/{tenant_id}/reactivate")
async def reactivate_tenant(tenant_id: str, services: TenancyServices = Depends(get_services)) -> dict:
    record = await services.registry.set_status(tenant_id, TenantStatus.ACTIVE)
    logger.info("Admin reactivated tenant %s", record.slug)
    return {"success": True, "data": record.to_dict()}


@router.get("/{tenant_id}/usage")
async def tenant_usage(tenant_id: str, services: TenancyServices = Depends(get_services)) -> dict:
    report = await services.limits.usage_report(tenant_id)
    return {"success": True, "data": report}
