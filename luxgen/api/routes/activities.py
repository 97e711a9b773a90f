"""Activity feed endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from luxgen.api.dependencies import get_scoped_session, get_services, get_tenant_context
from luxgen.api.errors import ApiError
from luxgen.models import Activity, User
from luxgen.multitenancy.context import TenantContext
from luxgen.multitenancy.tenant import ResourceKind
from luxgen.services import TenancyServices

router = APIRouter(prefix="/api/activities", tags=["activities"])


class ActivityCreate(BaseModel):
    kind: str = Field(..., min_length=1, max_length=64)
    description: str = ""
    user_id: str | None = None


@router.get("")
async def list_activities(
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_scoped_session),
) -> dict:
    stmt = (
        select(Activity)
        .options(selectinload(Activity.user))
        .order_by(Activity.created_at.desc())
        .limit(limit)
    )
    activities = (await session.scalars(stmt)).all()
    return {"success": True, "data": [a.to_dict() for a in activities]}


@router.post("", status_code=201)
async def create_activity(
    body: ActivityCreate,
    context: TenantContext = Depends(get_tenant_context),
    services: TenancyServices = Depends(get_services),
) -> dict:
    async with services.guard.guarded_create(context, ResourceKind.ACTIVITIES) as session:
        user = None
        if body.user_id is not None:
            user = await session.get(User, body.user_id)
            if user is None:
                raise ApiError(
                    f"Unknown user {body.user_id!r}", code="validation_error", status_code=422
                )
        activity = Activity(kind=body.kind, description=body.description, user=user)
        session.add(activity)
        await session.flush()

    return {"success": True, "data": activity.to_dict()}
