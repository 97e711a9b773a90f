"""Tenant user endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from luxgen.api.dependencies import get_scoped_session, get_services, get_tenant_context
from luxgen.api.errors import ConflictError, EntityNotFoundError
from luxgen.models import User
from luxgen.multitenancy.context import TenantContext
from luxgen.multitenancy.tenant import ResourceKind
from luxgen.services import TenancyServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field(..., min_length=1, max_length=256)
    role: str = Field(default="member", pattern=r"^(member|admin|owner)$")


@router.get("")
async def list_users(
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_scoped_session),
) -> dict:
    users = (await session.scalars(select(User).order_by(User.created_at).limit(limit))).all()
    return {"success": True, "data": [u.to_dict() for u in users]}


@router.post("", status_code=201)
async def create_user(
    body: UserCreate,
    context: TenantContext = Depends(get_tenant_context),
    services: TenancyServices = Depends(get_services),
) -> dict:
    try:
        async with services.guard.guarded_create(context, ResourceKind.USERS) as session:
            user = User(email=body.email.lower(), name=body.name, role=body.role)
            session.add(user)
            await session.flush()
    except IntegrityError:
        raise ConflictError(f"A user with email {body.email!r} already exists")

    logger.info("Created user %s in tenant %s", user.id, context.slug)
    return {"success": True, "data": user.to_dict()}


@router.get("/{user_id}")
async def get_user(user_id: str, session: AsyncSession = Depends(get_scoped_session)) -> dict:
    user = await session.get(User, user_id)
    if user is None:
        raise EntityNotFoundError("User", user_id)
    return {"success": True, "data": user.to_dict()}


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    context: TenantContext = Depends(get_tenant_context),
    services: TenancyServices = Depends(get_services),
) -> dict:
    async with services.guard.guarded_delete(context, ResourceKind.USERS) as session:
        user = await session.get(User, user_id)
        if user is None:
            raise EntityNotFoundError("User", user_id)
        await session.delete(user)
    return {"success": True, "data": {"id": user_id, "deleted": True}}
