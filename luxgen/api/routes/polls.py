"""Poll endpoints. Requires the ``polls`` feature."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from luxgen.api.dependencies import (
    get_scoped_session,
    get_services,
    require_feature,
)
from luxgen.api.errors import ApiError, EntityNotFoundError
from luxgen.models import Poll, User
from luxgen.multitenancy.context import TenantContext
from luxgen.multitenancy.tenant import ResourceKind
from luxgen.services import TenancyServices

logger = logging.getLogger(__name__)

FEATURE = "polls"

# Shared with the handlers so the gate runs once and they get its context.
feature_context = require_feature(FEATURE)

router = APIRouter(
    prefix="/api/polls",
    tags=["polls"],
    dependencies=[Depends(feature_context)],
)


class PollCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    question: str = Field(..., min_length=1)
    options: list[str] = Field(..., min_length=2, max_length=20)
    author_id: str | None = None


@router.get("")
async def list_polls(
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_scoped_session),
) -> dict:
    stmt = (
        select(Poll)
        .options(selectinload(Poll.author))
        .order_by(Poll.created_at.desc())
        .limit(limit)
    )
    polls = (await session.scalars(stmt)).all()
    return {"success": True, "data": [p.to_dict() for p in polls]}


@router.post("", status_code=201)
async def create_poll(
    body: PollCreate,
    context: TenantContext = Depends(feature_context),
    services: TenancyServices = Depends(get_services),
) -> dict:
    async with services.guard.guarded_create(context, ResourceKind.POLLS) as session:
        author = None
        if body.author_id is not None:
            author = await session.get(User, body.author_id)
            if author is None:
                raise ApiError(
                    f"Unknown author {body.author_id!r}", code="validation_error", status_code=422
                )
        poll = Poll(title=body.title, question=body.question, options=body.options, author=author)
        session.add(poll)
        await session.flush()

    logger.info("Created poll %s in tenant %s", poll.id, context.slug)
    return {"success": True, "data": poll.to_dict()}


@router.get("/{poll_id}")
async def get_poll(poll_id: str, session: AsyncSession = Depends(get_scoped_session)) -> dict:
    poll = await session.get(Poll, poll_id, options=[selectinload(Poll.author)])
    if poll is None:
        raise EntityNotFoundError("Poll", poll_id)
    return {"success": True, "data": poll.to_dict()}


@router.delete("/{poll_id}")
async def delete_poll(
    poll_id: str,
    context: TenantContext = Depends(feature_context),
    services: TenancyServices = Depends(get_services),
) -> dict:
    async with services.guard.guarded_delete(context, ResourceKind.POLLS) as session:
        poll = await session.get(Poll, poll_id)
        if poll is None:
            raise EntityNotFoundError("Poll", poll_id)
        await session.delete(poll)
    return {"success": True, "data": {"id": poll_id, "deleted": True}}
