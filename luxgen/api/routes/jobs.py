"""Job posting endpoints. Requires the ``job-posting`` feature."""

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
from luxgen.models import Job, User
from luxgen.multitenancy.context import TenantContext
from luxgen.multitenancy.tenant import ResourceKind
from luxgen.services import TenancyServices

logger = logging.getLogger(__name__)

FEATURE = "job-posting"

# Shared with the handlers so the gate runs once and they get its context.
feature_context = require_feature(FEATURE)

router = APIRouter(
    prefix="/api/jobs",
    tags=["jobs"],
    dependencies=[Depends(feature_context)],
)


class JobCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    description: str = ""
    location: str | None = Field(default=None, max_length=256)
    posted_by_id: str | None = None


@router.get("")
async def list_jobs(
    status: str | None = Query(None, pattern=r"^(open|closed)$"),
    limit: int = Query(100, ge=1, le=500),
    session: AsyncSession = Depends(get_scoped_session),
) -> dict:
    stmt = select(Job).options(selectinload(Job.posted_by)).order_by(Job.created_at.desc())
    if status is not None:
        stmt = stmt.where(Job.status == status)
    jobs = (await session.scalars(stmt.limit(limit))).all()
    return {"success": True, "data": [j.to_dict() for j in jobs]}


@router.post("", status_code=201)
async def create_job(
    body: JobCreate,
    context: TenantContext = Depends(feature_context),
    services: TenancyServices = Depends(get_services),
) -> dict:
    async with services.guard.guarded_create(context, ResourceKind.JOBS) as session:
        poster = None
        if body.posted_by_id is not None:
            poster = await session.get(User, body.posted_by_id)
            if poster is None:
                raise ApiError(
                    f"Unknown user {body.posted_by_id!r}", code="validation_error", status_code=422
                )
        job = Job(
            title=body.title,
            description=body.description,
            location=body.location,
            posted_by=poster,
        )
        session.add(job)
        await session.flush()

    logger.info("Created job %s in tenant %s", job.id, context.slug)
    return {"success": True, "data": job.to_dict()}


@router.get("/{job_id}")
async def get_job(job_id: str, session: AsyncSession = Depends(get_scoped_session)) -> dict:
    job = await session.get(Job, job_id, options=[selectinload(Job.posted_by)])
    if job is None:
        raise EntityNotFoundError("Job", job_id)
    return {"success": True, "data": job.to_dict()}


@router.delete("/{job_id}")
async def delete_job(
    job_id: str,
    context: TenantContext = Depends(feature_context),
    services: TenancyServices = Depends(get_services),
) -> dict:
    async with services.guard.guarded_delete(context, ResourceKind.JOBS) as session:
        job = await session.get(Job, job_id)
        if job is None:
            raise EntityNotFoundError("Job", job_id)
        await session.delete(job)
    return {"success": True, "data": {"id": job_id, "deleted": True}}
