"""FastAPI dependencies for the tenancy pipeline.

Route order is resolve -> feature gate -> scoped session. Feature gates are
declared as router-level dependencies so they run before any session is
opened.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import AsyncIterator

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from luxgen.api.errors import AdminAuthError
from luxgen.api.middleware import ORIGINAL_PATH_KEY
from luxgen.multitenancy.context import TenantContext
from luxgen.services import TenancyServices


def get_services(request: Request) -> TenancyServices:
    return request.app.state.services


async def get_tenant_context(
    request: Request,
    response: Response,
    services: TenancyServices = Depends(get_services),
) -> TenantContext:
    """Resolve the request's tenant. Raises TenantResolutionError."""
    context = await services.resolver.resolve(
        host=request.headers.get("host"),
        headers=request.headers,
        path=request.scope.get(ORIGINAL_PATH_KEY, request.url.path),
        request_id=getattr(request.state, "request_id", None),
    )
    response.headers["X-Tenant-Slug"] = context.slug
    return context


def require_feature(capability: str):
    """Dependency factory gating a route on a tenant capability.

    Example:
        router = APIRouter(dependencies=[Depends(require_feature("polls"))])
    """

    async def dependency(
        context: TenantContext = Depends(get_tenant_context),
        services: TenancyServices = Depends(get_services),
    ) -> TenantContext:
        return await services.policy.enforce(context, capability)

    dependency.__name__ = f"require_feature_{capability.replace('-', '_')}"
    return dependency


async def get_scoped_session(
    context: TenantContext = Depends(get_tenant_context),
    services: TenancyServices = Depends(get_services),
) -> AsyncIterator[AsyncSession]:
    async with services.enforcer.scoped_session(context) as session:
        yield session


async def require_admin(
    request: Request,
    services: TenancyServices = Depends(get_services),
) -> None:
    """Bearer-token check against ADMIN_API_KEY.

    Admin routes are disabled while no key is configured.
    """
    admin_key = services.settings.ADMIN_API_KEY
    if not admin_key:
        raise AdminAuthError("Admin API is disabled", code="admin_disabled", status_code=403)

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise AdminAuthError("Missing or malformed Authorization header")

    token = auth_header[7:]
    if not token:
        raise AdminAuthError("Empty bearer token")

    token_hash = hashlib.sha256(token.encode()).hexdigest()
    key_hash = hashlib.sha256(admin_key.encode()).hexdigest()
    if not hmac.compare_digest(token_hash, key_hash):
        raise AdminAuthError("Invalid token")
