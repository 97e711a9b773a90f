"""
Per-request tenant context for LuxGen.

A ``TenantContext`` is produced by the resolver once per request and then
handed explicitly to everything that needs it: policy checks, scoped
database sessions, limit reservations and route handlers. It is an
immutable value. There is no ambient "current tenant" global and nothing
is attached to the transport's request object.

Handlers must take ``tenant_id`` from the context, never from the request
body or query string.

Example:
    ctx = await resolver.resolve(host="acme.example.com", headers={}, path="/api/jobs")
    ctx.tenant_id      # "3f0c..."
    ctx.resolved_from  # ResolvedFrom.SUBDOMAIN

    async with enforcer.scoped_session(ctx) as session:
        jobs = (await session.scalars(select(Job))).all()
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ResolvedFrom(str, Enum):
    """Which part of the request identified the tenant.

    Retained on the context for audit and debugging.
    """

    HEADER = "header"
    SUBDOMAIN = "subdomain"
    PATH_PARAM = "path_param"
    DEFAULT = "default"


@dataclass(frozen=True)
class TenantContext:
    """Resolved tenant for one request.

    Attributes:
        tenant_id: The resolved TenantRecord.id.
        slug: The resolved TenantRecord.slug.
        resolved_from: How the tenant was identified.
        requested_capability: Set once a route's feature gate has passed.
        request_id: Correlation id for logs.
        resolved_at: When resolution happened (UTC).
    """

    tenant_id: str
    slug: str
    resolved_from: ResolvedFrom
    requested_capability: str | None = None
    request_id: str | None = None
    resolved_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("TenantContext requires a tenant_id")

    def with_capability(self, capability: str) -> "TenantContext":
        """Return a copy carrying the capability the route requires."""
        return replace(self, requested_capability=capability)

    def tenant_filter(self) -> dict[str, str]:
        """Equality criteria for tenant-owned rows."""
        return {"tenant_id": self.tenant_id}

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "slug": self.slug,
            "resolved_from": self.resolved_from.value,
            "requested_capability": self.requested_capability,
            "request_id": self.request_id,
            "resolved_at": self.resolved_at.isoformat(),
        }
