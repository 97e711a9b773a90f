"""SQLAlchemy models."""

from luxgen.models.tenant import Tenant, TenantScopedMixin, UsageCounter
from luxgen.models.entities import Activity, Job, Poll, User

__all__ = [
    "Activity",
    "Job",
    "Poll",
    "Tenant",
    "TenantScopedMixin",
    "UsageCounter",
    "User",
]
