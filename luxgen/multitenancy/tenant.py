"""
Tenant model and configuration for LuxGen.

This module defines the core tenant abstractions used throughout the system.
A tenant represents an organization using LuxGen, with its own:
- Routing identity (id, slug, optional custom domain)
- Lifecycle status
- Enabled features (capabilities)
- Resource limits
- Display-only branding

Tenant Plans:
    - FREE: Evaluation plan, small limits
    - BASIC: Small teams
    - PROFESSIONAL: Established organizations
    - ENTERPRISE: Large organizations, highest limits

Records are immutable. Configuration updates produce a new record through
``TenantRecord.evolve`` so a record handed to a request can never change
underneath it.

Example:
    from luxgen.multitenancy.tenant import TenantRecord, TenantPlan, ResourceKind

    acme = TenantRecord.create(
        "acme",
        "Acme Corporation",
        plan=TenantPlan.PROFESSIONAL,
        features={"job-posting", "polls"},
        limits={ResourceKind.JOBS: 5},
    )
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping
import re
import uuid


SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


class TenantStatus(str, Enum):
    """Lifecycle status of a tenant.

    Only ACTIVE tenants may serve tenant-scoped requests. Tenants are never
    hard-deleted; removal moves them to INACTIVE so historical records that
    carry the tenant id keep a valid reference.
    """

    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"
    INACTIVE = "inactive"


class TenantPlan(str, Enum):
    """Subscription plans. Each plan supplies default resource limits."""

    FREE = "free"
    BASIC = "basic"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class ResourceKind(str, Enum):
    """Countable tenant-owned resources subject to limits."""

    USERS = "users"
    POLLS = "polls"
    ACTIVITIES = "activities"
    JOBS = "jobs"
    GROUPS = "groups"
    PRESENTATIONS = "presentations"


# Default resource limits per plan. A kind missing from a plan is unlimited.
PLAN_DEFAULTS: dict[TenantPlan, dict[ResourceKind, int]] = {
    TenantPlan.FREE: {
        ResourceKind.USERS: 10,
        ResourceKind.POLLS: 10,
        ResourceKind.ACTIVITIES: 500,
        ResourceKind.JOBS: 3,
        ResourceKind.GROUPS: 5,
        ResourceKind.PRESENTATIONS: 5,
    },
    TenantPlan.BASIC: {
        ResourceKind.USERS: 50,
        ResourceKind.POLLS: 100,
        ResourceKind.ACTIVITIES: 5000,
        ResourceKind.JOBS: 25,
        ResourceKind.GROUPS: 25,
        ResourceKind.PRESENTATIONS: 50,
    },
    TenantPlan.PROFESSIONAL: {
        ResourceKind.USERS: 250,
        ResourceKind.POLLS: 1000,
        ResourceKind.ACTIVITIES: 50000,
        ResourceKind.JOBS: 100,
        ResourceKind.GROUPS: 100,
        ResourceKind.PRESENTATIONS: 500,
    },
    TenantPlan.ENTERPRISE: {
        ResourceKind.USERS: 5000,
        ResourceKind.POLLS: 10000,
        ResourceKind.JOBS: 1000,
        ResourceKind.GROUPS: 1000,
        ResourceKind.PRESENTATIONS: 5000,
    },
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_tenant_id() -> str:
    """Generate an opaque tenant identifier."""
    return uuid.uuid4().hex


def is_valid_slug(slug: str) -> bool:
    """Check a slug is lower-case, URL-safe and DNS-label sized."""
    return bool(slug) and SLUG_PATTERN.match(slug) is not None


def normalize_limits(limits: Mapping[Any, int] | None) -> dict[ResourceKind, int]:
    """Coerce limit keys to ResourceKind.

    Accepts enum members or their string values ("users", "jobs", ...).

    Raises:
        ValueError: If a key is not a known resource kind.
    """
    if not limits:
        return {}
    return {ResourceKind(key): int(value) for key, value in limits.items()}


@dataclass(frozen=True)
class TenantRecord:
    """Identity and configuration for one tenant.

    Attributes:
        id: Opaque stable identifier. Never changes.
        slug: Human-readable routing key. Unique, never changes.
        display_name: Name shown to users.
        status: Lifecycle status.
        plan: Subscription plan; supplies default limits.
        features: Capability names enabled for this tenant.
        limits: Explicit per-resource maximum counts. Kinds not present here
                fall back to the plan defaults; kinds absent from both are
                unlimited.
        domain: Optional custom domain mapped to this tenant.
        branding: Display-only metadata (colors, logo). No behavioral effect.
        created_at: When the tenant was created (UTC).
        updated_at: When the configuration last changed (UTC).
    """

    id: str
    slug: str
    display_name: str
    status: TenantStatus = TenantStatus.ACTIVE
    plan: TenantPlan = TenantPlan.FREE
    features: frozenset[str] = field(default_factory=frozenset)
    limits: Mapping[ResourceKind, int] = field(default_factory=dict)
    domain: str | None = None
    branding: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        # Normalize collection types so equality and hashing of inputs from
        # JSON / ORM rows behave the same as hand-built records.
        object.__setattr__(self, "status", TenantStatus(self.status))
        object.__setattr__(self, "plan", TenantPlan(self.plan))
        object.__setattr__(self, "features", frozenset(self.features))
        object.__setattr__(self, "limits", normalize_limits(self.limits))
        object.__setattr__(self, "branding", dict(self.branding))
        if self.domain:
            object.__setattr__(self, "domain", self.domain.strip().lower())

    @classmethod
    def create(
        cls,
        slug: str,
        display_name: str,
        plan: TenantPlan = TenantPlan.FREE,
        features: Iterable[str] = (),
        limits: Mapping[Any, int] | None = None,
        tenant_id: str | None = None,
        **kwargs: Any,
    ) -> "TenantRecord":
        """Factory method to create a new tenant record.

        Args:
            slug: Routing key for the tenant.
            display_name: Human-readable organization name.
            plan: Subscription plan.
            features: Enabled capability names.
            limits: Explicit limit overrides.
            tenant_id: Identifier to use; generated when omitted.
            **kwargs: Additional fields (status, domain, branding).

        Returns:
            A new TenantRecord.
        """
        return cls(
            id=tenant_id or new_tenant_id(),
            slug=slug,
            display_name=display_name,
            plan=plan,
            features=frozenset(features),
            limits=normalize_limits(limits),
            **kwargs,
        )

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE

    def has_feature(self, feature: str) -> bool:
        """Check if a capability is enabled for this tenant."""
        return feature in self.features

    def limit_for(self, kind: ResourceKind) -> int | None:
        """Get the effective limit for a resource kind.

        Explicit limits win over plan defaults.

        Returns:
            The maximum count, or None when the kind is unlimited.
        """
        kind = ResourceKind(kind)
        if kind in self.limits:
            return self.limits[kind]
        return PLAN_DEFAULTS.get(self.plan, {}).get(kind)

    def effective_limits(self) -> dict[ResourceKind, int | None]:
        """Get the effective limit for every resource kind."""
        return {kind: self.limit_for(kind) for kind in ResourceKind}

    def evolve(self, **changes: Any) -> "TenantRecord":
        """Return a copy with the given fields changed.

        ``updated_at`` is refreshed unless given explicitly.
        """
        changes.setdefault("updated_at", _utcnow())
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert the record to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "slug": self.slug,
            "display_name": self.display_name,
            "status": self.status.value,
            "plan": self.plan.value,
            "features": sorted(self.features),
            "limits": {kind.value: value for kind, value in self.limits.items()},
            "effective_limits": {
                kind.value: value for kind, value in self.effective_limits().items()
            },
            "domain": self.domain,
            "branding": dict(self.branding),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def public_profile(self) -> dict[str, Any]:
        """The subset of the record safe to show to the tenant's own users."""
        return {
            "slug": self.slug,
            "display_name": self.display_name,
            "features": sorted(self.features),
            "branding": dict(self.branding),
        }

    def __repr__(self) -> str:
        return f"<TenantRecord {self.slug} id={self.id} plan={self.plan.value} {self.status.value}>"
