"""
Tenant resolution and isolation for LuxGen.

Every inbound request is attributed to exactly one tenant, and everything
the request does (reads, writes, feature checks, resource limits) is
confined to that tenant.

Key Components:
    - TenantRecord: Immutable tenant value (slug, status, plan, features, limits)
    - TenantRegistry: Cached lookups and validated writes over a TenantStore
    - TenantResolver: Header / subdomain / path / default precedence
    - TenantContext: The per-request resolved tenant, passed explicitly
    - AccessPolicyEvaluator: Status and feature gate
    - IsolationEnforcer: Tenant-scoped SQLAlchemy sessions
    - LimitTracker: Atomic per-(tenant, kind) reservations
    - TenancyGuard: The ordered pipeline tying them together

Example:
    from luxgen.multitenancy import (
        InMemoryTenantStore, TenantRegistry, TenantResolver, TenantRecord,
    )

    registry = TenantRegistry(InMemoryTenantStore())
    await registry.upsert(TenantRecord.create("acme", "Acme Corp"))

    resolver = TenantResolver(registry, base_domains=["example.com"])
    ctx = await resolver.resolve(host="acme.example.com", headers={}, path="/")
"""

from luxgen.multitenancy.tenant import (
    PLAN_DEFAULTS,
    ResourceKind,
    TenantPlan,
    TenantRecord,
    TenantStatus,
    is_valid_slug,
)
from luxgen.multitenancy.errors import (
    FeatureDisabledError,
    IsolationViolationError,
    LimitExceededError,
    TenancyError,
    TenantInactiveError,
    TenantNotFoundError,
    TenantResolutionError,
    TenantValidationError,
)
from luxgen.multitenancy.context import (
    ResolvedFrom,
    TenantContext,
)
from luxgen.multitenancy.registry import (
    InMemoryTenantStore,
    SqlTenantStore,
    TenantRegistry,
    TenantStore,
)
from luxgen.multitenancy.resolver import TenantResolver
from luxgen.multitenancy.policy import (
    AccessPolicyEvaluator,
    PolicyDecision,
)
from luxgen.multitenancy.isolation import (
    IsolationEnforcer,
    TenantScopedSession,
)
from luxgen.multitenancy.limits import (
    InMemoryUsageStore,
    LimitCheck,
    LimitTracker,
    SqlUsageStore,
    UsageStore,
)
from luxgen.multitenancy.guard import TenancyGuard

__all__ = [
    # Tenant
    "PLAN_DEFAULTS",
    "ResourceKind",
    "TenantPlan",
    "TenantRecord",
    "TenantStatus",
    "is_valid_slug",
    # Errors
    "FeatureDisabledError",
    "IsolationViolationError",
    "LimitExceededError",
    "TenancyError",
    "TenantInactiveError",
    "TenantNotFoundError",
    "TenantResolutionError",
    "TenantValidationError",
    # Context
    "ResolvedFrom",
    "TenantContext",
    # Registry
    "InMemoryTenantStore",
    "SqlTenantStore",
    "TenantRegistry",
    "TenantStore",
    # Resolution and policy
    "TenantResolver",
    "AccessPolicyEvaluator",
    "PolicyDecision",
    # Isolation
    "IsolationEnforcer",
    "TenantScopedSession",
    # Limits
    "InMemoryUsageStore",
    "LimitCheck",
    "LimitTracker",
    "SqlUsageStore",
    "UsageStore",
    # Pipeline
    "TenancyGuard",
]
