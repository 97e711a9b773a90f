"""
Tenant access policy.

Decides whether a tenant may use a capability (a named feature such as
``polls`` or ``job-posting``). The rules, in order:

    1. A tenant whose status is not ``active`` is denied everything.
    2. A capability missing from the tenant's features is denied.
    3. Otherwise the capability is allowed.

Example:
    policy = AccessPolicyEvaluator(registry)
    decision = await policy.evaluate(ctx.tenant_id, "job-posting")
    if not decision.allowed:
        print(decision.reason)   # "feature not enabled"
"""

from dataclasses import dataclass
import logging

from luxgen.multitenancy.context import TenantContext
from luxgen.multitenancy.errors import FeatureDisabledError, TenantInactiveError
from luxgen.multitenancy.registry import TenantRegistry
from luxgen.multitenancy.tenant import TenantRecord

logger = logging.getLogger(__name__)

REASON_ALLOWED = "allowed"
REASON_INACTIVE = "tenant inactive"
REASON_FEATURE = "feature not enabled"


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of a policy evaluation."""

    allowed: bool
    reason: str
    capability: str | None = None
    tenant_id: str | None = None


def decide(record: TenantRecord, capability: str | None) -> PolicyDecision:
    """Apply the policy rules to a tenant record. Pure."""
    if not record.is_active:
        return PolicyDecision(False, REASON_INACTIVE, capability, record.id)
    if capability is not None and not record.has_feature(capability):
        return PolicyDecision(False, REASON_FEATURE, capability, record.id)
    return PolicyDecision(True, REASON_ALLOWED, capability, record.id)


class AccessPolicyEvaluator:
    """Evaluates capability access against the tenant registry."""

    def __init__(self, registry: TenantRegistry):
        self._registry = registry

    async def evaluate(self, tenant_id: str, capability: str | None) -> PolicyDecision:
        """Decide whether ``tenant_id`` may use ``capability``.

        Raises:
            TenantNotFoundError: If the tenant does not exist.
        """
        record = await self._registry.get_by_id(tenant_id)
        return decide(record, capability)

    async def enforce(self, context: TenantContext, capability: str | None) -> TenantContext:
        """Raise on denial; otherwise return the context carrying the capability.

        Raises:
            TenantInactiveError: The tenant is not active.
            FeatureDisabledError: The capability is not enabled.
        """
        record = await self._registry.get_by_id(context.tenant_id)
        decision = decide(record, capability)

        if not decision.allowed:
            logger.info(
                f"Denied {capability or 'access'} for tenant {context.slug}: {decision.reason}"
            )
            if decision.reason == REASON_INACTIVE:
                raise TenantInactiveError(record.id, record.status.value)
            raise FeatureDisabledError(record.id, capability)

        if capability is None:
            return context
        return context.with_capability(capability)
