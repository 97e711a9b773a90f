"""Construction of the tenancy components from settings.

There is no module-level registry or engine. ``build_services`` wires one
set of components and the caller owns it: the app factory keeps it on
``app.state``; the CLI builds one per command; tests build their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from luxgen.config.settings import Settings
from luxgen.db import build_engine
from luxgen.multitenancy.guard import TenancyGuard
from luxgen.multitenancy.isolation import IsolationEnforcer
from luxgen.multitenancy.limits import LimitTracker, SqlUsageStore, UsageStore
from luxgen.multitenancy.policy import AccessPolicyEvaluator
from luxgen.multitenancy.registry import SqlTenantStore, TenantRegistry
from luxgen.multitenancy.resolver import TenantResolver

logger = logging.getLogger(__name__)


@dataclass
class TenancyServices:
    settings: Settings
    engine: AsyncEngine
    registry: TenantRegistry
    resolver: TenantResolver
    policy: AccessPolicyEvaluator
    enforcer: IsolationEnforcer
    limits: LimitTracker
    guard: TenancyGuard

    async def dispose(self) -> None:
        await self.engine.dispose()


def build_resolver(settings: Settings, registry: TenantRegistry) -> TenantResolver:
    return TenantResolver(
        registry,
        header_name=settings.TENANT_HEADER,
        base_domains=settings.BASE_DOMAINS,
        reserved_subdomains=settings.RESERVED_SUBDOMAINS,
        path_prefix=settings.TENANT_PATH_PREFIX,
        default_slug=settings.DEFAULT_TENANT_SLUG,
    )


def build_services(
    settings: Settings,
    *,
    engine: AsyncEngine | None = None,
    registry: TenantRegistry | None = None,
    usage_store: UsageStore | None = None,
) -> TenancyServices:
    """Wire the tenancy components.

    Args:
        settings: Application settings.
        engine: Database engine; built from ``DATABASE_URL`` when omitted.
        registry: Tenant registry; a SQL-backed one when omitted.
        usage_store: Usage counters; the ``usage_counters`` table when omitted.
    """
    if engine is None:
        engine = build_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
    enforcer = IsolationEnforcer.from_engine(engine)

    if registry is None:
        registry = TenantRegistry(
            SqlTenantStore(enforcer.session_factory),
            ttl_seconds=settings.TENANT_CACHE_TTL_SECONDS,
        )
    if usage_store is None:
        usage_store = SqlUsageStore(enforcer.session_factory)

    resolver = build_resolver(settings, registry)
    policy = AccessPolicyEvaluator(registry)
    limits = LimitTracker(registry, usage_store)
    guard = TenancyGuard(resolver, policy, limits, enforcer)

    logger.debug(f"Built tenancy services: {resolver!r} {enforcer!r}")
    return TenancyServices(
        settings=settings,
        engine=engine,
        registry=registry,
        resolver=resolver,
        policy=policy,
        enforcer=enforcer,
        limits=limits,
        guard=guard,
    )
