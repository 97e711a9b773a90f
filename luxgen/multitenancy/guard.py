"""
Request guard: the ordered tenancy pipeline.

Every tenant-scoped request passes the same stages, strictly in order:

    resolve -> policy -> scoped session -> limit reservation -> execute

``TenancyGuard`` bundles the four components so the HTTP layer, the CLI and
tests drive the pipeline the same way.

Example:
    guard = TenancyGuard(resolver, policy, limits, enforcer)

    ctx = await guard.admit(host=host, headers=headers, path=path,
                            capability="job-posting")
    async with guard.guarded_create(ctx, ResourceKind.JOBS) as session:
        session.add(Job(title="Engineer"))

    async with guard.guarded_delete(ctx, ResourceKind.JOBS) as session:
        await session.delete(await session.get(Job, job_id))
"""

from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from luxgen.multitenancy.context import TenantContext
from luxgen.multitenancy.isolation import IsolationEnforcer
from luxgen.multitenancy.limits import LimitTracker
from luxgen.multitenancy.policy import AccessPolicyEvaluator
from luxgen.multitenancy.resolver import TenantResolver
from luxgen.multitenancy.tenant import ResourceKind

logger = logging.getLogger(__name__)


class TenancyGuard:
    """Runs the resolve / authorize / isolate / limit stages for a request."""

    def __init__(
        self,
        resolver: TenantResolver,
        policy: AccessPolicyEvaluator,
        limits: LimitTracker,
        enforcer: IsolationEnforcer,
    ):
        self.resolver = resolver
        self.policy = policy
        self.limits = limits
        self.enforcer = enforcer

    async def admit(
        self,
        *,
        host: str | None,
        headers: Mapping[str, str],
        path: str = "/",
        capability: str | None = None,
        request_id: str | None = None,
    ) -> TenantContext:
        """Resolve the tenant and check the capability in one step."""
        context = await self.resolver.resolve(
            host=host, headers=headers, path=path, request_id=request_id
        )
        return await self.policy.enforce(context, capability)

    async def authorize(self, context: TenantContext, capability: str | None) -> TenantContext:
        return await self.policy.enforce(context, capability)

    def session(self, context: TenantContext):
        """Tenant-scoped session for reads, updates and deletes."""
        return self.enforcer.scoped_session(context)

    @asynccontextmanager
    async def guarded_create(
        self, context: TenantContext, kind: ResourceKind | str
    ) -> AsyncIterator[AsyncSession]:
        """Scoped session with a reserved unit of ``kind``.

        The body adds the new rows; they are committed on exit together with
        the reservation. If the body or the commit fails, the reservation is
        undone.

        Raises:
            LimitExceededError: If the tenant is at its limit for ``kind``.
        """
        async with self.enforcer.scoped_session(context) as session:
            async with self.limits.reservation(context, kind, session=session):
                yield session
                await session.commit()

    @asynccontextmanager
    async def guarded_delete(
        self, context: TenantContext, kind: ResourceKind | str
    ) -> AsyncIterator[AsyncSession]:
        """Scoped session that gives back a unit of ``kind`` on success.

        The body deletes the row. With a transactional usage store the
        counter is decremented in the same transaction as the delete.
        Otherwise it is decremented only once the commit has succeeded, so
        a failed commit leaves both the row and the count unchanged.
        """
        async with self.enforcer.scoped_session(context) as session:
            yield session
            if self.limits.store.transactional:
                await self.limits.release(context.tenant_id, kind, session=session)
                await session.commit()
            else:
                await session.commit()
                await asyncio.shield(self.limits.release(context.tenant_id, kind))

    def __repr__(self) -> str:
        return f"<TenancyGuard resolver={self.resolver!r} enforcer={self.enforcer!r}>"
