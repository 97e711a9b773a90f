"""
Per-tenant resource limits.

Tenants carry a maximum count per resource kind (users, polls, jobs, ...).
Before a create, the guarded handler reserves one unit; the reservation
either succeeds atomically or reports the current count and the maximum.

Check-and-reserve is serialized per ``(tenant_id, resource_kind)``: two
concurrent creates for the same tenant and kind can never both pass the
last free slot, while different tenants and different kinds never wait on
each other.

Usage Stores:
    - InMemoryUsageStore: asyncio.Lock per (tenant, kind). Tests and
      single-process deployments.
    - SqlUsageStore: conditional UPDATE on ``usage_counters`` inside the
      caller's transaction, so the reservation commits or rolls back with
      the insert it guards.

Example:
    tracker = LimitTracker(registry, InMemoryUsageStore())

    async with tracker.reservation(ctx, ResourceKind.JOBS):
        ...  # create the job; the reservation is released on failure
"""

from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol
import asyncio
import logging

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from luxgen.models.tenant import UsageCounter
from luxgen.multitenancy.context import TenantContext
from luxgen.multitenancy.errors import LimitExceededError
from luxgen.multitenancy.registry import TenantRegistry
from luxgen.multitenancy.tenant import ResourceKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LimitCheck:
    """Outcome of a check-and-reserve.

    Attributes:
        allowed: Whether a unit was reserved.
        current: Count after the reservation when allowed, otherwise the
                 unchanged count.
        max: The effective limit, or None when unlimited.
        resource: The resource kind checked.
    """

    allowed: bool
    current: int
    max: int | None
    resource: ResourceKind | None = None

    @property
    def remaining(self) -> int | None:
        if self.max is None:
            return None
        return max(0, self.max - self.current)

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "resource": self.resource.value if self.resource else None,
            "current": self.current,
            "max": self.max,
        }


@dataclass
class LimitWarning:
    """Generated when a reservation pushes usage past the warning threshold."""

    tenant_id: str
    resource: str
    current: int
    limit: int
    threshold_percent: int
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def usage_percent(self) -> float:
        if self.limit == 0:
            return 100.0
        return (self.current / self.limit) * 100


class UsageStore(Protocol):
    """Storage for usage counters.

    ``transactional`` stores take part in the caller's session transaction;
    rolling that transaction back undoes their increments.
    """

    transactional: bool

    async def try_increment(
        self,
        tenant_id: str,
        kind: ResourceKind,
        max_count: int | None,
        session: AsyncSession | None = None,
    ) -> tuple[bool, int]: ...

    async def decrement(
        self, tenant_id: str, kind: ResourceKind, session: AsyncSession | None = None
    ) -> int: ...

    async def current(
        self, tenant_id: str, kind: ResourceKind, session: AsyncSession | None = None
    ) -> int: ...

    async def set(
        self,
        tenant_id: str,
        kind: ResourceKind,
        value: int,
        session: AsyncSession | None = None,
    ) -> None: ...


class InMemoryUsageStore:
    """Counters held in process memory, one lock per (tenant, kind)."""

    transactional = False

    def __init__(self):
        self._counts: dict[tuple[str, ResourceKind], int] = {}
        self._locks: dict[tuple[str, ResourceKind], asyncio.Lock] = {}

    def _get_lock(self, key: tuple[str, ResourceKind]) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def try_increment(self, tenant_id, kind, max_count, session=None):
        key = (tenant_id, kind)
        async with self._get_lock(key):
            current = self._counts.get(key, 0)
            if max_count is not None and current >= max_count:
                return False, current
            self._counts[key] = current + 1
            return True, current + 1

    async def decrement(self, tenant_id, kind, session=None):
        key = (tenant_id, kind)
        async with self._get_lock(key):
            self._counts[key] = max(0, self._counts.get(key, 0) - 1)
            return self._counts[key]

    async def current(self, tenant_id, kind, session=None):
        return self._counts.get((tenant_id, kind), 0)

    async def set(self, tenant_id, kind, value, session=None):
        key = (tenant_id, kind)
        async with self._get_lock(key):
            self._counts[key] = max(0, value)

    def __repr__(self) -> str:
        return f"<InMemoryUsageStore counters={len(self._counts)}>"


class SqlUsageStore:
    """Counters in the ``usage_counters`` table.

    The increment is a single conditional UPDATE, so the row lock taken by
    the database serializes concurrent reservations for the same
    (tenant, kind) and nothing else. When a session is passed the
    statements run in its transaction; otherwise a short transaction of
    their own is used.
    """

    transactional = True

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._factory = session_factory
        self._table = UsageCounter.__table__

    @asynccontextmanager
    async def _use(self, session: AsyncSession | None) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._factory() as own:
            async with own.begin():
                yield own

    async def _ensure_row(self, session: AsyncSession, tenant_id: str, kind: ResourceKind) -> None:
        values = {"tenant_id": tenant_id, "resource_kind": kind.value, "current_count": 0}
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(self._table).values(**values).on_conflict_do_nothing(
                index_elements=["tenant_id", "resource_kind"]
            )
        elif dialect == "sqlite":
            stmt = sqlite.insert(self._table).values(**values).on_conflict_do_nothing(
                index_elements=["tenant_id", "resource_kind"]
            )
        else:
            if await self._read(session, tenant_id, kind) is not None:
                return
            stmt = self._table.insert().values(**values)
        await session.execute(stmt)

    async def _read(self, session: AsyncSession, tenant_id: str, kind: ResourceKind) -> int | None:
        result = await session.execute(
            select(self._table.c.current_count).where(
                self._table.c.tenant_id == tenant_id,
                self._table.c.resource_kind == kind.value,
            )
        )
        return result.scalar_one_or_none()

    def _update(self, tenant_id: str, kind: ResourceKind):
        return (
            update(self._table)
            .where(
                self._table.c.tenant_id == tenant_id,
                self._table.c.resource_kind == kind.value,
            )
        )

    async def try_increment(self, tenant_id, kind, max_count, session=None):
        async with self._use(session) as s:
            await self._ensure_row(s, tenant_id, kind)
            stmt = self._update(tenant_id, kind)
            if max_count is not None:
                stmt = stmt.where(self._table.c.current_count < max_count)
            result = await s.execute(
                stmt.values(
                    current_count=self._table.c.current_count + 1,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            current = await self._read(s, tenant_id, kind) or 0
            return result.rowcount == 1, current

    async def decrement(self, tenant_id, kind, session=None):
        async with self._use(session) as s:
            await s.execute(
                self._update(tenant_id, kind)
                .where(self._table.c.current_count > 0)
                .values(
                    current_count=self._table.c.current_count - 1,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            return await self._read(s, tenant_id, kind) or 0

    async def current(self, tenant_id, kind, session=None):
        async with self._use(session) as s:
            return await self._read(s, tenant_id, kind) or 0

    async def set(self, tenant_id, kind, value, session=None):
        async with self._use(session) as s:
            await self._ensure_row(s, tenant_id, kind)
            await s.execute(
                self._update(tenant_id, kind).values(
                    current_count=max(0, value),
                    updated_at=datetime.now(timezone.utc),
                )
            )

    def __repr__(self) -> str:
        return "<SqlUsageStore table=usage_counters>"


class LimitTracker:
    """Checks and reserves resource usage against tenant limits.

    Limits come from the registry (explicit limits first, then plan
    defaults). A kind with no limit is unlimited but still counted.

    Attributes:
        WARNING_THRESHOLD: Percent of a limit at which a warning is logged.
        MAX_WARNINGS: Most recent warnings kept; older ones are dropped.

    Example:
        tracker = LimitTracker(registry, SqlUsageStore(factory))

        check = await tracker.check_and_reserve(tenant_id, ResourceKind.USERS)
        if not check.allowed:
            print(f"User limit reached ({check.current}/{check.max})")
    """

    WARNING_THRESHOLD = 80
    MAX_WARNINGS = 500

    def __init__(
        self,
        registry: TenantRegistry,
        store: UsageStore | None = None,
        max_warnings: int = MAX_WARNINGS,
    ):
        self._registry = registry
        self._store: UsageStore = store if store is not None else InMemoryUsageStore()
        self._warnings: deque[LimitWarning] = deque(maxlen=max_warnings)

    @property
    def store(self) -> UsageStore:
        return self._store

    async def limit_for(self, tenant_id: str, kind: ResourceKind | str) -> int | None:
        record = await self._registry.get_by_id(tenant_id)
        return record.limit_for(ResourceKind(kind))

    async def check_and_reserve(
        self,
        tenant_id: str,
        kind: ResourceKind | str,
        session: AsyncSession | None = None,
    ) -> LimitCheck:
        """Atomically reserve one unit of a resource if under the limit.

        Args:
            tenant_id: The tenant creating the resource.
            kind: The resource kind.
            session: Transaction to reserve in (SQL store only).

        Returns:
            LimitCheck. When denied, nothing changed.
        """
        kind = ResourceKind(kind)
        max_count = await self.limit_for(tenant_id, kind)
        allowed, current = await self._store.try_increment(tenant_id, kind, max_count, session)

        if allowed:
            logger.debug(f"Reserved {kind.value} for {tenant_id} ({current}/{max_count})")
            self._check_warning_threshold(tenant_id, kind, current, max_count)
        else:
            logger.info(f"Limit reached for {tenant_id}: {kind.value} at {current}/{max_count}")

        return LimitCheck(allowed=allowed, current=current, max=max_count, resource=kind)

    async def reserve_or_raise(
        self,
        tenant_id: str,
        kind: ResourceKind | str,
        session: AsyncSession | None = None,
    ) -> LimitCheck:
        """Reserve or raise LimitExceededError.

        Raises:
            LimitExceededError: If the tenant is at its limit.
        """
        check = await self.check_and_reserve(tenant_id, kind, session)
        if not check.allowed:
            raise LimitExceededError(
                tenant_id=tenant_id,
                resource=check.resource.value,
                current=check.current,
                max=check.max,
            )
        return check

    @asynccontextmanager
    async def reservation(
        self,
        context: TenantContext,
        kind: ResourceKind | str,
        session: AsyncSession | None = None,
    ) -> AsyncIterator[LimitCheck]:
        """Reserve for the duration of a create.

        If the body raises (cancellation included) the unit is given back.
        With a transactional store and a session, giving it back is left to
        the rollback of that session's transaction.
        """
        check = await self.reserve_or_raise(context.tenant_id, kind, session)
        try:
            yield check
        except BaseException:
            if session is None or not self._store.transactional:
                logger.debug(f"Releasing {check.resource.value} for {context.tenant_id} after failure")
                await asyncio.shield(self.release(context.tenant_id, check.resource))
            raise

    async def release(
        self,
        tenant_id: str,
        kind: ResourceKind | str,
        session: AsyncSession | None = None,
    ) -> int:
        """Give back one unit, for deletes and failed creates. Floors at 0."""
        kind = ResourceKind(kind)
        current = await self._store.decrement(tenant_id, kind, session)
        logger.debug(f"Released {kind.value} for {tenant_id} (now {current})")
        return current

    async def usage(self, tenant_id: str, kind: ResourceKind | str) -> int:
        return await self._store.current(tenant_id, ResourceKind(kind))

    async def reconcile(
        self,
        tenant_id: str,
        kind: ResourceKind | str,
        actual: int,
        session: AsyncSession | None = None,
    ) -> None:
        """Resync a counter from a real row count."""
        kind = ResourceKind(kind)
        await self._store.set(tenant_id, kind, actual, session)
        logger.info(f"Reconciled {kind.value} for {tenant_id} to {actual}")

    async def usage_report(self, tenant_id: str) -> dict[str, Any]:
        """Get current usage, limit and percent used for every resource kind.

        Args:
            tenant_id: The tenant ID.

        Returns:
            Dictionary with usage report. ``limit`` and ``percent`` are None
            for unlimited kinds.
        """
        record = await self._registry.get_by_id(tenant_id)

        def calc_percent(current: int, limit: int | None) -> float | None:
            if limit is None:
                return None
            if limit == 0:
                return 100.0 if current else 0.0
            return min(100.0, (current / limit) * 100)

        resources = {}
        for kind in ResourceKind:
            current = await self._store.current(tenant_id, kind)
            limit = record.limit_for(kind)
            resources[kind.value] = {
                "current": current,
                "limit": limit,
                "percent": calc_percent(current, limit),
            }

        return {
            "tenant_id": tenant_id,
            "plan": record.plan.value,
            "resources": resources,
        }

    def _check_warning_threshold(
        self,
        tenant_id: str,
        kind: ResourceKind,
        current: int,
        limit: int | None,
    ) -> None:
        if not limit:
            return

        percent = (current / limit) * 100
        if percent >= self.WARNING_THRESHOLD:
            self._warnings.append(
                LimitWarning(
                    tenant_id=tenant_id,
                    resource=kind.value,
                    current=current,
                    limit=limit,
                    threshold_percent=self.WARNING_THRESHOLD,
                )
            )
            logger.warning(f"Limit warning for {tenant_id}: {kind.value} at {percent:.1f}%")

    def get_warnings(self, tenant_id: str | None = None) -> list[LimitWarning]:
        if tenant_id:
            return [w for w in self._warnings if w.tenant_id == tenant_id]
        return list(self._warnings)

    def clear_warnings(self, tenant_id: str | None = None) -> int:
        """Clear limit warnings, returning how many were removed."""
        if tenant_id:
            original = len(self._warnings)
            self._warnings = deque(
                (w for w in self._warnings if w.tenant_id != tenant_id),
                maxlen=self._warnings.maxlen,
            )
            return original - len(self._warnings)
        count = len(self._warnings)
        self._warnings.clear()
        return count

    def __repr__(self) -> str:
        return f"<LimitTracker store={self._store!r} warnings={len(self._warnings)}>"
