"""
Row-level tenant isolation for SQLAlchemy sessions.

All tenants share tables; every tenant-owned model carries ``tenant_id``
through ``TenantScopedMixin``. Isolation is enforced inside the session
rather than left to each query author:

    - Every SELECT / UPDATE / DELETE that touches a tenant-owned table gets
      ``with_loader_criteria(TenantScopedMixin, tenant_id == <scope>)``.
      The criteria also apply to joined and aliased entities and to
      relationship loads, so a join or an eager load cannot reach another
      tenant's rows.
    - A session without a tenant scope that touches tenant-owned data
      raises ``IsolationViolationError``. Only sessions opened through
      ``IsolationEnforcer.unscoped_session(reason)`` may bypass, and the
      bypass is logged.
    - Inside a scope, Core statements against tenant-owned tables and
      bulk ORM INSERTs are rejected, since neither can carry the criteria.
    - Before each flush, new tenant-owned objects without ``tenant_id``
      receive the scope's tenant id. Objects owned by a different tenant
      (new, dirty or deleted) raise ``IsolationViolationError``.

Example:
    enforcer = IsolationEnforcer.from_engine(engine)

    async with enforcer.scoped_session(ctx) as session:
        polls = (await session.scalars(select(Poll))).all()
        # only ctx.tenant_id's polls, whatever the query says
"""

from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria
from sqlalchemy.sql.util import find_tables

from luxgen.db import Base, build_sessionmaker
from luxgen.models.tenant import TenantScopedMixin
from luxgen.multitenancy.context import TenantContext
from luxgen.multitenancy.errors import IsolationViolationError

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("luxgen.security")

SCOPE_KEY = "luxgen.tenant_id"
CONTEXT_KEY = "luxgen.tenant_context"
UNSCOPED_KEY = "luxgen.unscoped_reason"


def tenant_table_names() -> frozenset[str]:
    """Names of every mapped table owned by a tenant."""
    return frozenset(
        mapper.local_table.name
        for mapper in Base.registry.mappers
        if issubclass(mapper.class_, TenantScopedMixin)
    )


def _violation(message: str) -> IsolationViolationError:
    security_logger.critical(f"Isolation violation: {message}")
    return IsolationViolationError(message)


def _has_tenant_entity(state: ORMExecuteState) -> bool:
    return any(issubclass(mapper.class_, TenantScopedMixin) for mapper in state.all_mappers)


def _touches_tenant_data(state: ORMExecuteState) -> bool:
    if _has_tenant_entity(state):
        return True

    owned = tenant_table_names()
    for table in find_tables(
        state.statement,
        check_columns=True,
        include_aliases=True,
        include_joins=True,
        include_crud=True,
    ):
        base = getattr(table, "element", table)
        if getattr(table, "name", None) in owned or getattr(base, "name", None) in owned:
            return True
    return False


class TenantScopedSession(Session):
    """Sync session class whose events enforce tenant isolation.

    Use as ``sync_session_class`` of an ``async_sessionmaker``. The tenant
    scope lives in ``session.info``; see ``IsolationEnforcer``.
    """

    @property
    def tenant_id(self) -> str | None:
        return self.info.get(SCOPE_KEY)

    @property
    def unscoped_reason(self) -> str | None:
        return self.info.get(UNSCOPED_KEY)


@event.listens_for(TenantScopedSession, "do_orm_execute")
def _apply_tenant_criteria(state: ORMExecuteState) -> None:
    if not (state.is_select or state.is_update or state.is_delete or state.is_insert):
        return
    if not _touches_tenant_data(state):
        return

    session = state.session
    if session.info.get(UNSCOPED_KEY):
        return

    tenant_id = session.info.get(SCOPE_KEY)
    if tenant_id is None:
        raise _violation("tenant-owned data accessed from a session without tenant scope")
    if state.is_insert:
        raise _violation(
            f"bulk INSERT into tenant-owned table in scope {tenant_id}; use session.add()"
        )
    # Loader criteria only attach to ORM entities; a Core statement on a
    # tenant-owned table would run unfiltered.
    if not _has_tenant_entity(state):
        raise _violation(
            f"Core statement on tenant-owned table in scope {tenant_id}; query the ORM entity"
        )

    state.statement = state.statement.options(
        with_loader_criteria(
            TenantScopedMixin,
            lambda cls: cls.tenant_id == tenant_id,
            include_aliases=True,
        )
    )


@event.listens_for(TenantScopedSession, "before_flush")
def _check_flush(session: Session, flush_context: Any, instances: Any) -> None:
    if session.info.get(UNSCOPED_KEY):
        return

    tenant_id = session.info.get(SCOPE_KEY)

    for obj in session.new:
        if not isinstance(obj, TenantScopedMixin):
            continue
        if tenant_id is None:
            raise _violation(
                f"new {type(obj).__name__} flushed from a session without tenant scope"
            )
        if obj.tenant_id is None:
            obj.tenant_id = tenant_id
        elif obj.tenant_id != tenant_id:
            raise _violation(
                f"new {type(obj).__name__} owned by {obj.tenant_id} flushed in scope {tenant_id}"
            )

    for obj in list(session.dirty) + list(session.deleted):
        if not isinstance(obj, TenantScopedMixin):
            continue
        if tenant_id is None or obj.tenant_id != tenant_id:
            raise _violation(
                f"{type(obj).__name__} owned by {obj.tenant_id} modified in scope {tenant_id}"
            )


@dataclass
class IsolationAuditEntry:
    """Audit entry for an isolation bypass.

    Attributes:
        operation: What was done (``unscoped_session``).
        reason: Caller-supplied justification.
        tenant_id: Tenant involved, if any.
        performed_at: When the bypass was opened.
    """

    operation: str
    reason: str
    tenant_id: str | None = None
    performed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class IsolationEnforcer:
    """Hands out tenant-scoped and explicitly unscoped sessions.

    The session factory must use ``TenantScopedSession`` as its sync
    session class; otherwise nothing would enforce the scope and the
    enforcer refuses to start.

    Attributes:
        session_factory: The wrapped ``async_sessionmaker``.
        audit_log: Recent isolation bypasses, newest last.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], audit_size: int = 1000):
        sync_class = session_factory.kw.get("sync_session_class")
        if sync_class is None or not issubclass(sync_class, TenantScopedSession):
            raise TypeError(
                "IsolationEnforcer requires a sessionmaker built with "
                "sync_session_class=TenantScopedSession"
            )
        self._factory = session_factory
        self._audit: deque[IsolationAuditEntry] = deque(maxlen=audit_size)

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> "IsolationEnforcer":
        return cls(build_sessionmaker(engine, sync_session_class=TenantScopedSession))

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._factory

    @property
    def audit_log(self) -> list[IsolationAuditEntry]:
        return list(self._audit)

    @asynccontextmanager
    async def scoped_session(self, context: TenantContext) -> AsyncIterator[AsyncSession]:
        """Open a session bound to the context's tenant.

        The caller commits. Uncommitted work is rolled back on exit.
        """
        async with self._factory(
            info={SCOPE_KEY: context.tenant_id, CONTEXT_KEY: context}
        ) as session:
            yield session

    @asynccontextmanager
    async def unscoped_session(
        self, reason: str, tenant_id: str | None = None
    ) -> AsyncIterator[AsyncSession]:
        """Open a session that may read and write any tenant's data.

        For administration, seeding and migrations only. ``reason`` is
        required and is written to the security log and the audit trail.
        """
        if not reason or not reason.strip():
            raise ValueError("An unscoped session requires a reason")
        security_logger.warning(f"Unscoped session opened: {reason} (tenant={tenant_id})")
        self._audit.append(
            IsolationAuditEntry(operation="unscoped_session", reason=reason, tenant_id=tenant_id)
        )
        async with self._factory(info={UNSCOPED_KEY: reason}) as session:
            yield session

    @staticmethod
    def tenant_filter(context: TenantContext) -> dict[str, Any]:
        """Get a filter dictionary for code that builds raw criteria.

        Example:
            stmt = select(Job).filter_by(**enforcer.tenant_filter(ctx))
        """
        return {"tenant_id": context.tenant_id}

    @staticmethod
    def assert_owned(context: TenantContext, obj: Any) -> None:
        """Raise if ``obj`` is not owned by the context's tenant."""
        owner = getattr(obj, "tenant_id", None)
        if owner != context.tenant_id:
            raise _violation(
                f"{type(obj).__name__} owned by {owner} handed to scope {context.tenant_id}"
            )

    def __repr__(self) -> str:
        return f"<IsolationEnforcer tables={sorted(tenant_table_names())}>"
