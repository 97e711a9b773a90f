"""
Tenant registry for LuxGen.

The registry is the source of truth for ``TenantRecord`` lookups. It sits
in front of a ``TenantStore`` (in-memory or SQL) and keeps a read-mostly
cache with a bounded TTL. Tenant configuration changes are rare and
administrative, so serving a record up to ``ttl_seconds`` old is accepted;
mutations made through the registry invalidate the affected entries
immediately.

Reads never take a lock. Cache entries are replaced whole, so a reader
either sees the old record or the new one. Writes are serialized by one
``asyncio.Lock`` so the uniqueness checks and the save run together; a
unique-constraint failure from another process is reported as
``TenantValidationError``.

The registry is constructed explicitly and injected where it is needed.
There is no module-level instance.

Example:
    store = InMemoryTenantStore()
    registry = TenantRegistry(store, ttl_seconds=60)

    acme = await registry.upsert(TenantRecord.create("acme", "Acme Corporation"))
    same = await registry.get_by_slug("acme")
    active = await registry.list_active()
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol
import asyncio
import logging
import time

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from luxgen.models.tenant import Tenant
from luxgen.multitenancy.errors import TenantNotFoundError, TenantValidationError
from luxgen.multitenancy.tenant import (
    TenantPlan,
    TenantRecord,
    TenantStatus,
    is_valid_slug,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class TenantStore(Protocol):
    """Backing store for tenant records."""

    async def fetch_by_id(self, tenant_id: str) -> TenantRecord | None: ...

    async def fetch_by_slug(self, slug: str) -> TenantRecord | None: ...

    async def fetch_by_domain(self, domain: str) -> TenantRecord | None: ...

    async def fetch_all(self) -> list[TenantRecord]: ...

    async def save(self, record: TenantRecord) -> TenantRecord: ...


class InMemoryTenantStore:
    """Dictionary-backed store for tests, development and seed files."""

    def __init__(self, records: list[TenantRecord] | None = None):
        self._records: dict[str, TenantRecord] = {}
        for record in records or []:
            self._records[record.id] = record

    async def fetch_by_id(self, tenant_id: str) -> TenantRecord | None:
        return self._records.get(tenant_id)

    async def fetch_by_slug(self, slug: str) -> TenantRecord | None:
        for record in self._records.values():
            if record.slug == slug:
                return record
        return None

    async def fetch_by_domain(self, domain: str) -> TenantRecord | None:
        for record in self._records.values():
            if record.domain and record.domain == domain:
                return record
        return None

    async def fetch_all(self) -> list[TenantRecord]:
        return list(self._records.values())

    async def save(self, record: TenantRecord) -> TenantRecord:
        self._records[record.id] = record
        return record

    def __len__(self) -> int:
        return len(self._records)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def row_to_record(row: Tenant) -> TenantRecord:
    """Convert a ``tenants`` row into a TenantRecord."""
    return TenantRecord(
        id=row.id,
        slug=row.slug,
        display_name=row.display_name,
        status=TenantStatus(row.status),
        plan=TenantPlan(row.plan),
        features=frozenset(row.features or ()),
        limits=dict(row.limits or {}),
        domain=row.domain,
        branding=dict(row.branding or {}),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def apply_record(row: Tenant, record: TenantRecord) -> Tenant:
    """Copy a TenantRecord's fields onto a ``tenants`` row."""
    row.id = record.id
    row.slug = record.slug
    row.display_name = record.display_name
    row.status = record.status.value
    row.plan = record.plan.value
    row.domain = record.domain
    row.features = sorted(record.features)
    row.limits = {kind.value: value for kind, value in record.limits.items()}
    row.branding = dict(record.branding)
    row.created_at = record.created_at
    row.updated_at = record.updated_at
    return row


class SqlTenantStore:
    """Store backed by the ``tenants`` table.

    Each call runs in its own short session. The ``tenants`` table is not
    tenant-owned data, so these sessions need no tenant scope.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _fetch_one(self, *criteria: Any) -> TenantRecord | None:
        async with self._session_factory() as session:
            row = (await session.execute(select(Tenant).where(*criteria))).scalar_one_or_none()
            return row_to_record(row) if row is not None else None

    async def fetch_by_id(self, tenant_id: str) -> TenantRecord | None:
        return await self._fetch_one(Tenant.id == tenant_id)

    async def fetch_by_slug(self, slug: str) -> TenantRecord | None:
        return await self._fetch_one(Tenant.slug == slug)

    async def fetch_by_domain(self, domain: str) -> TenantRecord | None:
        return await self._fetch_one(Tenant.domain == domain)

    async def fetch_all(self) -> list[TenantRecord]:
        async with self._session_factory() as session:
            rows = (await session.execute(select(Tenant).order_by(Tenant.slug))).scalars().all()
            return [row_to_record(row) for row in rows]

    async def save(self, record: TenantRecord) -> TenantRecord:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    row = await session.get(Tenant, record.id)
                    if row is None:
                        row = Tenant()
                        session.add(row)
                    apply_record(row, record)
            except IntegrityError as exc:
                field = "domain" if "domain" in str(exc.orig).lower() else "slug"
                raise TenantValidationError(
                    f"Tenant {record.slug!r} conflicts with an existing tenant ({field})",
                    field=field,
                ) from exc
            return record


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _CacheEntry:
    record: TenantRecord
    expires_at: float


class TenantRegistry:
    """Cached, validated access to tenant records.

    Attributes:
        ttl_seconds: How long a cached record may be served. 0 disables
                     caching entirely.

    Example:
        registry = TenantRegistry(SqlTenantStore(session_factory), ttl_seconds=60)
        tenant = await registry.get_by_slug("acme")
    """

    def __init__(
        self,
        store: TenantStore,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self._store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._by_id: dict[str, _CacheEntry] = {}
        self._slug_to_id: dict[str, str] = {}
        self._domain_to_id: dict[str, str] = {}
        self._write_lock = asyncio.Lock()

    @property
    def store(self) -> TenantStore:
        return self._store

    # -- cache ---------------------------------------------------------------

    def _cached(self, tenant_id: str | None) -> TenantRecord | None:
        if tenant_id is None or self.ttl_seconds == 0:
            return None
        entry = self._by_id.get(tenant_id)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry.record

    def _remember(self, record: TenantRecord) -> TenantRecord:
        if self.ttl_seconds == 0:
            return record
        self._by_id[record.id] = _CacheEntry(record, self._clock() + self.ttl_seconds)
        self._slug_to_id[record.slug] = record.id
        if record.domain:
            self._domain_to_id[record.domain] = record.id
        return record

    def invalidate(self, tenant_id: str | None = None) -> None:
        """Drop cached entries.

        Args:
            tenant_id: The tenant to forget, or None to clear everything.
        """
        if tenant_id is None:
            self._by_id = {}
            self._slug_to_id = {}
            self._domain_to_id = {}
            logger.debug("Tenant cache cleared")
            return
        entry = self._by_id.pop(tenant_id, None)
        if entry is not None:
            self._slug_to_id.pop(entry.record.slug, None)
            if entry.record.domain:
                self._domain_to_id.pop(entry.record.domain, None)
        logger.debug(f"Tenant cache invalidated for {tenant_id}")

    # -- lookups -------------------------------------------------------------

    async def find_by_id(self, tenant_id: str) -> TenantRecord | None:
        cached = self._cached(tenant_id)
        if cached is not None:
            return cached
        record = await self._store.fetch_by_id(tenant_id)
        return self._remember(record) if record is not None else None

    async def find_by_slug(self, slug: str) -> TenantRecord | None:
        cached = self._cached(self._slug_to_id.get(slug))
        if cached is not None and cached.slug == slug:
            return cached
        record = await self._store.fetch_by_slug(slug)
        return self._remember(record) if record is not None else None

    async def find_by_domain(self, domain: str) -> TenantRecord | None:
        domain = domain.lower()
        cached = self._cached(self._domain_to_id.get(domain))
        if cached is not None and cached.domain == domain:
            return cached
        record = await self._store.fetch_by_domain(domain)
        return self._remember(record) if record is not None else None

    async def get_by_id(self, tenant_id: str) -> TenantRecord:
        """Get a tenant by id.

        Raises:
            TenantNotFoundError: If no tenant has this id.
        """
        record = await self.find_by_id(tenant_id)
        if record is None:
            raise TenantNotFoundError("id", tenant_id)
        return record

    async def get_by_slug(self, slug: str) -> TenantRecord:
        """Get a tenant by slug.

        Raises:
            TenantNotFoundError: If no tenant has this slug.
        """
        record = await self.find_by_slug(slug)
        if record is None:
            raise TenantNotFoundError("slug", slug)
        return record

    async def get_by_domain(self, domain: str) -> TenantRecord:
        """Get a tenant by custom domain.

        Raises:
            TenantNotFoundError: If no tenant uses this domain.
        """
        record = await self.find_by_domain(domain)
        if record is None:
            raise TenantNotFoundError("domain", domain)
        return record

    async def list_all(self) -> list[TenantRecord]:
        records = await self._store.fetch_all()
        return sorted(records, key=lambda r: r.slug)

    async def list_active(self) -> list[TenantRecord]:
        """List tenants whose status is active."""
        return [r for r in await self.list_all() if r.status == TenantStatus.ACTIVE]

    # -- mutations -----------------------------------------------------------

    async def upsert(self, record: TenantRecord) -> TenantRecord:
        """Create or update a tenant record.

        Args:
            record: The full record to store.

        Returns:
            The stored record.

        Raises:
            TenantValidationError: If the slug is malformed or taken by another
                tenant, the domain is taken, a limit is negative, or the update
                tries to change an existing tenant's slug.
        """
        async with self._write_lock:
            return await self._upsert(record)

    async def _upsert(self, record: TenantRecord) -> TenantRecord:
        await self._validate(record)
        stored = await self._store.save(record)
        self.invalidate(record.id)
        logger.info(f"Upserted tenant {record.slug} ({record.id}) status={record.status.value}")
        return stored

    async def _validate(self, record: TenantRecord) -> None:
        if not record.id:
            raise TenantValidationError("Tenant id cannot be empty", field="id")
        if not record.display_name or not record.display_name.strip():
            raise TenantValidationError("Display name cannot be empty", field="display_name")
        if not is_valid_slug(record.slug):
            raise TenantValidationError(
                f"Invalid slug {record.slug!r}: use lower-case letters, digits and hyphens",
                field="slug",
            )
        for kind, value in record.limits.items():
            if value < 0:
                raise TenantValidationError(
                    f"Limit for {kind.value} must be >= 0, got {value}",
                    field="limits",
                )

        existing = await self._store.fetch_by_id(record.id)
        if existing is not None and existing.slug != record.slug:
            raise TenantValidationError(
                f"Slug of tenant {record.id} cannot change ({existing.slug!r} -> {record.slug!r})",
                field="slug",
            )

        same_slug = await self._store.fetch_by_slug(record.slug)
        if same_slug is not None and same_slug.id != record.id:
            raise TenantValidationError(f"Slug {record.slug!r} is already in use", field="slug")

        if record.domain:
            same_domain = await self._store.fetch_by_domain(record.domain)
            if same_domain is not None and same_domain.id != record.id:
                raise TenantValidationError(
                    f"Domain {record.domain!r} is already in use", field="domain"
                )

    async def update(self, tenant_id: str, **changes: Any) -> TenantRecord:
        """Apply field changes to an existing tenant.

        Raises:
            TenantNotFoundError: If the tenant does not exist.
            TenantValidationError: If the result is invalid.
        """
        if "id" in changes:
            raise TenantValidationError("Tenant id cannot change", field="id")
        async with self._write_lock:
            current = await self._store.fetch_by_id(tenant_id)
            if current is None:
                raise TenantNotFoundError("id", tenant_id)
            return await self._upsert(current.evolve(**changes))

    async def set_status(self, tenant_id: str, status: TenantStatus) -> TenantRecord:
        return await self.update(tenant_id, status=TenantStatus(status))

    async def deactivate(self, tenant_id: str) -> TenantRecord:
        """Mark a tenant inactive. Tenants are never hard-deleted."""
        return await self.set_status(tenant_id, TenantStatus.INACTIVE)

    def __repr__(self) -> str:
        return f"<TenantRegistry cached={len(self._by_id)} ttl={self.ttl_seconds}s>"
