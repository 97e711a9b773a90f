"""
Tests for luxgen.multitenancy.registry.

Covers:
- Lookups by id, slug and domain
- Upsert validation
- TTL cache and invalidation
- The SQL-backed store
"""

from __future__ import annotations

import asyncio

import pytest

from luxgen.multitenancy.errors import TenantNotFoundError, TenantValidationError
from luxgen.multitenancy.registry import InMemoryTenantStore, SqlTenantStore, TenantRegistry
from luxgen.multitenancy.tenant import TenantPlan, TenantRecord, TenantStatus


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# =============================================================================
# Lookups
# =============================================================================


class TestLookups:
    @pytest.mark.asyncio
    async def test_get_by_id_slug_domain(self, registry, acme):
        assert (await registry.get_by_id(acme.id)).slug == "acme"
        assert (await registry.get_by_slug("acme")).id == acme.id
        assert (await registry.get_by_domain("JOBS.ACME.IO")).id == acme.id

    @pytest.mark.asyncio
    async def test_find_returns_none(self, registry):
        assert await registry.find_by_slug("nobody") is None
        assert await registry.find_by_domain("nobody.io") is None

    @pytest.mark.asyncio
    async def test_get_raises_not_found(self, registry):
        with pytest.raises(TenantNotFoundError) as exc_info:
            await registry.get_by_slug("nobody")
        assert exc_info.value.status_code == 404
        assert exc_info.value.key == "slug"

    @pytest.mark.asyncio
    async def test_list_active_excludes_suspended(self, registry):
        slugs = [r.slug for r in await registry.list_active()]
        assert slugs == ["acme", "globex"]
        assert len(await registry.list_all()) == 3


# =============================================================================
# Validation
# =============================================================================


class TestUpsertValidation:
    @pytest.mark.asyncio
    async def test_duplicate_slug_rejected(self, registry):
        with pytest.raises(TenantValidationError) as exc_info:
            await registry.upsert(TenantRecord.create("acme", "Another Acme"))
        assert exc_info.value.field == "slug"

    @pytest.mark.asyncio
    async def test_duplicate_domain_rejected(self, registry):
        with pytest.raises(TenantValidationError) as exc_info:
            await registry.upsert(TenantRecord.create("other", "Other", domain="jobs.acme.io"))
        assert exc_info.value.field == "domain"

    @pytest.mark.asyncio
    async def test_invalid_slug_rejected(self, registry):
        record = TenantRecord(id="x1", slug="Bad_Slug", display_name="Bad")
        with pytest.raises(TenantValidationError):
            await registry.upsert(record)

    @pytest.mark.asyncio
    async def test_negative_limit_rejected(self, registry):
        with pytest.raises(TenantValidationError) as exc_info:
            await registry.upsert(TenantRecord.create("neg", "Neg", limits={"users": -1}))
        assert exc_info.value.field == "limits"

    @pytest.mark.asyncio
    async def test_slug_cannot_change(self, registry, acme):
        with pytest.raises(TenantValidationError):
            await registry.upsert(acme.evolve(slug="acme-two"))

    @pytest.mark.asyncio
    async def test_blank_display_name_rejected(self, registry):
        with pytest.raises(TenantValidationError):
            await registry.upsert(TenantRecord.create("blank", "   "))

    @pytest.mark.asyncio
    async def test_concurrent_creates_with_same_slug(self, registry):
        results = await asyncio.gather(
            registry.upsert(TenantRecord.create("hooli", "Hooli")),
            registry.upsert(TenantRecord.create("hooli", "Hooli XYZ")),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, TenantRecord)) == 1
        errors = [r for r in results if isinstance(r, TenantValidationError)]
        assert len(errors) == 1
        assert errors[0].field == "slug"


# =============================================================================
# Mutations
# =============================================================================


class TestMutations:
    @pytest.mark.asyncio
    async def test_update(self, registry, acme):
        updated = await registry.update(acme.id, plan=TenantPlan.ENTERPRISE)
        assert updated.plan == TenantPlan.ENTERPRISE
        assert (await registry.get_by_id(acme.id)).plan == TenantPlan.ENTERPRISE

    @pytest.mark.asyncio
    async def test_update_unknown(self, registry):
        with pytest.raises(TenantNotFoundError):
            await registry.update("missing", display_name="X")

    @pytest.mark.asyncio
    async def test_update_cannot_change_id(self, registry, acme):
        with pytest.raises(TenantValidationError):
            await registry.update(acme.id, id="new-id")

    @pytest.mark.asyncio
    async def test_deactivate_keeps_record(self, registry, globex):
        await registry.deactivate(globex.id)
        record = await registry.get_by_id(globex.id)
        assert record.status == TenantStatus.INACTIVE


# =============================================================================
# Cache
# =============================================================================


class TestCache:
    @pytest.mark.asyncio
    async def test_serves_cached_until_ttl(self, tenant_factory):
        clock = FakeClock()
        store = InMemoryTenantStore()
        registry = TenantRegistry(store, ttl_seconds=60, clock=clock)
        record = await registry.upsert(tenant_factory("acme"))
        assert (await registry.get_by_slug("acme")).display_name == "Acme"

        # Change the store behind the registry's back.
        await store.save(record.evolve(display_name="Changed"))
        assert (await registry.get_by_slug("acme")).display_name == "Acme"

        clock.now += 61
        assert (await registry.get_by_slug("acme")).display_name == "Changed"

    @pytest.mark.asyncio
    async def test_invalidate(self, tenant_factory):
        store = InMemoryTenantStore()
        registry = TenantRegistry(store, ttl_seconds=600)
        record = await registry.upsert(tenant_factory("acme"))
        await registry.get_by_id(record.id)

        await store.save(record.evolve(display_name="Changed"))
        registry.invalidate(record.id)
        assert (await registry.get_by_id(record.id)).display_name == "Changed"

    @pytest.mark.asyncio
    async def test_mutation_visible_immediately(self, registry, acme):
        await registry.get_by_id(acme.id)
        await registry.set_status(acme.id, TenantStatus.SUSPENDED)
        assert (await registry.get_by_id(acme.id)).status == TenantStatus.SUSPENDED

    @pytest.mark.asyncio
    async def test_zero_ttl_never_caches(self, tenant_factory):
        store = InMemoryTenantStore()
        registry = TenantRegistry(store, ttl_seconds=0)
        record = await registry.upsert(tenant_factory("acme"))
        await registry.get_by_id(record.id)
        await store.save(record.evolve(display_name="Changed"))
        assert (await registry.get_by_id(record.id)).display_name == "Changed"

    def test_negative_ttl_rejected(self):
        with pytest.raises(ValueError):
            TenantRegistry(InMemoryTenantStore(), ttl_seconds=-1)


# =============================================================================
# SqlTenantStore
# =============================================================================


class TestSqlTenantStore:
    @pytest.mark.asyncio
    async def test_round_trip(self, enforcer, tenant_factory):
        registry = TenantRegistry(SqlTenantStore(enforcer.session_factory), ttl_seconds=0)
        record = tenant_factory(
            "acme",
            plan=TenantPlan.BASIC,
            features={"polls"},
            limits={"jobs": 5},
            domain="jobs.acme.io",
            branding={"color": "#123456"},
        )
        await registry.upsert(record)

        loaded = await registry.get_by_slug("acme")
        assert loaded.id == record.id
        assert loaded.plan == TenantPlan.BASIC
        assert loaded.features == frozenset({"polls"})
        assert loaded.limit_for("jobs") == 5
        assert loaded.branding == {"color": "#123456"}
        assert loaded.created_at.tzinfo is not None
        assert (await registry.get_by_domain("jobs.acme.io")).id == record.id

    @pytest.mark.asyncio
    async def test_update_in_place(self, enforcer, tenant_factory):
        registry = TenantRegistry(SqlTenantStore(enforcer.session_factory), ttl_seconds=0)
        record = await registry.upsert(tenant_factory("acme"))
        await registry.update(record.id, display_name="Acme Inc", features=frozenset({"polls"}))

        records = await registry.list_all()
        assert len(records) == 1
        assert records[0].display_name == "Acme Inc"
        assert records[0].has_feature("polls")

    @pytest.mark.asyncio
    async def test_concurrent_creates_with_same_slug(self, enforcer):
        registry = TenantRegistry(SqlTenantStore(enforcer.session_factory), ttl_seconds=0)
        results = await asyncio.gather(
            *(registry.upsert(TenantRecord.create("hooli", f"Hooli {n}")) for n in range(3)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, TenantRecord)) == 1
        assert all(isinstance(r, (TenantRecord, TenantValidationError)) for r in results)
        assert len(await registry.list_all()) == 1

    @pytest.mark.asyncio
    async def test_unique_constraint_is_a_validation_error(self, enforcer, tenant_factory):
        store = SqlTenantStore(enforcer.session_factory)
        await store.save(tenant_factory("acme", tenant_id="first"))

        with pytest.raises(TenantValidationError) as exc_info:
            await store.save(tenant_factory("acme", tenant_id="second"))
        assert exc_info.value.field == "slug"
        assert exc_info.value.status_code == 422
