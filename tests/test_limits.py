"""
Tests for luxgen.multitenancy.limits.

Covers:
- Check-and-reserve up to the limit and the error at the limit
- Concurrent reservations for the last slot
- Release on failure and on cancellation
- Usage reports and threshold warnings
- The SQL-backed usage store
"""

from __future__ import annotations

import asyncio

import pytest

from luxgen.multitenancy.errors import LimitExceededError
from luxgen.multitenancy.limits import InMemoryUsageStore, LimitCheck, LimitTracker, SqlUsageStore
from luxgen.multitenancy.tenant import ResourceKind


@pytest.fixture
def tracker(registry):
    return LimitTracker(registry, InMemoryUsageStore())


# ---------------------------------------------------------------------------
# LimitCheck
# ---------------------------------------------------------------------------


class TestLimitCheck:
    def test_remaining(self):
        assert LimitCheck(allowed=True, current=3, max=5).remaining == 2
        assert LimitCheck(allowed=False, current=5, max=5).remaining == 0
        assert LimitCheck(allowed=True, current=9, max=None).remaining is None

    def test_to_dict(self):
        check = LimitCheck(allowed=True, current=1, max=5, resource=ResourceKind.JOBS)
        assert check.to_dict() == {"allowed": True, "resource": "jobs", "current": 1, "max": 5}


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------


class TestCheckAndReserve:
    @pytest.mark.asyncio
    async def test_up_to_limit_then_denied(self, tracker, acme):
        for expected in range(1, 6):
            check = await tracker.check_and_reserve(acme.id, ResourceKind.JOBS)
            assert check.allowed
            assert check.current == expected

        denied = await tracker.check_and_reserve(acme.id, "jobs")
        assert not denied.allowed
        assert (denied.current, denied.max) == (5, 5)
        assert await tracker.usage(acme.id, ResourceKind.JOBS) == 5

    @pytest.mark.asyncio
    async def test_reserve_or_raise(self, tracker, acme):
        for _ in range(5):
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        with pytest.raises(LimitExceededError) as exc_info:
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        err = exc_info.value
        assert err.to_dict() == {
            "code": "limit_exceeded",
            "message": "Limit exceeded for jobs (current: 5, max: 5)",
            "resource": "jobs",
            "current": 5,
            "max": 5,
        }

    @pytest.mark.asyncio
    async def test_zero_limit_forbids_creation(self, registry, tracker, acme):
        await registry.update(acme.id, limits={ResourceKind.POLLS: 0})
        check = await tracker.check_and_reserve(acme.id, ResourceKind.POLLS)
        assert not check.allowed
        assert check.max == 0

    @pytest.mark.asyncio
    async def test_unlimited_kind_is_counted(self, registry, tracker, tenant_factory):
        big = await registry.upsert(tenant_factory("big", plan="enterprise"))
        for _ in range(3):
            check = await tracker.check_and_reserve(big.id, ResourceKind.ACTIVITIES)
            assert check.allowed
            assert check.max is None
        assert await tracker.usage(big.id, ResourceKind.ACTIVITIES) == 3

    @pytest.mark.asyncio
    async def test_tenants_are_counted_separately(self, tracker, acme, globex):
        for _ in range(5):
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        check = await tracker.check_and_reserve(globex.id, ResourceKind.JOBS)
        assert check.allowed
        assert check.current == 1

    @pytest.mark.asyncio
    async def test_concurrent_reservations_for_last_slot(self, tracker, acme):
        for _ in range(4):
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)

        results = await asyncio.gather(
            *(tracker.check_and_reserve(acme.id, ResourceKind.JOBS) for _ in range(10))
        )

        assert sum(1 for r in results if r.allowed) == 1
        assert await tracker.usage(acme.id, ResourceKind.JOBS) == 5

    @pytest.mark.asyncio
    async def test_limit_raised_by_admin_applies(self, registry, tracker, acme):
        for _ in range(5):
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        await registry.update(acme.id, limits={ResourceKind.JOBS: 6})
        assert (await tracker.check_and_reserve(acme.id, ResourceKind.JOBS)).allowed


class TestReservationContext:
    @pytest.mark.asyncio
    async def test_kept_on_success(self, tracker, acme, context_factory):
        async with tracker.reservation(context_factory(acme), ResourceKind.JOBS) as check:
            assert check.current == 1
        assert await tracker.usage(acme.id, ResourceKind.JOBS) == 1

    @pytest.mark.asyncio
    async def test_released_on_error(self, tracker, acme, context_factory):
        with pytest.raises(RuntimeError):
            async with tracker.reservation(context_factory(acme), ResourceKind.JOBS):
                raise RuntimeError("insert failed")
        assert await tracker.usage(acme.id, ResourceKind.JOBS) == 0

    @pytest.mark.asyncio
    async def test_released_on_cancellation(self, tracker, acme, context_factory):
        entered = asyncio.Event()

        async def create():
            async with tracker.reservation(context_factory(acme), ResourceKind.JOBS):
                entered.set()
                await asyncio.sleep(3600)

        task = asyncio.create_task(create())
        await entered.wait()
        assert await tracker.usage(acme.id, ResourceKind.JOBS) == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert await tracker.usage(acme.id, ResourceKind.JOBS) == 0

    @pytest.mark.asyncio
    async def test_raises_before_body_at_limit(self, tracker, acme, context_factory):
        for _ in range(5):
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        entered = False
        with pytest.raises(LimitExceededError):
            async with tracker.reservation(context_factory(acme), ResourceKind.JOBS):
                entered = True
        assert not entered


class TestReleaseAndReconcile:
    @pytest.mark.asyncio
    async def test_release_floors_at_zero(self, tracker, acme):
        assert await tracker.release(acme.id, ResourceKind.USERS) == 0
        await tracker.reserve_or_raise(acme.id, ResourceKind.USERS)
        assert await tracker.release(acme.id, ResourceKind.USERS) == 0

    @pytest.mark.asyncio
    async def test_release_frees_a_slot(self, tracker, acme):
        for _ in range(5):
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        await tracker.release(acme.id, ResourceKind.JOBS)
        assert (await tracker.check_and_reserve(acme.id, ResourceKind.JOBS)).allowed

    @pytest.mark.asyncio
    async def test_reconcile(self, tracker, acme):
        await tracker.reconcile(acme.id, ResourceKind.USERS, 7)
        assert await tracker.usage(acme.id, ResourceKind.USERS) == 7


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


class TestReporting:
    @pytest.mark.asyncio
    async def test_usage_report(self, tracker, acme):
        await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        report = await tracker.usage_report(acme.id)

        assert report["tenant_id"] == acme.id
        assert report["plan"] == "basic"
        assert report["resources"]["jobs"] == {"current": 1, "limit": 5, "percent": 20.0}
        assert set(report["resources"]) == {kind.value for kind in ResourceKind}

    @pytest.mark.asyncio
    async def test_usage_report_unlimited(self, registry, tracker, tenant_factory):
        big = await registry.upsert(tenant_factory("big", plan="enterprise"))
        report = await tracker.usage_report(big.id)
        assert report["resources"]["activities"] == {"current": 0, "limit": None, "percent": None}

    @pytest.mark.asyncio
    async def test_warning_threshold(self, tracker, acme):
        for _ in range(3):
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        assert tracker.get_warnings(acme.id) == []

        await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        warnings = tracker.get_warnings(acme.id)
        assert len(warnings) == 1
        assert warnings[0].usage_percent == 80.0
        assert tracker.clear_warnings(acme.id) == 1
        assert tracker.get_warnings() == []

    @pytest.mark.asyncio
    async def test_warnings_are_bounded(self, registry, acme):
        tracker = LimitTracker(registry, InMemoryUsageStore(), max_warnings=10)
        await registry.update(acme.id, limits={ResourceKind.JOBS: 1000})
        await tracker.reconcile(acme.id, ResourceKind.JOBS, 900)

        for _ in range(50):
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)

        warnings = tracker.get_warnings(acme.id)
        assert len(warnings) == 10
        assert warnings[-1].current == 950
        assert warnings[0].current == 941

    @pytest.mark.asyncio
    async def test_clear_for_one_tenant_keeps_bound(self, registry, acme, globex):
        tracker = LimitTracker(registry, InMemoryUsageStore(), max_warnings=3)
        for tenant in (acme, globex):
            await registry.update(tenant.id, limits={ResourceKind.POLLS: 100})
            await tracker.reconcile(tenant.id, ResourceKind.POLLS, 90)
            await tracker.reserve_or_raise(tenant.id, ResourceKind.POLLS)

        assert tracker.clear_warnings(acme.id) == 1
        for _ in range(5):
            await tracker.reserve_or_raise(globex.id, ResourceKind.POLLS)
        assert len(tracker.get_warnings()) == 3


# ---------------------------------------------------------------------------
# SqlUsageStore
# ---------------------------------------------------------------------------


class TestSqlUsageStore:
    @pytest.mark.asyncio
    async def test_increment_up_to_max(self, enforcer):
        store = SqlUsageStore(enforcer.session_factory)
        assert await store.try_increment("t1", ResourceKind.JOBS, 2) == (True, 1)
        assert await store.try_increment("t1", ResourceKind.JOBS, 2) == (True, 2)
        assert await store.try_increment("t1", ResourceKind.JOBS, 2) == (False, 2)
        assert await store.current("t1", ResourceKind.JOBS) == 2
        assert await store.current("t2", ResourceKind.JOBS) == 0

    @pytest.mark.asyncio
    async def test_decrement_floors_at_zero(self, enforcer):
        store = SqlUsageStore(enforcer.session_factory)
        await store.try_increment("t1", ResourceKind.USERS, None)
        assert await store.decrement("t1", ResourceKind.USERS) == 0
        assert await store.decrement("t1", ResourceKind.USERS) == 0

    @pytest.mark.asyncio
    async def test_set(self, enforcer):
        store = SqlUsageStore(enforcer.session_factory)
        await store.set("t1", ResourceKind.POLLS, 4)
        assert await store.current("t1", ResourceKind.POLLS) == 4

    @pytest.mark.asyncio
    async def test_increment_rolls_back_with_session(self, enforcer):
        store = SqlUsageStore(enforcer.session_factory)
        async with enforcer.session_factory() as session:
            allowed, current = await store.try_increment("t1", ResourceKind.JOBS, 5, session=session)
            assert (allowed, current) == (True, 1)
            await session.rollback()
        assert await store.current("t1", ResourceKind.JOBS) == 0

    @pytest.mark.asyncio
    async def test_tracker_with_sql_store(self, registry, enforcer, acme):
        tracker = LimitTracker(registry, SqlUsageStore(enforcer.session_factory))
        for _ in range(5):
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        with pytest.raises(LimitExceededError) as exc_info:
            await tracker.reserve_or_raise(acme.id, ResourceKind.JOBS)
        assert (exc_info.value.current, exc_info.value.max) == (5, 5)
