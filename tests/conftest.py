"""Shared fixtures: an in-memory SQLite database, a seeded tenant registry and
an HTTP client bound to a fresh application."""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from luxgen.config.settings import Settings
from luxgen.db import build_engine, create_all
from luxgen.main import create_app
from luxgen.multitenancy.context import ResolvedFrom, TenantContext
from luxgen.multitenancy.isolation import IsolationEnforcer
from luxgen.multitenancy.limits import InMemoryUsageStore
from luxgen.multitenancy.registry import InMemoryTenantStore, TenantRegistry
from luxgen.multitenancy.tenant import ResourceKind, TenantPlan, TenantRecord, TenantStatus

ADMIN_KEY = "test-admin-key"


def make_tenant(slug: str, **kwargs) -> TenantRecord:
    kwargs.setdefault("display_name", slug.title())
    kwargs.setdefault("tenant_id", f"id-{slug}")
    display_name = kwargs.pop("display_name")
    return TenantRecord.create(slug, display_name, **kwargs)


def context_for(record: TenantRecord, source: ResolvedFrom = ResolvedFrom.HEADER) -> TenantContext:
    return TenantContext(tenant_id=record.id, slug=record.slug, resolved_from=source)


@pytest.fixture
def acme() -> TenantRecord:
    return make_tenant(
        "acme",
        display_name="Acme Corporation",
        plan=TenantPlan.BASIC,
        features={"job-posting", "polls"},
        limits={ResourceKind.JOBS: 5},
        domain="jobs.acme.io",
    )


@pytest.fixture
def globex() -> TenantRecord:
    return make_tenant("globex", display_name="Globex", features={"polls"})


@pytest.fixture
def initech() -> TenantRecord:
    return make_tenant("initech", status=TenantStatus.SUSPENDED, features={"polls"})


@pytest_asyncio.fixture
async def registry(acme, globex, initech) -> TenantRegistry:
    reg = TenantRegistry(InMemoryTenantStore(), ttl_seconds=60)
    for record in (acme, globex, initech):
        await reg.upsert(record)
    return reg


@pytest_asyncio.fixture
async def engine():
    eng = build_engine("sqlite+aiosqlite:///:memory:")
    await create_all(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def enforcer(engine) -> IsolationEnforcer:
    return IsolationEnforcer.from_engine(engine)


@pytest.fixture
def app_settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        BASE_DOMAINS=["example.com"],
        ADMIN_API_KEY=ADMIN_KEY,
        TENANT_SEED_FILE=None,
        DEFAULT_TENANT_SLUG=None,
    )


@pytest.fixture
def app(app_settings, engine, registry):
    return create_app(
        app_settings,
        engine=engine,
        registry=registry,
        usage_store=InMemoryUsageStore(),
    )


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def app_sql(app_settings, engine, registry):
    """App wired as in production: counters live in ``usage_counters`` and
    are reserved inside the request's own transaction."""
    return create_app(app_settings, engine=engine, registry=registry)


@pytest_asyncio.fixture
async def client_sql(app_sql):
    transport = ASGITransport(app=app_sql)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def tenant_factory():
    return make_tenant


@pytest.fixture
def context_factory():
    return context_for


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_KEY}"}
