"""
Tenant-level SQLAlchemy models.

- **Tenant**: Persisted tenant record (slug, status, plan, features, limits).
- **UsageCounter**: Running count per (tenant, resource kind), guarded by
  conditional updates in :mod:`luxgen.multitenancy.limits`.
- **TenantScopedMixin**: Column mixin that marks a model as tenant-owned.
  Every query and flush touching such a model is checked by
  :mod:`luxgen.multitenancy.isolation`.

Column types are portable (``String``, ``JSON``) so the same models run on
PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from luxgen.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _hex_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Mixin
# ---------------------------------------------------------------------------


class TenantScopedMixin:
    """Column mixin that adds an indexed ``tenant_id`` foreign key.

    Apply to any model that belongs to a tenant::

        class Poll(TenantScopedMixin, Base):
            __tablename__ = "polls"
            ...

    Uniqueness rules on such models must include ``tenant_id``.
    """

    tenant_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("tenants.id", ondelete="RESTRICT"),
        index=True,
        nullable=False,
    )


# ---------------------------------------------------------------------------
# Tenant
# ---------------------------------------------------------------------------


class Tenant(Base):
    """Persisted tenant record.

    Rows are never deleted; deactivation sets ``status`` to ``inactive``.

    Attributes
    ----------
    id:           Opaque identifier (hex UUID).
    slug:         URL-safe routing key (unique).
    display_name: Human-readable name.
    status:       One of ``active``, ``suspended``, ``pending``, ``inactive``.
    plan:         Subscription plan supplying default limits.
    domain:       Optional custom domain (unique).
    features:     JSON list of enabled capability names.
    limits:       JSON object of resource kind -> maximum count.
    branding:     Display-only JSON.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_hex_id)
    slug: Mapped[str] = mapped_column(String(63), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", index=True)
    plan: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    domain: Mapped[str | None] = mapped_column(String(253), nullable=True, unique=True)
    features: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    limits: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    branding: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


# ---------------------------------------------------------------------------
# UsageCounter
# ---------------------------------------------------------------------------


class UsageCounter(Base):
    """Current count of one resource kind for one tenant."""

    __tablename__ = "usage_counters"
    __table_args__ = (
        CheckConstraint("current_count >= 0", name="ck_usage_counters_non_negative"),
    )

    tenant_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("tenants.id", ondelete="RESTRICT"), primary_key=True
    )
    resource_kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
