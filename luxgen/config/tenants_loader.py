"""Load, validate, save and apply tenant seed files.

A seed file is a JSON document listing tenants to provision::

    {
      "version": 1,
      "tenants": [
        {"slug": "acme", "display_name": "Acme Corp", "plan": "basic",
         "features": ["polls", "job-posting"], "limits": {"jobs": 5}}
      ]
    }

It is used to bootstrap development databases, to drive the in-memory
registry, and by ``luxgen tenants load``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from luxgen.multitenancy.registry import TenantRegistry
from luxgen.multitenancy.tenant import SLUG_PATTERN, ResourceKind, TenantRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class TenantSeed(BaseModel):
    """One tenant entry in a seed file."""

    id: str | None = Field(default=None, description="Stable id; generated when omitted")
    slug: str = Field(..., pattern=SLUG_PATTERN.pattern)
    display_name: str = Field(..., min_length=1)
    status: Literal["active", "suspended", "pending", "inactive"] = "active"
    plan: Literal["free", "basic", "professional", "enterprise"] = "free"
    features: list[str] = Field(default_factory=list)
    limits: dict[str, int] = Field(default_factory=dict)
    domain: str | None = None
    branding: dict[str, Any] = Field(default_factory=dict)

    @field_validator("limits")
    @classmethod
    def _validate_limits(cls, v: dict[str, int]) -> dict[str, int]:
        known = {kind.value for kind in ResourceKind}
        for kind, value in v.items():
            if kind not in known:
                raise ValueError(f"Unknown resource kind {kind!r}. Known: {sorted(known)}")
            if value < 0:
                raise ValueError(f"Limit for {kind} must be >= 0")
        return v

    @field_validator("features")
    @classmethod
    def _dedupe_features(cls, v: list[str]) -> list[str]:
        return sorted({f.strip() for f in v if f.strip()})

    def to_record(self, tenant_id: str | None = None) -> TenantRecord:
        return TenantRecord.create(
            slug=self.slug,
            display_name=self.display_name,
            plan=self.plan,
            features=self.features,
            limits=self.limits,
            tenant_id=tenant_id or self.id,
            status=self.status,
            domain=self.domain,
            branding=self.branding,
        )

    @classmethod
    def from_record(cls, record: TenantRecord) -> "TenantSeed":
        return cls(
            id=record.id,
            slug=record.slug,
            display_name=record.display_name,
            status=record.status.value,
            plan=record.plan.value,
            features=sorted(record.features),
            limits={kind.value: value for kind, value in record.limits.items()},
            domain=record.domain,
            branding=dict(record.branding),
        )


class TenantSeedFile(BaseModel):
    """Top-level seed document."""

    version: int = 1
    tenants: list[TenantSeed] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_keys(self) -> "TenantSeedFile":
        seen_slugs: set[str] = set()
        seen_domains: set[str] = set()
        for seed in self.tenants:
            if seed.slug in seen_slugs:
                raise ValueError(f"Duplicate slug {seed.slug!r} in seed file")
            seen_slugs.add(seed.slug)
            if seed.domain:
                domain = seed.domain.lower()
                if domain in seen_domains:
                    raise ValueError(f"Duplicate domain {domain!r} in seed file")
                seen_domains.add(domain)
        return self


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

def load_tenant_seeds(path: str | Path) -> TenantSeedFile:
    """Load and validate a tenant seed file.

    Raises:
        FileNotFoundError: If the file does not exist.
        pydantic.ValidationError: If the content does not conform to the schema.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Tenant seed file not found at {path}")
    raw = json.loads(path.read_text(encoding="utf-8"))
    return TenantSeedFile.model_validate(raw)


def save_tenant_seeds(seeds: TenantSeedFile, path: str | Path) -> None:
    """Atomically write a seed file.

    Writes to a temporary file first, then renames, so readers never see a
    partial write.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    data = seeds.model_dump(mode="json")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    tmp.replace(path)
    logger.info("Saved %d tenant(s) to %s", len(seeds.tenants), path)


async def apply_tenant_seeds(registry: TenantRegistry, seeds: TenantSeedFile) -> list[TenantRecord]:
    """Upsert every seed into the registry.

    Existing tenants are matched by slug and keep their id and creation
    time; everything else is overwritten from the seed.
    """
    applied = []
    for seed in seeds.tenants:
        existing = await registry.find_by_slug(seed.slug)
        record = seed.to_record(tenant_id=existing.id if existing else None)
        if existing is not None:
            record = existing.evolve(
                display_name=record.display_name,
                status=record.status,
                plan=record.plan,
                features=record.features,
                limits=record.limits,
                domain=record.domain,
                branding=record.branding,
            )
        applied.append(await registry.upsert(record))
    logger.info("Applied %d tenant seed(s)", len(applied))
    return applied
