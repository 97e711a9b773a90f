"""LuxGen configuration: environment settings and tenant seed files."""

from .settings import Settings, settings
from .tenants_loader import (
    TenantSeed,
    TenantSeedFile,
    apply_tenant_seeds,
    load_tenant_seeds,
    save_tenant_seeds,
)

__all__ = [
    "Settings",
    "TenantSeed",
    "TenantSeedFile",
    "apply_tenant_seeds",
    "load_tenant_seeds",
    "save_tenant_seeds",
    "settings",
]
