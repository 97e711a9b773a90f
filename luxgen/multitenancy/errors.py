"""
Error taxonomy for the tenant resolution and isolation layer.

Every error carries a stable machine-readable ``code`` and the HTTP status
it maps to at the request boundary. The API layer turns them into JSON
envelopes via ``to_dict()``; nothing below the boundary catches them.

    TenancyError
    ├── TenantResolutionError   no usable tenant for the request (400/404)
    ├── TenantNotFoundError     registry lookup miss (404)
    ├── TenantValidationError   invalid tenant record (422)
    ├── TenantInactiveError     policy denial, tenant not active (403)
    ├── FeatureDisabledError    policy denial, capability off (403)
    ├── LimitExceededError      quota reached (429)
    └── IsolationViolationError internal invariant broken (500)
"""

from typing import Any


class TenancyError(Exception):
    """Base class for tenant-layer errors.

    Attributes:
        code: Stable error code for API clients.
        status_code: HTTP status used at the boundary.
    """

    code = "tenancy_error"
    status_code = 400

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)

    def details(self) -> dict[str, Any]:
        """Extra fields included in the error envelope."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {"code": self.code, "message": self.message, **self.details()}


class TenantResolutionError(TenancyError):
    """No known, active tenant could be determined for a request.

    Always a request-shape problem; never retried.

    Codes:
        tenant_unresolved: nothing in the request identified a tenant (400).
        tenant_not_found: the request named a tenant that does not exist (404).
        tenant_inactive: the request named a tenant that is not active (404).
    """

    code = "tenant_unresolved"
    status_code = 400

    _STATUS_BY_CODE = {
        "tenant_unresolved": 400,
        "tenant_not_found": 404,
        "tenant_inactive": 404,
    }

    def __init__(self, message: str, *, code: str = "tenant_unresolved", source: str | None = None):
        super().__init__(message, code=code)
        self.source = source
        self.status_code = self._STATUS_BY_CODE.get(code, 400)

    def details(self) -> dict[str, Any]:
        return {"source": self.source} if self.source else {}


class TenantNotFoundError(TenancyError):
    """Raised by registry lookups when no tenant matches."""

    code = "tenant_not_found"
    status_code = 404

    def __init__(self, key: str, value: str):
        self.key = key
        self.value = value
        super().__init__(f"No tenant with {key}={value!r}")


class TenantValidationError(TenancyError):
    """Raised when a tenant record fails validation on upsert."""

    code = "validation_error"
    status_code = 422

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field

    def details(self) -> dict[str, Any]:
        return {"field": self.field} if self.field else {}


class TenantInactiveError(TenancyError):
    """Policy denial: the tenant is suspended, pending or inactive."""

    code = "tenant_inactive"
    status_code = 403

    def __init__(self, tenant_id: str, status: str):
        self.tenant_id = tenant_id
        self.status = status
        super().__init__(f"Tenant is {status}")

    def details(self) -> dict[str, Any]:
        return {"status": self.status}


class FeatureDisabledError(TenancyError):
    """Policy denial: the requested capability is not enabled."""

    code = "feature_disabled"
    status_code = 403

    def __init__(self, tenant_id: str, feature: str):
        self.tenant_id = tenant_id
        self.feature = feature
        super().__init__(f"Feature '{feature}' is not enabled for this tenant")

    def details(self) -> dict[str, Any]:
        return {"feature": self.feature}


class LimitExceededError(TenancyError):
    """Raised when a create would exceed a tenant's resource limit.

    Not retryable until usage changes. Carries current/max so the caller
    can render a useful message.

    Attributes:
        tenant_id: The tenant that reached the limit.
        resource: The resource kind that was exceeded.
        current: The current usage count.
        max: The configured limit.

    Example:
        try:
            await tracker.reserve_or_raise(tenant_id, ResourceKind.JOBS)
        except LimitExceededError as e:
            return f"Job limit reached ({e.current}/{e.max})"
    """

    code = "limit_exceeded"
    status_code = 429

    def __init__(self, tenant_id: str, resource: str, current: int, max: int):
        self.tenant_id = tenant_id
        self.resource = resource
        self.current = current
        self.max = max
        super().__init__(
            f"Limit exceeded for {resource} (current: {current}, max: {max})"
        )

    def details(self) -> dict[str, Any]:
        return {"resource": self.resource, "current": self.current, "max": self.max}


class IsolationViolationError(TenancyError):
    """A data operation ran without a valid tenant scope.

    Always a programming error. The request fails closed and no detail
    is exposed to the caller.
    """

    code = "isolation_violation"
    status_code = 500

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": "Internal server error"}
