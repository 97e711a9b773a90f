"""Request-logging and tenant path-prefix middleware for FastAPI."""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from luxgen.multitenancy.resolver import split_tenant_path

logger = logging.getLogger("luxgen.api")

# ASGI scope key holding the path as the client sent it, before the
# tenant prefix was stripped for routing.
ORIGINAL_PATH_KEY = "luxgen.original_path"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

# ---------------------------------------------------------------------------
# Request logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Attach a request ID and log method/path/status/duration/tenant.

    A well-formed incoming ``X-Request-ID`` is reused so ids can be
    correlated across services.
    """

    async def dispatch(self, request: Request, call_next):  # noqa: ANN001
        incoming = request.headers.get("x-request-id", "")
        request_id = incoming if _REQUEST_ID_RE.match(incoming) else str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        logger.info(
            "method=%s path=%s status_code=%s duration_ms=%.1f request_id=%s tenant=%s",
            request.method,
            request.scope.get(ORIGINAL_PATH_KEY, request.url.path),
            response.status_code,
            duration_ms,
            request_id,
            response.headers.get("x-tenant-slug", "-"),
        )

        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# Tenant path prefix
# ---------------------------------------------------------------------------


class TenantPathMiddleware:
    """Strip a ``/tenant/{slug}`` prefix so routes are declared once.

    ``/tenant/acme/api/polls`` is routed as ``/api/polls``. The path the
    client sent is kept in the scope under ``ORIGINAL_PATH_KEY`` for the
    resolver. The middleware does not decide which tenant the request
    belongs to.

    Example:
        app.add_middleware(TenantPathMiddleware, path_prefix="/tenant")
    """

    def __init__(self, app: Any, path_prefix: str = "/tenant"):
        self.app = app
        self.path_prefix = path_prefix

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[..., Any],
        send: Callable[..., Any],
    ) -> None:
        if scope["type"] != "http" or not self.path_prefix:
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "")
        slug, rest = split_tenant_path(path, self.path_prefix)
        if slug is None:
            await self.app(scope, receive, send)
            return

        scope = dict(scope)
        scope[ORIGINAL_PATH_KEY] = path
        scope["path"] = rest
        scope["raw_path"] = rest.encode("utf-8")
        await self.app(scope, receive, send)
