"""Error envelopes and FastAPI exception handlers.

Every error leaves the API as::

    {"success": false, "error": {"code": "...", "message": "...", ...}}

Tenant-layer errors carry their own code and status. Database and unknown
errors become ``internal_error`` and are logged with a traceback.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from luxgen.multitenancy.errors import IsolationViolationError, TenancyError

logger = logging.getLogger("luxgen.api")


class ApiError(Exception):
    """Request-level error raised by route handlers."""

    code = "bad_request"
    status_code = 400

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class EntityNotFoundError(ApiError):
    """A tenant-owned entity does not exist in the current tenant."""

    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id!r} not found")


class ConflictError(ApiError):
    code = "conflict"
    status_code = 409


class AdminAuthError(ApiError):
    code = "unauthorized"
    status_code = 401


def error_response(
    request: Request,
    status_code: int,
    error: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    headers = dict(headers or {})
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        headers.setdefault("X-Request-ID", request_id)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers that turn exceptions into error envelopes."""

    @app.exception_handler(IsolationViolationError)
    async def isolation_violation_handler(request: Request, exc: IsolationViolationError) -> JSONResponse:
        # Already logged at CRITICAL where it was raised.
        return error_response(request, exc.status_code, exc.to_dict())

    @app.exception_handler(TenancyError)
    async def tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
        logger.info(
            "tenancy error code=%s status=%s path=%s: %s",
            exc.code,
            exc.status_code,
            request.url.path,
            exc,
        )
        return error_response(request, exc.status_code, exc.to_dict())

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return error_response(request, exc.status_code, exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return error_response(
            request,
            422,
            {"code": "validation_error", "message": "Request validation failed", "errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = "not_found" if exc.status_code == 404 else "http_error"
        return error_response(
            request,
            exc.status_code,
            {"code": code, "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return error_response(
            request, 500, {"code": "internal_error", "message": "Internal server error"}
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(
            request, 500, {"code": "internal_error", "message": "Internal server error"}
        )
