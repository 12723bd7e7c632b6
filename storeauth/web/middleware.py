"""Middleware and exception handlers for the FastAPI application."""

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storeauth.auth import AuthError, PersistenceUnavailable
from storeauth.common.logging_config import bind_context, clear_context
from storeauth.core.db.exceptions import (
    DatabaseError,
    DuplicateIdentityError,
    IdentityNotFoundError,
)

logger = structlog.get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers for the FastAPI application.

    Maps domain exceptions to HTTP responses:
    - AuthError -> status from its kind (401/403/429/500), with its headers
    - IdentityNotFoundError -> 404
    - DuplicateIdentityError -> 409
    - DatabaseError -> 500
    - RequestValidationError -> 422

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        log = logger.error if isinstance(exc, PersistenceUnavailable) else logger.info
        log(
            "auth_error",
            kind=exc.kind.value,
            reason=exc.reason,
            status_code=exc.status_code,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers or None,
        )

    @app.exception_handler(IdentityNotFoundError)
    async def identity_not_found_handler(
        request: Request, exc: IdentityNotFoundError
    ) -> JSONResponse:
        logger.warning(
            "identity_not_found",
            identity_id=exc.identity_id,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=404,
            content={
                "detail": str(exc),
                "error_type": "identity_not_found",
                "identity_id": exc.identity_id,
            },
        )

    @app.exception_handler(DuplicateIdentityError)
    async def duplicate_identity_handler(
        request: Request, exc: DuplicateIdentityError
    ) -> JSONResponse:
        logger.warning("duplicate_identity", path=str(request.url.path))
        return JSONResponse(
            status_code=409,
            content={
                "detail": "User already exists with this email",
                "error_type": "duplicate_identity",
            },
        )

    @app.exception_handler(DatabaseError)
    async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
        logger.error(
            "database_error",
            error=str(exc),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Database error occurred",
                "error_type": "database_error",
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=422,
            content={
                "detail": "Validation error",
                "error_type": "validation_error",
                "errors": [
                    {
                        "loc": list(err["loc"]),
                        "msg": err["msg"],
                        "type": err["type"],
                    }
                    for err in exc.errors()
                ],
            },
        )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and bind a request id to the log context."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        bind_context(
            request_id=request_id,
            client=request.client.host if request.client else None,
        )

        logger.info(
            "request_started",
            method=request.method,
            path=str(request.url.path),
        )

        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                duration = time.perf_counter() - start_time
                logger.error(
                    "request_failed",
                    method=request.method,
                    path=str(request.url.path),
                    error=str(exc),
                    duration_ms=round(duration * 1000, 2),
                )
                raise

            duration = time.perf_counter() - start_time
            logger.info(
                "request_completed",
                method=request.method,
                path=str(request.url.path),
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
        finally:
            clear_context()

        response.headers["X-Request-ID"] = request_id
        return response
