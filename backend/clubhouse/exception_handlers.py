"""Exception handlers mapping service errors to HTTP responses.

- ``AuthenticationError`` -> 401 with ``WWW-Authenticate: Bearer``
- ``StoreUnavailableError`` -> 503, flagged retryable
- ``ResourceValidationError`` -> 422

Authorization denials never reach these handlers; routes answer them as
403/404 themselves.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from clubhouse.identity import AuthenticationError
from clubhouse.services.resources import ResourceValidationError
from clubhouse.store import StoreUnavailableError

logger = logging.getLogger(__name__)


async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    logger.info(f"Authentication rejected on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=401,
        content={"detail": exc.message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error(f"Store unavailable on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=503,
        content={"detail": exc.message, "retryable": True},
        headers={"Retry-After": "5"},
    )


async def validation_error_handler(request: Request, exc: ResourceValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuthenticationError, authentication_error_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
    app.add_exception_handler(ResourceValidationError, validation_error_handler)
