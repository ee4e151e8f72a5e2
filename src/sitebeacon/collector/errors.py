"""Exception handlers rendering every failure as ``{"error": ...}``."""

import logging

import psycopg
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "Internal server error"


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTPExceptions, including unmatched routes."""
    detail = exc.detail
    if exc.status_code == status.HTTP_404_NOT_FOUND and detail == "Not Found":
        detail = "Not found"
    return JSONResponse(
        {"error": detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render request body and parameter validation failures."""
    return JSONResponse(
        {"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        status_code=422,
    )


async def storage_exception_handler(request: Request, exc: psycopg.Error) -> JSONResponse:
    """Log storage failures; callers only see a generic message."""
    logger.error("Storage error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        {"error": INTERNAL_ERROR},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        {"error": INTERNAL_ERROR},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register the collector's exception handlers on ``app``."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(psycopg.Error, storage_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
