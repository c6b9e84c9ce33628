from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.exc import SQLAlchemyError

from core.utils.logging import structured_logger
from .api_exceptions import APIException, RateLimitException, ValidationException
from .utils import CORRELATION_HEADER, format_error_response, get_correlation_id


async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle custom API exceptions"""
    extra = {}
    if isinstance(exc, ValidationException) and exc.errors:
        extra["errors"] = exc.errors
    headers = None
    if isinstance(exc, RateLimitException) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        headers=headers,
        content=format_error_response(
            message=exc.message,
            status_code=exc.status_code,
            error_code=exc.error_code,
            correlation_id=request.headers.get(CORRELATION_HEADER, exc.correlation_id),
            detail=exc.detail if exc.detail != exc.message else None,
            **extra
        )
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            message=exc.detail,
            status_code=exc.status_code,
            error_code=f"HTTP_{exc.status_code}",
            correlation_id=get_correlation_id(request),
        )
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors"""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"][1:])  # Skip 'body' prefix
        errors[field] = error["msg"]

    return JSONResponse(
        status_code=422,
        content=format_error_response(
            message="Validation failed",
            status_code=422,
            error_code="VALIDATION_ERROR",
            correlation_id=get_correlation_id(request),
            errors=errors,
        )
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy database errors without leaking statement details"""
    correlation_id = get_correlation_id(request)
    structured_logger.error(
        message="Unhandled database error",
        endpoint=request.url.path,
        metadata={"correlation_id": correlation_id},
        exception=exc,
    )

    return JSONResponse(
        status_code=500,
        content=format_error_response(
            message="A database error occurred",
            status_code=500,
            error_code="DATABASE_ERROR",
            correlation_id=correlation_id,
        )
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    correlation_id = get_correlation_id(request)
    structured_logger.error(
        message="Unexpected error",
        endpoint=request.url.path,
        metadata={"correlation_id": correlation_id},
        exception=exc,
    )

    return JSONResponse(
        status_code=500,
        content=format_error_response(
            message="An unexpected error occurred",
            status_code=500,
            error_code="INTERNAL_ERROR",
            correlation_id=correlation_id,
        )
    )
