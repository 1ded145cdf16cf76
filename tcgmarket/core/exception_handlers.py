"""
Exception handlers for FastAPI.

Centralized exception handling: every failure leaves the service as
``{"error": {"code", "message", "traceId"}}`` with the trace id echoed in the
X-Trace-Id header.
"""
import logging
import uuid
from typing import Any, Dict, List

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tcgmarket.core.config import get_settings
from tcgmarket.core.exceptions import MarketplaceError, RateLimitError

settings = get_settings()
logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMITED",
}


def get_trace_id(request: Request) -> str:
    """
    Return the trace ID bound by the request middleware, falling back to
    request headers or a fresh uuid4.

    Args:
        request: FastAPI request object

    Returns:
        Trace ID string
    """
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return (
        request.headers.get("X-Trace-Id")
        or request.headers.get("X-Request-Id")
        or request.headers.get("X-Correlation-Id")
        or str(uuid.uuid4())
    )


def _error_response(
    status_code: int,
    content: Dict[str, Any],
    trace_id: str,
    headers: Dict[str, str] = None,
) -> JSONResponse:
    content["error"]["traceId"] = trace_id
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={"X-Trace-Id": trace_id, **(headers or {})},
    )


async def marketplace_error_handler(
    request: Request,
    exc: MarketplaceError,
) -> JSONResponse:
    """
    Handle MarketplaceError exceptions.

    Expected domain outcomes (4xx) are logged at warning level; anything
    that maps to a 5xx is logged as an error.

    Args:
        request: FastAPI request object
        exc: MarketplaceError exception

    Returns:
        JSONResponse with error details
    """
    trace_id = get_trace_id(request)

    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        f"{exc.error_code}: {exc.detail}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "context": exc.context,
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=settings.DEBUG and exc.status_code >= 500,
    )

    return _error_response(exc.status_code, exc.to_dict(), trace_id)


async def rate_limit_error_handler(
    request: Request,
    exc: RateLimitError,
) -> JSONResponse:
    """Handle RateLimitError exceptions, adding Retry-After when known."""
    trace_id = get_trace_id(request)

    logger.warning(
        f"Rate limit exceeded: {exc.detail}",
        extra={
            "error_code": exc.error_code,
            "retry_after": exc.context.get("retry_after"),
            "path": request.url.path,
            "method": request.method,
        },
    )

    headers = {}
    retry_after = exc.context.get("retry_after")
    if retry_after:
        headers["Retry-After"] = str(max(1, int(retry_after)))

    return _error_response(exc.status_code, exc.to_dict(), trace_id, headers)


def _format_validation_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    formatted = []
    for error in errors:
        # Drop the "body"/"query"/"path" prefix FastAPI adds to every location.
        loc = [str(part) for part in error.get("loc", [])]
        if loc and loc[0] in ("body", "query", "path", "header"):
            loc = loc[1:]
        formatted.append({
            "field": ".".join(loc),
            "message": error.get("msg"),
            "type": error.get("type"),
        })
    return formatted


async def validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle request validation errors from FastAPI as 400 VALIDATION_ERROR.

    Args:
        request: FastAPI request object
        exc: RequestValidationError exception

    Returns:
        JSONResponse with validation error details
    """
    trace_id = get_trace_id(request)
    errors = _format_validation_errors(exc.errors())
    message = "; ".join(
        f"{e['field']}: {e['message']}" if e["field"] else str(e["message"])
        for e in errors
    ) or "Request validation failed"

    logger.warning(
        f"Validation error: {len(errors)} field(s) failed validation",
        extra={
            "errors": errors,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        {
            "error": {
                "code": "VALIDATION_ERROR",
                "message": message,
                "errors": errors,
            }
        },
        trace_id,
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Wrap framework-level HTTP errors (unknown route, wrong method) in the envelope."""
    trace_id = get_trace_id(request)
    return _error_response(
        exc.status_code,
        {
            "error": {
                "code": _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
                "message": str(exc.detail),
            }
        },
        trace_id,
        dict(exc.headers or {}),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """
    Handle unexpected exceptions.

    Args:
        request: FastAPI request object
        exc: Exception

    Returns:
        JSONResponse with generic error message
    """
    trace_id = get_trace_id(request)

    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        extra={
            "exception_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=True,
    )

    error_detail = str(exc) if settings.DEBUG else "An internal error occurred"

    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {
            "error": {
                "code": "INTERNAL_ERROR",
                "message": error_detail,
            }
        },
        trace_id,
    )


# Exception handler mapping
EXCEPTION_HANDLERS: Dict[Any, Any] = {
    MarketplaceError: marketplace_error_handler,
    RateLimitError: rate_limit_error_handler,
    RequestValidationError: validation_error_handler,
    StarletteHTTPException: http_exception_handler,
    # Generic exception (must be last)
    Exception: generic_exception_handler,
}
