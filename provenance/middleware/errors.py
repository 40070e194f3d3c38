"""Error handlers producing consistent JSON error responses."""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.status import (
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
)

from provenance.core.errors import ProvenanceError
from provenance.core.logging import get_logger

logger = get_logger()


def _error_response(
    request: Request, error_type: str, detail: str, status_code: int
) -> JSONResponse:
    correlation_id = getattr(request.state, "correlation_id", None)
    logger.error(
        "request_error",
        error_type=error_type,
        error_message=detail,
        status_code=status_code,
        path=request.url.path,
        method=request.method,
        correlation_id=correlation_id,
    )
    response = JSONResponse(
        status_code=status_code,
        content={
            "error": error_type,
            "message": detail,
            "status_code": status_code,
            "correlation_id": correlation_id or "unknown",
        },
    )
    if correlation_id:
        response.headers["X-Request-ID"] = correlation_id
    return response


async def handle_provenance_error(request: Request, exc: Exception) -> JSONResponse:
    """Map verification errors to their HTTP status codes."""
    status_code = getattr(exc, "status_code", HTTP_500_INTERNAL_SERVER_ERROR)
    return _error_response(request, exc.__class__.__name__, str(exc), status_code)


async def handle_http_exception(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, HTTPException):
        return await handle_unexpected(request, exc)
    return _error_response(request, "HTTPException", str(exc.detail), exc.status_code)


async def handle_request_validation(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, RequestValidationError):
        return await handle_unexpected(request, exc)
    detail = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return _error_response(
        request, "RequestValidationError", detail, HTTP_422_UNPROCESSABLE_ENTITY
    )


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(
        request,
        exc.__class__.__name__,
        "Internal server error",
        HTTP_500_INTERNAL_SERVER_ERROR,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProvenanceError, handle_provenance_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
