"""Exception handlers for the FastAPI application."""

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from shop_agent.core.exceptions import ErrorSeverity, ShopAgentException
from shop_agent.core.logging_config import get_logger

logger = get_logger(__name__)

STATUS_BY_CODE = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "JOB_CONFLICT": status.HTTP_409_CONFLICT,
    "RATE_LIMIT_EXCEEDED": status.HTTP_429_TOO_MANY_REQUESTS,
    "CIRCUIT_BREAKER_OPEN": status.HTTP_503_SERVICE_UNAVAILABLE,
    "TRANSPORT_ERROR": status.HTTP_502_BAD_GATEWAY,
    "OPERATION_TIMEOUT": status.HTTP_504_GATEWAY_TIMEOUT,
    "PROVIDER_ERROR": status.HTTP_502_BAD_GATEWAY,
    "PARSE_ERROR": status.HTTP_502_BAD_GATEWAY,
    "PERSISTENCE_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "CONFIGURATION_ERROR": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(error: ShopAgentException) -> int:
    return STATUS_BY_CODE.get(error.error_code, status.HTTP_400_BAD_REQUEST)


def error_envelope(
    error_code: str,
    message: str,
    errors: Optional[list] = None,
    retryable: bool = False,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    envelope = {
        "success": False,
        "message": message,
        "errors": errors or [message],
        "error_code": error_code,
        "retryable": retryable,
    }
    if details:
        envelope["details"] = details
    return envelope


def _headers(retry_after: Optional[int]) -> Dict[str, str]:
    return {"Retry-After": str(retry_after)} if retry_after else {}


async def shop_agent_exception_handler(request: Request, exc: ShopAgentException) -> JSONResponse:
    log = logger.warning if exc.severity in (ErrorSeverity.LOW, ErrorSeverity.MEDIUM) else logger.error
    log("Request failed", method=request.method, path=request.url.path, error_code=exc.error_code,
        error=exc.message)
    return JSONResponse(
        status_code=status_for(exc),
        content=error_envelope(exc.error_code, exc.user_message, exc.details.get("errors"), exc.retryable),
        headers=_headers(exc.retry_after),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        f"{' -> '.join(str(loc) for loc in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_envelope("VALIDATION_ERROR", "Request validation failed", errors),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope("HTTP_ERROR", str(exc.detail)),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", method=request.method, path=request.url.path,
                     exception_type=type(exc).__name__)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_envelope("UNEXPECTED_ERROR", "An unexpected error occurred. Please try again later."),
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(ShopAgentException, shop_agent_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
