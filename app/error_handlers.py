"""Global exception handlers enforcing API error response contracts."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from messaging.exceptions import MessagingError

_DEFAULT_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "invalid_request",
    502: "provider_error",
    503: "service_unavailable",
}

logger = structlog.get_logger(__name__)


def _error_response(status_code: int, detail: str, code: str) -> JSONResponse:
    """Build standardized JSON error payload."""
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def _resolve_error_code(status_code: int, raw_code: str | None) -> str:
    """Resolve a machine-readable error code."""
    if raw_code:
        return raw_code
    return _DEFAULT_ERROR_CODE_BY_STATUS.get(status_code, "internal_error")


def _extract_detail_and_code(detail: Any) -> tuple[str, str | None]:
    """Normalize exception detail payload into message and optional code."""
    if isinstance(detail, dict):
        raw_detail = detail.get("detail", "Request failed.")
        raw_code = detail.get("code")
        return str(raw_detail), str(raw_code) if raw_code is not None else None
    if isinstance(detail, str):
        return detail, None
    return "Request failed.", None


def _sanitize_detail(detail: str, status_code: int, environment: str) -> str:
    """Hide internal failure details outside development."""
    if environment != "development" and status_code >= 500:
        if status_code in (502, 503):
            return "Upstream provider failure."
        return "Internal server error."
    return detail


def _correlation_id(request: Request) -> str:
    """Return the request's bound correlation ID."""
    return getattr(
        request.state,
        "correlation_id",
        request.headers.get("x-correlation-id", "unknown"),
    )


def register_exception_handlers(app: FastAPI, environment: str) -> None:
    """Register global exception handlers enforcing error shape contract."""

    @app.exception_handler(MessagingError)
    async def handle_messaging_error(request: Request, exc: MessagingError) -> JSONResponse:
        """Map provider integration failures to their HTTP status and code."""
        log_fields: dict[str, Any] = {
            "correlation_id": _correlation_id(request),
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "code": exc.code,
            "detail": exc.detail,
        }
        provider_status = getattr(exc, "provider_status", None)
        if provider_status is not None:
            log_fields["provider_status"] = provider_status
        logger.warning("messaging_failure", **log_fields)
        detail = _sanitize_detail(exc.detail, exc.status_code, environment)
        return _error_response(status_code=exc.status_code, detail=detail, code=exc.code)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Normalize framework HTTP exceptions to contract payload."""
        del request
        raw_detail, raw_code = _extract_detail_and_code(exc.detail)
        code = _resolve_error_code(exc.status_code, raw_code)
        return _error_response(status_code=exc.status_code, detail=raw_detail, code=code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Map request validation errors to standardized payload."""
        del request
        detail = "Invalid request payload."
        if environment == "development":
            errors = exc.errors()
            if errors:
                detail = f"Invalid request payload: {errors[0].get('msg', 'validation error')}."
        return _error_response(status_code=422, detail=detail, code="invalid_request")

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        """Mask internal errors and enforce contract payload."""
        logger.error(
            "unhandled_exception",
            correlation_id=_correlation_id(request),
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        detail = _sanitize_detail(str(exc), 500, environment)
        return _error_response(status_code=500, detail=detail, code="internal_error")
