"""Correlation ID binding and structured request logging."""

from __future__ import annotations

from time import perf_counter
from uuid import uuid4

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from messaging.dispatcher import CORRELATION_ID_HEADER

_CONTEXT_KEY = "correlation_id"

logger = structlog.get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a correlation ID for the request and emit one completion log.

    The bound ID is forwarded on every provider call made while serving the
    request, so provider-side logs can be joined with ours.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        """Bind correlation context and log completion metadata."""
        correlation_id = request.headers.get(CORRELATION_ID_HEADER, "").strip() or str(uuid4())
        request.state.correlation_id = correlation_id
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
        start = perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=round((perf_counter() - start) * 1000, 2),
            )
            raise
        finally:
            structlog.contextvars.unbind_contextvars(_CONTEXT_KEY)

        event_logger = logger.warning if response.status_code >= 400 else logger.info
        event_logger(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((perf_counter() - start) * 1000, 2),
            correlation_id=correlation_id,
        )
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
