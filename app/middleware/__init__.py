"""Middleware package exports."""

from app.middleware.metrics import build_metrics_endpoint
from app.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware", "build_metrics_endpoint"]
