"""Prometheus text endpoint for provider dispatch metrics."""

from __future__ import annotations

from starlette.responses import PlainTextResponse

from messaging.metrics import DEFAULT_DISPATCH_METRICS, DispatchMetrics


def build_metrics_endpoint(metrics: DispatchMetrics = DEFAULT_DISPATCH_METRICS):
    """Build FastAPI-compatible endpoint that serves dispatch metrics text."""

    async def metrics_endpoint() -> PlainTextResponse:
        """Return current metrics in Prometheus exposition format."""
        return PlainTextResponse(
            metrics.render_prometheus_text(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return metrics_endpoint
