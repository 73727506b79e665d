"""Integration tests for the assembled application and its request context."""

from __future__ import annotations

import re
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.config import ProviderSettings, Settings
from app.dependencies import build_messaging_client
from app.main import create_app
from app.middleware import RequestContextMiddleware
from app.middleware import request_context as request_context_module
from app.routers.health import check_provider_ready


class _CaptureLogger:
    """Capture structlog-like logger calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, event: str, **kwargs: Any) -> None:
        """Capture info-level calls."""
        self.calls.append(("info", event, kwargs))

    def warning(self, event: str, **kwargs: Any) -> None:
        """Capture warning-level calls."""
        self.calls.append(("warning", event, kwargs))

    def exception(self, event: str, **kwargs: Any) -> None:
        """Capture exception-level calls."""
        self.calls.append(("exception", event, kwargs))


def _settings() -> Settings:
    return Settings(
        provider=ProviderSettings(base_url="https://provider.local/api/", api_key="static-key")
    )


def test_provider_settings_reject_non_http_urls() -> None:
    """Provider URLs must be absolute HTTP(S)."""
    with pytest.raises(ValueError):
        ProviderSettings(base_url="provider.local")


def test_build_messaging_client_uses_settings() -> None:
    """The client is built from settings with secrets unwrapped."""
    client = build_messaging_client(_settings())

    summary = client.describe_configuration()

    assert summary["base_url"] == "https://provider.local/api"
    assert summary["has_api_key"] is True
    assert summary["has_email"] is False


@pytest.mark.asyncio
async def test_correlation_id_is_echoed_and_logged(monkeypatch) -> None:
    """Incoming correlation IDs are reused and logged with the request."""
    capture = _CaptureLogger()
    monkeypatch.setattr(request_context_module, "logger", capture)

    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get("/ok")
    async def ok() -> dict[str, bool]:
        return {"ok": True}

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/ok", headers={"X-Correlation-ID": "corr-abc"})

    assert response.headers["x-correlation-id"] == "corr-abc"
    level, event, fields = capture.calls[-1]
    assert (level, event) == ("info", "request_completed")
    assert fields["correlation_id"] == "corr-abc"
    assert fields["status_code"] == 200


@pytest.mark.asyncio
async def test_app_generates_correlation_id_and_serves_metrics() -> None:
    """The assembled app mints correlation IDs and exposes metrics text."""
    app = create_app(_settings())

    async def _provider_ready() -> bool:
        return True

    app.dependency_overrides[check_provider_ready] = _provider_ready

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        ready = await client.get("/health/ready")
        metrics = await client.get("/metrics")

    assert ready.status_code == 200
    assert re.fullmatch(r"[0-9a-f-]{36}", ready.headers["x-correlation-id"])
    assert metrics.status_code == 200
    assert "messaging_provider_attempts_total" in metrics.text
