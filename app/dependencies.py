"""Shared FastAPI dependency helpers."""

from __future__ import annotations

from fastapi import HTTPException, Request

from app.config import Settings
from messaging.client import InstanceLifecycleClient


def build_messaging_client(settings: Settings) -> InstanceLifecycleClient:
    """Construct the provider client from application settings."""
    provider = settings.provider
    return InstanceLifecycleClient(
        base_url=provider.base_url,
        credentials=provider.credentials(),
        country_code=provider.country_code,
        integration=provider.integration,
        timeout=provider.timeout_seconds,
        settle_delay_seconds=provider.settle_delay_seconds,
        credential_ttl_seconds=provider.credential_ttl_seconds,
    )


def get_messaging_client(request: Request) -> InstanceLifecycleClient:
    """Return the provider client owned by the application lifespan."""
    client = getattr(request.app.state, "messaging_client", None)
    if not isinstance(client, InstanceLifecycleClient):
        raise HTTPException(
            status_code=503,
            detail={"detail": "Messaging client not initialized.", "code": "service_unavailable"},
        )
    return client
