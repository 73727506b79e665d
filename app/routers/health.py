"""Health check router endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_messaging_client
from messaging.client import InstanceLifecycleClient

router = APIRouter(prefix="/health", tags=["health"])


async def check_provider_ready(
    client: Annotated[InstanceLifecycleClient, Depends(get_messaging_client)],
) -> bool:
    """Return True when the provider answers an authenticated instance listing."""
    return await client.check_connection()


@router.get("/live")
async def live() -> dict[str, str]:
    """Liveness probe endpoint."""
    return {"status": "live"}


@router.get("/ready")
async def ready(
    provider_ready: Annotated[bool, Depends(check_provider_ready)],
) -> dict[str, str]:
    """Readiness probe requiring a reachable messaging provider."""
    if not provider_ready:
        raise HTTPException(
            status_code=503,
            detail={"detail": "Messaging provider not reachable.", "code": "service_unavailable"},
        )
    return {"status": "ready"}
