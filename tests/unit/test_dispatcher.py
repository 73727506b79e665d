"""Unit tests for ordered endpoint dispatch."""

from __future__ import annotations

import httpx
import pytest
import structlog

from messaging.dispatcher import CORRELATION_ID_HEADER, EndpointDispatcher
from messaging.endpoints import STATUS_CANDIDATES, render_candidates, root_url
from messaging.exceptions import AllCandidatesExhausted, ProviderConflict, ProviderError
from messaging.metrics import DispatchMetrics
from messaging.types import ConnectionState, EndpointCandidate, SendAck

BASE_URL = "https://provider.local/api"

CANDIDATES = render_candidates(
    (
        EndpointCandidate("{base}/one/{name}"),
        EndpointCandidate("{base}/two/{name}"),
        EndpointCandidate("{base}/three/{name}"),
    ),
    BASE_URL,
    "shop",
)


def _build(client: httpx.AsyncClient):
    def build(candidate: EndpointCandidate, url: str) -> httpx.Request:
        return client.build_request("GET", url)

    return build


def test_root_url_strips_api_suffix() -> None:
    """The root template drops a trailing /api segment."""
    assert root_url("https://provider.local/api/") == "https://provider.local"
    assert root_url("https://provider.local") == "https://provider.local"


def test_render_candidates_quotes_names_and_drops_duplicates() -> None:
    """Names are URL-quoted and duplicate URLs are only tried once."""
    rendered = render_candidates(
        (EndpointCandidate("{root}/x/{name}"), EndpointCandidate("{base}/x/{name}")),
        "https://provider.local",
        "my shop",
    )

    assert [url for _, url in rendered] == ["https://provider.local/x/my%20shop"]


def test_status_candidates_try_connection_state_first() -> None:
    """The dedicated connection-state path has the highest precedence."""
    rendered = render_candidates(STATUS_CANDIDATES, BASE_URL, "shop")

    assert rendered[0][1] == f"{BASE_URL}/instance/connectionState/shop"


@pytest.mark.parametrize("k", [1, 2, 3])
@pytest.mark.asyncio
async def test_dispatch_stops_at_first_success(k: int) -> None:
    """Exactly k requests are issued when candidate k is the first to succeed."""
    requested: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if len(requested) < k:
            return httpx.Response(200, html="<html>login</html>")
        return httpx.Response(200, json={"instance": {"state": "open"}})

    metrics = DispatchMetrics()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = EndpointDispatcher(client, metrics=metrics)
        result = await dispatcher.dispatch("status", CANDIDATES, _build(client), "state", "shop")

    assert result is ConnectionState.CONNECTED
    assert requested == [url for _, url in CANDIDATES[:k]]
    assert metrics.attempt_count("status", "success") == 1
    assert metrics.attempt_count("status", "inconclusive") == k - 1


@pytest.mark.asyncio
async def test_transport_errors_fall_through() -> None:
    """Connection failures on one candidate do not abort the dispatch."""

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/one/shop"):
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(201, json={"key": {"id": "M1"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = EndpointDispatcher(client, metrics=DispatchMetrics())
        result = await dispatcher.dispatch("send", CANDIDATES, _build(client), "sent", "shop")

    assert result == SendAck(message_id="M1")


@pytest.mark.asyncio
async def test_provider_error_before_last_candidate_is_skipped() -> None:
    """A structured error from a non-final candidate moves on."""

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/three/shop"):
            return httpx.Response(200, json={"status": "connecting"})
        return httpx.Response(400, json={"message": "wrong route"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = EndpointDispatcher(client, metrics=DispatchMetrics())
        result = await dispatcher.dispatch("status", CANDIDATES, _build(client), "state", "shop")

    assert result is ConnectionState.CONNECTING


@pytest.mark.asyncio
async def test_provider_error_on_last_candidate_is_raised() -> None:
    """The final candidate's structured error surfaces with its status."""

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/three/shop"):
            return httpx.Response(403, json={"error": "Forbidden"})
        return httpx.Response(502, text="bad gateway")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = EndpointDispatcher(client, metrics=DispatchMetrics())
        with pytest.raises(ProviderError) as exc_info:
            await dispatcher.dispatch("status", CANDIDATES, _build(client), "state", "shop")

    assert exc_info.value.provider_status == 403
    assert exc_info.value.detail == "Forbidden"


@pytest.mark.asyncio
async def test_all_inconclusive_raises_exhausted_with_attempt_trail() -> None:
    """Every candidate is recorded when none answers usefully."""

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, html="<html>login</html>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = EndpointDispatcher(client, metrics=DispatchMetrics())
        with pytest.raises(AllCandidatesExhausted) as exc_info:
            await dispatcher.dispatch("status", CANDIDATES, _build(client), "state", "shop")

    attempts = exc_info.value.attempts
    assert [attempt.url for attempt in attempts] == [url for _, url in CANDIDATES]
    assert {attempt.outcome for attempt in attempts} == {"inconclusive"}
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_conflict_runs_handler_once_and_retries_same_candidate() -> None:
    """A 409 triggers one resolution and a retry of the same URL."""
    requested: list[str] = []
    resolutions = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.path)
        if len(requested) == 1:
            return httpx.Response(409, json={"message": "already exists"})
        return httpx.Response(201, json={"hash": "inst-key"})

    async def resolve() -> None:
        nonlocal resolutions
        resolutions += 1

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = EndpointDispatcher(client, metrics=DispatchMetrics())
        result = await dispatcher.dispatch(
            "create", CANDIDATES, _build(client), "created", "shop", on_conflict=resolve
        )

    assert resolutions == 1
    assert requested == ["/api/one/shop", "/api/one/shop"]
    assert result.instance_token == "inst-key"


@pytest.mark.asyncio
async def test_second_conflict_raises() -> None:
    """A conflict that survives delete-and-retry is reported."""

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"message": "already exists"})

    async def resolve() -> None:
        return None

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = EndpointDispatcher(client, metrics=DispatchMetrics())
        with pytest.raises(ProviderConflict):
            await dispatcher.dispatch(
                "create", CANDIDATES, _build(client), "created", "shop", on_conflict=resolve
            )


@pytest.mark.asyncio
async def test_bound_correlation_id_is_forwarded() -> None:
    """Provider requests carry the correlation ID bound for the current request."""
    seen: list[str | None] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get(CORRELATION_ID_HEADER))
        return httpx.Response(200, json={"state": "open"})

    structlog.contextvars.bind_contextvars(correlation_id="corr-123")
    try:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = EndpointDispatcher(client, metrics=DispatchMetrics())
            await dispatcher.dispatch("status", CANDIDATES, _build(client), "state", "shop")
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")

    assert seen == ["corr-123"]
