"""Ordered multi-endpoint dispatch with fallback and conflict resolution."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from time import perf_counter
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from messaging.exceptions import AllCandidatesExhausted, ProviderConflict, ProviderError
from messaging.metrics import DEFAULT_DISPATCH_METRICS, DispatchMetrics
from messaging.normalizer import (
    Expectation,
    NormalizedResult,
    RawResponse,
    ResponseNormalizer,
    is_success,
)
from messaging.types import AttemptOutcome, CandidateAttempt, EndpointCandidate, ProviderFailure

if TYPE_CHECKING:
    from messaging.session import AuthSession

CORRELATION_ID_HEADER = "X-Correlation-ID"

BuildRequest = Callable[[EndpointCandidate, str], httpx.Request]
ConflictHandler = Callable[[], Awaitable[Any]]

logger = structlog.get_logger(__name__)


class EndpointDispatcher:
    """Try endpoint candidates strictly in order until one answers usefully."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        normalizer: ResponseNormalizer | None = None,
        metrics: DispatchMetrics = DEFAULT_DISPATCH_METRICS,
    ) -> None:
        """Create dispatcher over a shared HTTP client."""
        self._http_client = http_client
        self._normalizer = normalizer or ResponseNormalizer()
        self._metrics = metrics

    async def dispatch(
        self,
        operation: str,
        candidates: list[tuple[EndpointCandidate, str]],
        build: BuildRequest,
        expect: Expectation,
        instance_name: str | None = None,
        on_conflict: ConflictHandler | None = None,
        session: AuthSession | None = None,
    ) -> NormalizedResult:
        """Return the first definitive success among the rendered candidates.

        Transport errors and inconclusive answers move on to the next
        candidate. A provider error is only raised when it comes from the last
        candidate. When ``on_conflict`` is given, a 409 runs it and retries the
        same candidate once; any further 409 raises ``ProviderConflict``.
        ``session`` receives every status code so repeated 401s can invalidate
        the cached credential.
        """
        attempts: list[CandidateAttempt] = []
        last_error: str | None = None
        conflict_resolved = False

        for index, (candidate, url) in enumerate(candidates):
            is_last = index == len(candidates) - 1
            while True:
                request = self._tag_correlation(build(candidate, url))
                started = perf_counter()
                try:
                    response = await self._http_client.send(request)
                except httpx.RequestError as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                    self._record(
                        operation, attempts, url, "transport_error", started, detail=last_error
                    )
                    break

                if session is not None:
                    session.record_response(response.status_code)

                if response.status_code == 409 and on_conflict is not None:
                    self._record(operation, attempts, url, "conflict", started, status_code=409)
                    if conflict_resolved:
                        raise ProviderConflict(
                            f"Instance '{instance_name}' still conflicts after delete-and-retry."
                        )
                    conflict_resolved = True
                    logger.warning(
                        "provider_conflict_resolving",
                        operation=operation,
                        url=url,
                        instance_name=instance_name,
                    )
                    await on_conflict()
                    continue

                result = self._normalizer.normalize(
                    RawResponse.from_httpx(response), expect, instance_name
                )
                if is_success(result):
                    self._record(
                        operation,
                        attempts,
                        url,
                        "success",
                        started,
                        status_code=response.status_code,
                    )
                    return result

                if isinstance(result, ProviderFailure):
                    last_error = result.message
                    self._record(
                        operation,
                        attempts,
                        url,
                        "provider_error",
                        started,
                        status_code=result.status_code,
                        detail=result.message,
                    )
                    if is_last:
                        raise ProviderError(result.message, provider_status=result.status_code)
                else:
                    last_error = f"{result.reason} (HTTP {result.status_code})"
                    self._record(
                        operation,
                        attempts,
                        url,
                        "inconclusive",
                        started,
                        status_code=result.status_code,
                        detail=result.reason,
                    )
                break

        logger.warning(
            "provider_candidates_exhausted",
            operation=operation,
            attempts=len(attempts),
            last_error=last_error,
        )
        raise AllCandidatesExhausted(operation, attempts, last_error)

    @staticmethod
    def _tag_correlation(request: httpx.Request) -> httpx.Request:
        """Forward the bound correlation ID to the provider."""
        correlation_id = structlog.contextvars.get_contextvars().get("correlation_id")
        if correlation_id and CORRELATION_ID_HEADER not in request.headers:
            request.headers[CORRELATION_ID_HEADER] = str(correlation_id)
        return request

    def _record(
        self,
        operation: str,
        attempts: list[CandidateAttempt],
        url: str,
        outcome: AttemptOutcome,
        started: float,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        """Append, log and count one candidate attempt."""
        duration_seconds = perf_counter() - started
        attempts.append(
            CandidateAttempt(url=url, outcome=outcome, status_code=status_code, detail=detail)
        )
        self._metrics.record_attempt(operation, outcome, duration_seconds)
        event_logger = logger.info if outcome == "success" else logger.warning
        event_logger(
            "provider_candidate_attempt",
            operation=operation,
            url=url,
            outcome=outcome,
            status_code=status_code,
            detail=detail,
            duration_ms=round(duration_seconds * 1000, 2),
        )
