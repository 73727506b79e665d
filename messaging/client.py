"""Async client for the messaging provider's instance lifecycle and messaging endpoints."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, cast

import httpx
import structlog

from messaging.dispatcher import BuildRequest, EndpointDispatcher
from messaging.endpoints import (
    CONNECT_CANDIDATES,
    CREATE_CANDIDATES,
    DELETE_CANDIDATES,
    LIST_CANDIDATES,
    LOGOUT_CANDIDATES,
    SEND_MEDIA_CANDIDATES,
    SEND_TEXT_CANDIDATES,
    STATUS_CANDIDATES,
    render_candidates,
)
from messaging.exceptions import (
    AllCandidatesExhausted,
    InstanceTokenRequired,
    MessagingError,
    ProviderError,
)
from messaging.metrics import DEFAULT_DISPATCH_METRICS, DispatchMetrics
from messaging.normalizer import ResponseNormalizer
from messaging.phone import DEFAULT_COUNTRY_CODE, normalize_phone_number, normalize_recipient
from messaging.redaction import redact_mapping
from messaging.session import DEFAULT_CREDENTIAL_TTL_SECONDS, AuthSession, ProviderCredentials
from messaging.types import (
    ConnectionState,
    CreatedInstance,
    EndpointCandidate,
    InstanceStatus,
    PairingArtifact,
    PairingResult,
    SendAck,
)

DEFAULT_TIMEOUT = httpx.Timeout(connect=5.0, read=15.0, write=15.0, pool=5.0)
DEFAULT_SETTLE_DELAY_SECONDS = 5.0
DEFAULT_INTEGRATION = "WHATSAPP-BAILEYS"

_IMAGE_MIMETYPES = {
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}

logger = structlog.get_logger(__name__)


def _image_mimetype(media_url: str) -> str:
    """Guess the image mimetype from the URL's file extension."""
    path = media_url.split("?", 1)[0]
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return _IMAGE_MIMETYPES.get(extension, "image/jpeg")


class InstanceLifecycleClient:
    """Create, pair, inspect and delete provider instances and send messages through them."""

    def __init__(
        self,
        base_url: str,
        credentials: ProviderCredentials | None = None,
        *,
        country_code: str = DEFAULT_COUNTRY_CODE,
        integration: str = DEFAULT_INTEGRATION,
        timeout: httpx.Timeout | float | None = None,
        http_client: httpx.AsyncClient | None = None,
        settle_delay_seconds: float = DEFAULT_SETTLE_DELAY_SECONDS,
        credential_ttl_seconds: int = DEFAULT_CREDENTIAL_TTL_SECONDS,
        metrics: DispatchMetrics = DEFAULT_DISPATCH_METRICS,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        now: Callable[[], float] | None = None,
    ) -> None:
        """Create client with sane defaults and optional injected transport."""
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials or ProviderCredentials()
        self._country_code = country_code
        self._integration = integration
        self._settle_delay_seconds = settle_delay_seconds
        self._sleep = sleep or asyncio.sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout or DEFAULT_TIMEOUT)
        self._session = AuthSession(
            http_client=self._client,
            base_url=self._base_url,
            credentials=self._credentials,
            ttl_seconds=credential_ttl_seconds,
            now=now,
        )
        self._dispatcher = EndpointDispatcher(
            http_client=self._client,
            normalizer=ResponseNormalizer(),
            metrics=metrics,
        )

    @property
    def session(self) -> AuthSession:
        """Expose the credential session."""
        return self._session

    def describe_configuration(self) -> dict[str, Any]:
        """Summarize configuration without exposing credential values."""
        return {
            "base_url": self._base_url,
            "has_email": bool(self._credentials.email),
            "has_password": bool(self._credentials.password),
            "has_api_key": bool(self._credentials.api_key),
            "has_global_api_key": bool(self._credentials.global_api_key),
            "country_code": self._country_code,
            "integration": self._integration,
        }

    async def create_instance(
        self,
        name: str,
        wants_qr_code: bool = True,
        phone_number: str | None = None,
    ) -> CreatedInstance:
        """Create an instance, replacing a pre-existing one with the same name."""
        payload: dict[str, Any] = {
            "name": name,
            "instanceName": name,
            "qrcode": wants_qr_code,
            "integration": self._integration,
        }
        if phone_number:
            payload["number"] = normalize_phone_number(phone_number, self._country_code)

        await self._session.get_credential()
        logger.info("provider_instance_create", instance_name=name, payload=redact_mapping(payload))

        async def resolve_conflict() -> None:
            await self.delete_instance(name)

        result = await self._dispatcher.dispatch(
            operation="create_instance",
            candidates=self._render(CREATE_CANDIDATES),
            build=self._request_builder("POST", json=payload),
            expect="created",
            instance_name=name,
            on_conflict=resolve_conflict,
            session=self._session,
        )
        return cast(CreatedInstance, result)

    async def get_connection_code(self, name: str) -> PairingArtifact:
        """Fetch the current QR code and/or pairing code for an instance."""
        await self._session.get_credential()
        result = await self._dispatcher.dispatch(
            operation="get_connection_code",
            candidates=self._render(CONNECT_CANDIDATES, name),
            build=self._request_builder("GET"),
            expect="pairing",
            instance_name=name,
            session=self._session,
        )
        return cast(PairingArtifact, result)

    async def connect_with_pairing_code(self, name: str, phone_number: str) -> PairingResult:
        """Create an instance bound to a phone number and return its pairing material.

        The provider needs ``qrcode: true`` even when a number is supplied in
        order to also produce a pairing code, and the new instance is not
        queryable immediately, hence the settle delay before the fetch.
        """
        created = await self.create_instance(name, wants_qr_code=True, phone_number=phone_number)
        await self._sleep(self._settle_delay_seconds)
        artifact = await self.get_connection_code(name)
        return PairingResult(name=name, artifact=artifact, instance_token=created.instance_token)

    async def get_connection_state(
        self, name: str, instance_token: str | None = None
    ) -> InstanceStatus:
        """Read the instance's connection state, falling back to the instance listing."""
        session = None if instance_token else self._session
        if session is not None:
            await session.get_credential()
        build = self._request_builder("GET", instance_token=instance_token)

        try:
            result = await self._dispatcher.dispatch(
                operation="get_connection_state",
                candidates=self._render(STATUS_CANDIDATES, name),
                build=build,
                expect="state",
                instance_name=name,
                session=session,
            )
        except (AllCandidatesExhausted, ProviderError) as exc:
            logger.info("provider_state_listing_fallback", instance_name=name, error=exc.detail)
            result = await self._dispatcher.dispatch(
                operation="list_instances",
                candidates=self._render(LIST_CANDIDATES),
                build=build,
                expect="state",
                instance_name=name,
                session=session,
            )
        return InstanceStatus(name=name, state=cast(ConnectionState, result))

    async def delete_instance(self, name: str, instance_token: str | None = None) -> bool:
        """Delete an instance; return False when the provider reports it already gone."""
        session = None if instance_token else self._session
        if session is not None:
            await session.get_credential()
        try:
            await self._dispatcher.dispatch(
                operation="delete_instance",
                candidates=self._render(DELETE_CANDIDATES, name),
                build=self._request_builder("DELETE", instance_token=instance_token),
                expect="acknowledged",
                instance_name=name,
                session=session,
            )
        except AllCandidatesExhausted as exc:
            if exc.attempts and all(attempt.status_code == 404 for attempt in exc.attempts):
                logger.info("provider_instance_already_absent", instance_name=name)
                return False
            raise
        logger.info("provider_instance_deleted", instance_name=name)
        return True

    async def logout_instance(self, name: str, instance_token: str | None = None) -> None:
        """Unpair the instance from its device without deleting it."""
        session = None if instance_token else self._session
        if session is not None:
            await session.get_credential()
        await self._dispatcher.dispatch(
            operation="logout_instance",
            candidates=self._render(LOGOUT_CANDIDATES, name),
            build=self._request_builder("POST", instance_token=instance_token),
            expect="acknowledged",
            instance_name=name,
            session=session,
        )

    async def send_text_message(
        self,
        name: str,
        instance_token: str | None,
        recipient: str,
        text: str,
    ) -> SendAck:
        """Send a text message through an instance using its instance token."""
        if not instance_token:
            raise InstanceTokenRequired(f"Instance '{name}' has no instance token.")
        payload = {"number": normalize_recipient(recipient, self._country_code), "text": text}
        result = await self._dispatcher.dispatch(
            operation="send_text_message",
            candidates=self._render(SEND_TEXT_CANDIDATES, name),
            build=self._request_builder("POST", json=payload, instance_token=instance_token),
            expect="sent",
            instance_name=name,
        )
        return cast(SendAck, result)

    async def send_image_message(
        self,
        name: str,
        instance_token: str | None,
        recipient: str,
        media_url: str,
        caption: str = "",
        file_name: str | None = None,
    ) -> SendAck:
        """Send an image by URL, retrying with the nested media payload shape."""
        if not instance_token:
            raise InstanceTokenRequired(f"Instance '{name}' has no instance token.")
        number = normalize_recipient(recipient, self._country_code)
        mimetype = _image_mimetype(media_url)
        final_name = (
            file_name
            or media_url.split("?", 1)[0].rsplit("/", 1)[-1]
            or f"image.{mimetype.split('/', 1)[1]}"
        )

        primary: dict[str, Any] = {
            "number": number,
            "mediatype": "image",
            "mimetype": mimetype,
            "media": media_url,
            "fileName": final_name,
        }
        if caption:
            primary["caption"] = caption
        alternate: dict[str, Any] = {
            "number": number,
            "mediaMessage": {
                "mediatype": "image",
                "fileName": final_name,
                "caption": caption,
                "media": media_url,
            },
            "options": {"delay": 1200, "presence": "composing"},
        }

        candidates = self._render(SEND_MEDIA_CANDIDATES, name)
        try:
            result = await self._dispatcher.dispatch(
                operation="send_image_message",
                candidates=candidates,
                build=self._request_builder("POST", json=primary, instance_token=instance_token),
                expect="sent",
                instance_name=name,
            )
        except (AllCandidatesExhausted, ProviderError) as exc:
            logger.warning("provider_media_payload_fallback", instance_name=name, error=exc.detail)
            result = await self._dispatcher.dispatch(
                operation="send_image_message_alternate",
                candidates=candidates,
                build=self._request_builder("POST", json=alternate, instance_token=instance_token),
                expect="sent",
                instance_name=name,
            )
        return cast(SendAck, result)

    async def check_connection(self) -> bool:
        """Return True when the provider answers the instance listing."""
        try:
            await self._session.get_credential()
            await self._dispatcher.dispatch(
                operation="check_connection",
                candidates=self._render(LIST_CANDIDATES),
                build=self._request_builder("GET"),
                expect="acknowledged",
                session=self._session,
            )
        except MessagingError:
            return False
        return True

    async def aclose(self) -> None:
        """Close underlying HTTP client if owned by this instance."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> InstanceLifecycleClient:
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        """Exit async context manager and close managed resources."""
        del exc_type, exc, tb
        await self.aclose()

    def _render(
        self, candidates: tuple[EndpointCandidate, ...], name: str = ""
    ) -> list[tuple[EndpointCandidate, str]]:
        """Render candidate URLs against the configured provider URL."""
        return render_candidates(candidates, self._base_url, name)

    def _request_builder(
        self,
        method: str,
        json: dict[str, Any] | None = None,
        instance_token: str | None = None,
    ) -> BuildRequest:
        """Return a request factory authenticating with the instance token or the session."""

        def build(candidate: EndpointCandidate, url: str) -> httpx.Request:
            if candidate.requires_instance_token and not instance_token:
                raise InstanceTokenRequired("Endpoint requires an instance token.")
            request = self._client.build_request(candidate.method or method, url, json=json)
            if instance_token:
                request.headers["apikey"] = instance_token
                return request
            return self._session.authorize(request)

        return build
