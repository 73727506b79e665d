"""Normalization of heterogeneous provider responses into typed results.

The provider answers the same logical operation with raw image bytes, bare
base64 text, several JSON shapes, or an HTML login page depending on the
deployment. Every extraction rule lives in the ordered field tables below so a
new provider quirk is added in exactly one place.
"""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from messaging.types import (
    Acknowledged,
    ConnectionState,
    CreatedInstance,
    Inconclusive,
    PairingArtifact,
    ProviderFailure,
    SendAck,
)

Expectation = Literal["pairing", "state", "created", "acknowledged", "sent"]
FieldPath = tuple[str, ...]

NormalizedResult = (
    PairingArtifact
    | ConnectionState
    | CreatedInstance
    | SendAck
    | Acknowledged
    | Inconclusive
    | ProviderFailure
)

QR_CODE_FIELDS: tuple[FieldPath, ...] = (
    ("qrcode",),
    ("base64",),
    ("response", "qrcode"),
    ("response", "base64"),
    ("data", "qrcode"),
    ("data", "base64"),
    ("qrcode", "base64"),
    ("qrcode", "code"),
)

PAIRING_CODE_FIELDS: tuple[FieldPath, ...] = (
    ("pairingCode",),
    ("code",),
    ("pairing_code",),
    ("response", "pairingCode"),
    ("response", "code"),
    ("data", "pairingCode"),
    ("data", "code"),
    ("pairingCode", "code"),
)

STATE_FIELDS: tuple[FieldPath, ...] = (
    ("instance", "status"),
    ("instance", "state"),
    ("instance", "connectionState"),
    ("data", "instance", "status"),
    ("data", "instance", "state"),
    ("data", "instance", "connectionState"),
    ("status",),
    ("state",),
    ("connectionState",),
    ("connectionStatus",),
)

INSTANCE_TOKEN_FIELDS: tuple[FieldPath, ...] = (
    ("data", "token"),
    ("token",),
    ("hash", "apikey"),
    ("hash",),
    ("instance", "token"),
    ("apikey",),
)

INSTANCE_NAME_FIELDS: tuple[FieldPath, ...] = (
    ("instance", "instanceName"),
    ("instanceName",),
    ("name",),
)

MESSAGE_ID_FIELDS: tuple[FieldPath, ...] = (("key", "id"), ("messageId",), ("id",))

ERROR_MESSAGE_FIELDS: tuple[FieldPath, ...] = (
    ("message",),
    ("error",),
    ("response", "message"),
)

LISTING_FIELDS = ("instances", "data")

_BARE_BASE64 = re.compile(r"^[A-Za-z0-9+/=]+$")
_PAIRING_CODE_SHAPE = re.compile(r"^[A-Za-z0-9-]{1,16}$")
_BARE_BASE64_MIN_LENGTH = 100
_NOT_JSON = object()


@dataclass(frozen=True)
class RawResponse:
    """Transport-agnostic view of one provider HTTP response."""

    status_code: int
    content_type: str
    body: bytes

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> RawResponse:
        """Capture status, content type and body from an httpx response."""
        return cls(
            status_code=response.status_code,
            content_type=response.headers.get("content-type", ""),
            body=response.content,
        )

    @property
    def media_type(self) -> str:
        """Return the lowercased media type without parameters."""
        return self.content_type.split(";", 1)[0].strip().lower()

    @property
    def text(self) -> str:
        """Decode the body as UTF-8 text."""
        return self.body.decode("utf-8", errors="replace")


def format_pairing_code(code: str) -> str:
    """Format an 8-character pairing code as XXXX-XXXX; pass anything else through."""
    cleaned = re.sub(r"[\s-]", "", code)
    if len(cleaned) == 8:
        return f"{cleaned[:4]}-{cleaned[4:]}"
    return cleaned


def to_data_url(value: str, subtype: str = "png") -> str:
    """Wrap a base64 image payload as a data URL unless it already is one."""
    if value.startswith("data:"):
        return value
    return f"data:image/{subtype};base64,{value}"


def is_success(result: NormalizedResult) -> bool:
    """Return True when a normalized result is a definitive success."""
    return not isinstance(result, (Inconclusive, ProviderFailure))


def lookup(payload: Any, path: FieldPath) -> Any:
    """Walk nested dictionaries along path, returning None on any miss."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_string(payload: Any, paths: tuple[FieldPath, ...]) -> str | None:
    """Return the first non-empty string found along the ordered paths."""
    for path in paths:
        value = lookup(payload, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_pairing_code(payload: Any) -> str | None:
    """Return the first plausible pairing code along the ordered paths."""
    for path in PAIRING_CODE_FIELDS:
        value = lookup(payload, path)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            value = str(value)
        if not isinstance(value, str):
            continue
        candidate = value.strip()
        if candidate and _PAIRING_CODE_SHAPE.match(candidate):
            return candidate
    return None


def _error_message(payload: dict[str, Any], status_code: int) -> str:
    """Extract the provider's error message from a JSON error body."""
    for path in ERROR_MESSAGE_FIELDS:
        value = lookup(payload, path)
        if isinstance(value, list):
            value = "; ".join(str(item) for item in value if item)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return f"Provider returned HTTP {status_code}."


def _parse_json(body: bytes) -> Any:
    """Parse body as JSON, returning a sentinel when it is not JSON."""
    if not body.strip():
        return _NOT_JSON
    try:
        return json.loads(body)
    except ValueError:
        return _NOT_JSON


def _image_subtype(media_type: str) -> str:
    """Map an image content type onto the data URL subtype."""
    if "jpeg" in media_type or "jpg" in media_type:
        return "jpeg"
    return "png"


class ResponseNormalizer:
    """Turn raw provider responses into typed results or soft failures."""

    def normalize(
        self,
        raw: RawResponse,
        expect: Expectation,
        instance_name: str | None = None,
    ) -> NormalizedResult:
        """Normalize one response according to the operation's expectation."""
        if raw.status_code >= 400:
            return self._failure(raw, expect)
        if not 200 <= raw.status_code < 300:
            return Inconclusive("unexpected_status", raw.status_code)

        media_type = raw.media_type
        if media_type.startswith("image/"):
            if expect != "pairing":
                return Inconclusive("unexpected_image", raw.status_code)
            encoded = base64.b64encode(raw.body).decode("ascii")
            return PairingArtifact(qr_code=to_data_url(encoded, _image_subtype(media_type)))
        if media_type == "text/html":
            return Inconclusive("html_page", raw.status_code)
        if expect == "acknowledged":
            return Acknowledged(raw.status_code)

        payload = _parse_json(raw.body)
        if payload is _NOT_JSON or not isinstance(payload, (dict, list)):
            return self._from_text(raw, expect, instance_name)

        listing = self._listing(payload)
        if listing is not None:
            payload = self._select_instance(listing, instance_name)
            if payload is None:
                return Inconclusive("instance_not_listed", raw.status_code)
        if not isinstance(payload, dict):
            return Inconclusive("unexpected_json", raw.status_code)

        if expect == "pairing":
            return self._pairing(payload, raw.status_code)
        if expect == "state":
            return self._state(payload, raw.status_code)
        if expect == "created":
            token = first_string(payload, INSTANCE_TOKEN_FIELDS)
            return CreatedInstance(name=instance_name or "", instance_token=token)
        return SendAck(
            message_id=first_string(payload, MESSAGE_ID_FIELDS),
            status=first_string(payload, (("status",),)),
        )

    @staticmethod
    def _failure(raw: RawResponse, expect: Expectation) -> NormalizedResult:
        """Classify an HTTP error response."""
        if expect == "acknowledged" and raw.status_code == 404:
            return Inconclusive("not_found", raw.status_code)
        if raw.media_type == "text/html":
            return Inconclusive("html_page", raw.status_code)
        payload = _parse_json(raw.body)
        if isinstance(payload, dict):
            return ProviderFailure(raw.status_code, _error_message(payload, raw.status_code))
        return Inconclusive(f"http_{raw.status_code}", raw.status_code)

    @staticmethod
    def _from_text(
        raw: RawResponse, expect: Expectation, instance_name: str | None
    ) -> NormalizedResult:
        """Handle 2xx bodies that are not JSON."""
        text = raw.text.strip()
        if expect == "pairing":
            if len(text) > _BARE_BASE64_MIN_LENGTH and _BARE_BASE64.match(text):
                return PairingArtifact(qr_code=to_data_url(text))
            return Inconclusive("unrecognized_body", raw.status_code)
        if not text and expect == "created":
            return CreatedInstance(name=instance_name or "")
        if not text and expect == "sent":
            return SendAck()
        return Inconclusive("unrecognized_body", raw.status_code)

    @staticmethod
    def _listing(payload: Any) -> list[Any] | None:
        """Return the instance list when the payload is a list-all shape."""
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            for key in LISTING_FIELDS:
                value = payload.get(key)
                if isinstance(value, list):
                    return value
        return None

    @staticmethod
    def _select_instance(listing: list[Any], instance_name: str | None) -> dict[str, Any] | None:
        """Pick the listed element whose name field matches the instance name."""
        if not instance_name:
            return None
        for element in listing:
            if not isinstance(element, dict):
                continue
            for path in INSTANCE_NAME_FIELDS:
                if lookup(element, path) == instance_name:
                    return element
        return None

    @staticmethod
    def _pairing(payload: dict[str, Any], status_code: int) -> NormalizedResult:
        """Extract QR code and pairing code, either of which may be absent."""
        qr_code = first_string(payload, QR_CODE_FIELDS)
        pairing_code = _first_pairing_code(payload)
        if qr_code is None and pairing_code is None:
            return Inconclusive("no_pairing_material", status_code)
        return PairingArtifact(
            qr_code=to_data_url(qr_code) if qr_code is not None else None,
            pairing_code=format_pairing_code(pairing_code) if pairing_code is not None else None,
        )

    @staticmethod
    def _state(payload: dict[str, Any], status_code: int) -> NormalizedResult:
        """Extract and fold the connection state."""
        for path in STATE_FIELDS:
            value = lookup(payload, path)
            if isinstance(value, str) and value.strip():
                return ConnectionState.from_raw(value)
        return Inconclusive("no_state", status_code)
