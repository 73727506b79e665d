"""Messaging client data contract types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal


class CredentialKind(str, Enum):
    """How a cached credential is presented to the provider."""

    JWT = "jwt"
    STATIC_KEY = "static_key"


@dataclass(frozen=True)
class Credential:
    """Provider credential with its mint-time classification."""

    value: str
    kind: CredentialKind
    expires_at: float | None = None

    def is_expired(self, now: float) -> bool:
        """Return True once the credential's expiry has been reached."""
        return self.expires_at is not None and now >= self.expires_at


class ConnectionState(str, Enum):
    """Folded connection state of a provider instance."""

    CREATED = "created"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"

    @classmethod
    def from_raw(cls, raw: object) -> ConnectionState:
        """Fold the provider's raw status vocabulary; unknown values mean disconnected."""
        value = str(raw).strip().lower() if raw is not None else ""
        return _STATE_ALIASES.get(value, cls.DISCONNECTED)


_STATE_ALIASES: dict[str, ConnectionState] = {
    "open": ConnectionState.CONNECTED,
    "connected": ConnectionState.CONNECTED,
    "close": ConnectionState.DISCONNECTED,
    "closed": ConnectionState.DISCONNECTED,
    "disconnected": ConnectionState.DISCONNECTED,
    "connecting": ConnectionState.CONNECTING,
    "created": ConnectionState.CREATED,
}


@dataclass(frozen=True)
class EndpointCandidate:
    """One URL template tried for a logical operation."""

    url_template: str
    requires_instance_token: bool = False
    method: str | None = None

    def render(self, base_url: str, root_url: str, name: str = "") -> str:
        """Render the template against the configured base URLs."""
        return self.url_template.format(base=base_url, root=root_url, name=name)


@dataclass(frozen=True)
class PairingArtifact:
    """QR code data-URL and/or formatted pairing code."""

    qr_code: str | None = None
    pairing_code: str | None = None


@dataclass(frozen=True)
class CreatedInstance:
    """Instance creation result with the optional instance-scoped token."""

    name: str
    instance_token: str | None = None


@dataclass(frozen=True)
class PairingResult:
    """Combined create-and-pair result."""

    name: str
    artifact: PairingArtifact
    instance_token: str | None = None


@dataclass(frozen=True)
class InstanceStatus:
    """Connection state reported for one instance."""

    name: str
    state: ConnectionState

    @property
    def is_connected(self) -> bool:
        """Return True when the instance is paired with a device."""
        return self.state is ConnectionState.CONNECTED


@dataclass(frozen=True)
class SendAck:
    """Provider acknowledgement for an outgoing message."""

    message_id: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class Acknowledged:
    """Bodiless success for delete/logout style operations."""

    status_code: int


@dataclass(frozen=True)
class Inconclusive:
    """Response that carried no usable data; the next candidate should be tried."""

    reason: str
    status_code: int | None = None


@dataclass(frozen=True)
class ProviderFailure:
    """Structured error body returned by the provider."""

    status_code: int
    message: str


AttemptOutcome = Literal[
    "success",
    "inconclusive",
    "provider_error",
    "transport_error",
    "conflict",
]


@dataclass(frozen=True)
class CandidateAttempt:
    """Record of one request issued during a dispatch."""

    url: str
    outcome: AttemptOutcome
    status_code: int | None = None
    detail: str | None = None
