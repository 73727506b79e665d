"""Public messaging client exports."""

from messaging.client import InstanceLifecycleClient
from messaging.exceptions import (
    AllCandidatesExhausted,
    AuthenticationUnavailable,
    InstanceTokenRequired,
    InvalidPhoneNumber,
    MessagingError,
    NoCredentialsConfigured,
    ProviderConflict,
    ProviderError,
)
from messaging.phone import normalize_instance_name, normalize_phone_number
from messaging.session import ProviderCredentials
from messaging.types import ConnectionState, InstanceStatus, PairingArtifact, SendAck

__all__ = [
    "AllCandidatesExhausted",
    "AuthenticationUnavailable",
    "ConnectionState",
    "InstanceLifecycleClient",
    "InstanceStatus",
    "InstanceTokenRequired",
    "InvalidPhoneNumber",
    "MessagingError",
    "NoCredentialsConfigured",
    "PairingArtifact",
    "ProviderConflict",
    "ProviderCredentials",
    "ProviderError",
    "SendAck",
    "normalize_instance_name",
    "normalize_phone_number",
]
