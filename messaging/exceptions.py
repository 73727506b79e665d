"""Messaging client exception hierarchy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from messaging.types import CandidateAttempt


class MessagingError(Exception):
    """Base class for all messaging-client failures surfaced to callers."""

    code = "messaging_error"
    status_code = 502

    def __init__(self, detail: str) -> None:
        """Initialize with a human-readable detail message."""
        super().__init__(detail)
        self.detail = detail


class NoCredentialsConfigured(MessagingError):
    """Raised when neither login credentials nor a static key are configured."""

    code = "no_credentials_configured"
    status_code = 503


class AuthenticationUnavailable(MessagingError):
    """Raised when every login endpoint failed to produce a token."""

    code = "authentication_unavailable"
    status_code = 502


class InvalidPhoneNumber(MessagingError):
    """Raised when a phone number cannot be normalized."""

    code = "invalid_phone_number"
    status_code = 422

    def __init__(self, detail: str, raw_value: str) -> None:
        """Initialize with the rejected raw input."""
        super().__init__(detail)
        self.raw_value = raw_value


class InstanceTokenRequired(MessagingError):
    """Raised when an instance-scoped operation is called without its token."""

    code = "instance_token_required"
    status_code = 400


class ProviderError(MessagingError):
    """Raised when the final candidate answered with a structured provider error."""

    code = "provider_error"
    status_code = 502

    def __init__(self, detail: str, provider_status: int | None = None) -> None:
        """Initialize with the upstream HTTP status code."""
        super().__init__(detail)
        self.provider_status = provider_status


class ProviderConflict(MessagingError):
    """Raised when an instance name still conflicts after delete-and-retry."""

    code = "provider_conflict"
    status_code = 409


class AllCandidatesExhausted(MessagingError):
    """Raised when every endpoint candidate failed or was inconclusive."""

    code = "all_candidates_exhausted"
    status_code = 502

    def __init__(
        self,
        operation: str,
        attempts: list[CandidateAttempt],
        last_error: str | None = None,
    ) -> None:
        """Initialize with the attempt trail and the last failure seen."""
        detail = f"No provider endpoint answered '{operation}'."
        if last_error:
            detail = f"{detail} Last error: {last_error}"
        super().__init__(detail)
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
