"""Provider credential cache and request authorization."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, replace

import httpx
import structlog
from jose import jwt
from jose.exceptions import JWTError

from messaging.exceptions import AuthenticationUnavailable, NoCredentialsConfigured
from messaging.normalizer import FieldPath, first_string
from messaging.types import Credential, CredentialKind

LOGIN_PATHS: tuple[str, ...] = (
    "/auth/login",
    "/api/auth/login",
    "/api/v1/auth/login",
    "/manager/auth/login",
    "/public/auth/login",
)
LOGIN_TOKEN_FIELDS: tuple[FieldPath, ...] = (
    ("data", "token"),
    ("token",),
    ("accessToken",),
    ("access_token",),
)
DEFAULT_CREDENTIAL_TTL_SECONDS = 24 * 60 * 60
UNAUTHORIZED_THRESHOLD = 2

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderCredentials:
    """Configured authentication material for the provider's global endpoints."""

    email: str | None = None
    password: str | None = None
    api_key: str | None = None
    global_api_key: str | None = None

    @property
    def has_login(self) -> bool:
        """Return True when email and password are both configured."""
        return bool(self.email and self.password)

    @property
    def static_key(self) -> str | None:
        """Return the instance API key, falling back to the global key."""
        return self.api_key or self.global_api_key or None


def classify_credential(value: str) -> CredentialKind:
    """Classify a credential string once: three dot-separated segments is a JWT."""
    segments = value.split(".")
    if len(segments) == 3 and all(segments):
        return CredentialKind.JWT
    return CredentialKind.STATIC_KEY


class AuthSession:
    """Cache one provider credential and mint a fresh one when it lapses."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        credentials: ProviderCredentials,
        ttl_seconds: int = DEFAULT_CREDENTIAL_TTL_SECONDS,
        now: Callable[[], float] | None = None,
    ) -> None:
        """Create a session; no login happens until a credential is requested."""
        self._http_client = http_client
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._ttl_seconds = ttl_seconds
        self._now = now or time.time
        self._credential: Credential | None = None
        self._consecutive_unauthorized = 0

    @property
    def credential(self) -> Credential | None:
        """Return the cached credential without minting."""
        return self._credential

    async def get_credential(self) -> Credential:
        """Return the cached credential, logging in again only when it is absent or expired."""
        cached = self._credential
        if cached is not None and not cached.is_expired(self._now()):
            return cached

        if self._credentials.has_login:
            credential = await self._login()
            if credential is not None:
                return self._store(credential, source="login")

        static_key = self._credentials.static_key
        if static_key:
            credential = Credential(value=static_key, kind=classify_credential(static_key))
            return self._store(credential, source="static_key")

        if self._credentials.has_login:
            raise AuthenticationUnavailable("All provider login endpoints failed.")
        raise NoCredentialsConfigured("No provider credentials are configured.")

    def authorize(self, request: httpx.Request) -> httpx.Request:
        """Attach the header scheme matching the cached credential's kind."""
        credential = self._credential
        if credential is None:
            raise NoCredentialsConfigured("No provider credential has been minted.")
        if credential.kind is CredentialKind.JWT:
            request.headers["Authorization"] = f"Bearer {credential.value}"
        else:
            request.headers["apikey"] = credential.value
        return request

    def invalidate(self) -> None:
        """Expire the cached credential so the next `get_credential` mints a new one.

        The credential stays attached to requests already being dispatched, so
        later candidates in the same dispatch are still authorized.
        """
        if self._credential is not None:
            logger.info("provider_credential_invalidated", kind=self._credential.kind.value)
            self._credential = replace(self._credential, expires_at=self._now())
        self._consecutive_unauthorized = 0

    def record_response(self, status_code: int) -> None:
        """Track 401 streaks on credential-authenticated requests."""
        if status_code == 401:
            self._consecutive_unauthorized += 1
            if self._consecutive_unauthorized >= UNAUTHORIZED_THRESHOLD:
                self.invalidate()
        elif 200 <= status_code < 300:
            self._consecutive_unauthorized = 0

    def _store(self, credential: Credential, source: str) -> Credential:
        """Cache a freshly minted credential."""
        self._credential = credential
        self._consecutive_unauthorized = 0
        logger.info(
            "provider_credential_minted",
            kind=credential.kind.value,
            source=source,
            expires_at=credential.expires_at,
        )
        return credential

    async def _login(self) -> Credential | None:
        """Try each login endpoint in order and return the first token obtained."""
        body = {"email": self._credentials.email, "password": self._credentials.password}
        for path in LOGIN_PATHS:
            url = f"{self._base_url}{path}"
            try:
                response = await self._http_client.post(url, json=body)
            except httpx.HTTPError as exc:
                logger.warning("provider_login_attempt_failed", url=url, error=str(exc))
                continue

            if not 200 <= response.status_code < 300:
                logger.warning(
                    "provider_login_attempt_failed", url=url, status_code=response.status_code
                )
                continue
            try:
                payload = response.json()
            except ValueError:
                logger.warning("provider_login_attempt_failed", url=url, error="invalid_json")
                continue

            token = first_string(payload, LOGIN_TOKEN_FIELDS)
            if token is None:
                logger.warning("provider_login_attempt_failed", url=url, error="missing_token")
                continue
            return Credential(
                value=token,
                kind=CredentialKind.JWT,
                expires_at=self._expiry_for(token),
            )
        return None

    def _expiry_for(self, token: str) -> float:
        """Return the default TTL expiry, capped by a readable `exp` claim."""
        expires_at = self._now() + self._ttl_seconds
        if classify_credential(token) is not CredentialKind.JWT:
            return expires_at
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return expires_at
        exp = claims.get("exp")
        if isinstance(exp, (int, float)) and not isinstance(exp, bool):
            return min(expires_at, float(exp))
        return expires_at
