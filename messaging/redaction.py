"""Redaction helpers for provider payloads written to logs."""

from __future__ import annotations

from typing import Any

SENSITIVE_KEYS = {
    "access_token",
    "accesstoken",
    "api_key",
    "apikey",
    "authorization",
    "hash",
    "instance_token",
    "password",
    "token",
}
PHONE_KEYS = {"number", "phone", "phone_number", "recipient"}
REDACTED = "***REDACTED***"


def _is_sensitive_key(key: str) -> bool:
    """Return True when key likely carries credential material."""
    normalized = key.lower().replace("-", "_")
    if normalized in SENSITIVE_KEYS:
        return True
    return "token" in normalized or "password" in normalized or "api_key" in normalized


def mask_phone(value: str) -> str:
    """Keep only the last four digits of a phone number."""
    if len(value) <= 4:
        return "*" * len(value)
    return f"{'*' * (len(value) - 4)}{value[-4:]}"


def redact_mapping(values: dict[str, Any]) -> dict[str, Any]:
    """Redact credentials and mask phone numbers in a payload."""
    redacted: dict[str, Any] = {}
    for key, value in values.items():
        if _is_sensitive_key(key):
            redacted[key] = REDACTED
        elif key.lower() in PHONE_KEYS and isinstance(value, str):
            redacted[key] = mask_phone(value)
        elif isinstance(value, dict):
            redacted[key] = redact_mapping(value)
        elif isinstance(value, list):
            redacted[key] = [
                redact_mapping(item) if isinstance(item, dict) else item for item in value
            ]
        else:
            redacted[key] = value
    return redacted
