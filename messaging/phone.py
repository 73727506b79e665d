"""Phone number and instance name normalization."""

from __future__ import annotations

import re
import unicodedata

from messaging.exceptions import InvalidPhoneNumber

DEFAULT_COUNTRY_CODE = "55"

_NON_DIGITS = re.compile(r"\D")
_NON_SLUG = re.compile(r"[^a-z0-9]+")


def normalize_phone_number(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Convert user input into the provider's international digit format.

    Local numbers (10 or 11 digits) get the country code prefixed, numbers
    that already carry it (12 or 13 digits) pass through unchanged. Any other
    length is rejected rather than truncated or padded.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) in (10, 11):
        return f"{country_code}{digits}"
    if len(digits) in (12, 13):
        return digits
    raise InvalidPhoneNumber(
        f"Invalid phone number: {len(digits)} digits after cleanup.", raw_value=raw
    )


def normalize_recipient(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Normalize a message recipient, dropping stray dialing zeros first."""
    digits = _NON_DIGITS.sub("", raw or "")
    if digits.startswith("00"):
        digits = digits[2:]
    digits = digits.lstrip("0")
    if digits.startswith(f"{country_code}0"):
        digits = country_code + digits[len(country_code) + 1 :]
    try:
        return normalize_phone_number(digits, country_code=country_code)
    except InvalidPhoneNumber as exc:
        raise InvalidPhoneNumber(exc.detail, raw_value=raw) from exc


def normalize_instance_name(raw: str) -> str:
    """Slugify a display name into a provider-safe instance name."""
    decomposed = unicodedata.normalize("NFD", raw.lower())
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return _NON_SLUG.sub("-", stripped).strip("-")
