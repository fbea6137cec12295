from __future__ import annotations

import re

from .config import DEFAULT_COUNTRY_CODE

_SEPARATORS = re.compile(r"[\s\-().]")
_E164 = re.compile(r"^\+[1-9]\d{7,14}$")


def normalize_phone(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Bring a user-typed number to E.164.

    Lookups, PIN derivation and registration all key on the normalized form,
    so every entry point must go through here.

    >>> normalize_phone("0722 123 456")
    '+40722123456'
    >>> normalize_phone("(+40) 722-123-456")
    '+40722123456'
    """
    cleaned = _SEPARATORS.sub("", raw or "")
    if not cleaned:
        return ""
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("00"):
        return "+" + cleaned[2:]
    if cleaned.startswith("0"):
        return f"+{country_code}{cleaned[1:]}"
    return f"+{country_code}{cleaned}"


def is_valid_phone(phone: str) -> bool:
    return bool(_E164.match(phone))


def mask_phone(phone: str) -> str:
    if not phone:
        return "unknown"
    if len(phone) < 8:
        return "invalid"
    return f"{phone[:3]}****{phone[-4:]}"
