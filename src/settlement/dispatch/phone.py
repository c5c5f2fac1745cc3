"""Ivorian phone number normalization for outbound gateway calls."""

import re

_SEPARATORS = re.compile(r"[\s\-.]")
_COUNTRY_PREFIX = re.compile(r"^(\+225|00225)")


def normalize_phone(phone: str | None) -> str:
    """International form for the courier service.

    ``07 07 07 07 07`` → ``+2250707070707``, ``00225…`` → ``+225…``;
    anything else is returned without separators but otherwise untouched.
    """
    cleaned = _SEPARATORS.sub("", phone or "")
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("00225"):
        return "+" + cleaned[2:]
    if len(cleaned) == 10:
        return "+225" + cleaned
    return cleaned


def local_phone(phone: str | None) -> str:
    """Ten-digit local form expected by the payment gateway."""
    cleaned = _SEPARATORS.sub("", phone or "")
    return _COUNTRY_PREFIX.sub("", cleaned)
