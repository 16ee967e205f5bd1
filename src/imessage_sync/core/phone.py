"""Phone number normalization and display formatting (US/Canada assumed for 10 digits)."""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")


def is_email(identifier: str) -> bool:
    return "@" in identifier


def normalize_phone(phone: str) -> str | None:
    """Normalize a phone number to an E.164-like index key.

    Returns None for inputs too short to be a real number.
    """
    if not phone:
        return None

    digits = _NON_DIGITS.sub("", phone)
    if len(digits) < 7:
        return None

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits[0] == "1":
        return f"+{digits}"
    if len(digits) > 11 or phone.startswith("+"):
        return f"+{digits}"
    return f"+1{digits}"


def format_phone(phone: str) -> str:
    """Human-readable form, e.g. ``+1 (415) 555-0100``."""
    digits = _NON_DIGITS.sub("", phone)

    if len(digits) == 10:
        return f"+1 ({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11 and digits[0] == "1":
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    if len(digits) > 10:
        return phone if phone.startswith("+") else f"+{phone}"
    return phone


def format_phone_compact(phone: str) -> str:
    """Compact form used in subjects so mail filters can match, e.g. ``+14155550100``."""
    digits = _NON_DIGITS.sub("", phone)

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits[0] == "1":
        return f"+{digits}"
    return phone if phone.startswith("+") else f"+{phone}"


def normalize_identifier(identifier: str) -> str:
    """Normalize user input naming a conversation (phone or email)."""
    identifier = identifier.strip()
    if is_email(identifier):
        return identifier

    digits = _NON_DIGITS.sub("", identifier)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits[0] == "1":
        return f"+{digits}"
    if identifier.startswith("+"):
        return identifier
    if identifier.isdigit():
        return f"+{identifier}"
    return identifier
