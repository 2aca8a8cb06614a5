"""Phone number normalisation and matching.

Stored numbers come from CSV imports in every format imaginable
("(617) 555-0100", "+1 617 555 0100", "6175550100"). Vapi reports E.164.
Matching is done on the last ten digits (US national number).
"""

from __future__ import annotations

import re

_NON_DIGITS = re.compile(r"\D")

NATIONAL_NUMBER_LENGTH = 10


def digits_only(raw: str | None) -> str:
    """Strip everything except digits."""
    if not raw:
        return ""
    return _NON_DIGITS.sub("", raw)


def normalize_phone(raw: str | None) -> str:
    """Normalise a phone number to its last ten digits.

    Args:
        raw: Phone number in any format

    Returns:
        Up to ten trailing digits, or "" for empty input
    """
    return digits_only(raw)[-NATIONAL_NUMBER_LENGTH:]


def last_four(raw: str | None) -> str:
    """Last four digits, used as a cheap SQL pre-filter."""
    return normalize_phone(raw)[-4:]


def phones_match(a: str | None, b: str | None) -> bool:
    """Compare two numbers on their normalised form.

    Empty numbers never match anything.
    """
    left = normalize_phone(a)
    right = normalize_phone(b)
    return bool(left) and left == right


def to_e164(raw: str | None, default_country_code: str = "1") -> str:
    """Best-effort E.164 formatting for dialling.

    Numbers that already carry a '+' keep their country code; bare ten-digit
    numbers get the default country code.
    """
    if not raw:
        return ""
    stripped = raw.strip()
    digits = digits_only(stripped)
    if stripped.startswith("+"):
        return f"+{digits}"
    if len(digits) == NATIONAL_NUMBER_LENGTH:
        return f"+{default_country_code}{digits}"
    if len(digits) == NATIONAL_NUMBER_LENGTH + 1 and digits.startswith(default_country_code):
        return f"+{digits}"
    return f"+{digits}" if digits else ""
