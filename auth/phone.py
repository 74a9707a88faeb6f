"""
auth/phone.py -- Pakistani mobile number normalization and validation.

Canonical form is +923xxxxxxxxx: country code 92, mobile prefix 3, then
nine digits (13 characters in total). Users type numbers in several local
shapes, so normalization runs first and validation only ever sees the
canonical candidate:

    "0300-1234567"   -> "+923001234567"
    "923001234567"   -> "+923001234567"
    "+92 300 1234567"-> "+923001234567"
"""

import re

PHONE_PATTERN = re.compile(r"\+923[0-9]{9}")


def normalize_phone(phone: str) -> str:
    """Return phone rewritten toward canonical +92 form. Does not validate."""
    phone = phone.strip().replace(" ", "").replace("-", "")
    if phone.startswith("03"):
        phone = "+92" + phone[1:]
    if phone.startswith("92"):
        phone = "+" + phone
    return phone


def is_valid_phone(phone: str) -> bool:
    """True if phone is already in canonical form."""
    return PHONE_PATTERN.fullmatch(phone) is not None


def validate_phone(phone: str) -> tuple[bool, str]:
    """Normalize and validate in one step.

    Returns: (is_valid, normalized_number)
    """
    normalized = normalize_phone(phone)
    return is_valid_phone(normalized), normalized
