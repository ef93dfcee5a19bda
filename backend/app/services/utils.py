"""Shared helpers for booking identifiers."""

import re
import secrets

# No 0/O or 1/I, which are easy to confuse when read back over the phone.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6

CODE_PREFIXES = {
    "reservation": "RES",
    "appointment": "APT",
    "order": "ORD",
}


def generate_confirmation_code(booking_type: str = "appointment", length: int = CODE_LENGTH) -> str:
    """Random, prefixed code such as ``APT-K7M2QX``.

    Uniqueness is enforced by the bookings table, not here.
    """
    prefix = CODE_PREFIXES.get(booking_type, "BKG")
    body = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
    return f"{prefix}-{body}"


def normalize_phone(value: str) -> str:
    """Digits only: "+52 (55) 1234-5678" -> "525512345678"."""
    return re.sub(r"\D", "", value or "")
