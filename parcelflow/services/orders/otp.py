"""Delivery handshake codes."""

from __future__ import annotations

import secrets
from typing import Optional

# No I/O (vs 1/0) and no 0/1 digits, so codes survive being read aloud
OTP_LETTERS = "ABCDEFGHJKLMNPQRSTUVWXYZ"
OTP_DIGITS = "23456789"
OTP_PAIRS = 3


def generate_otp() -> str:
    """Six characters, letter/digit alternating, e.g. ``K7M3P9``."""
    return "".join(
        secrets.choice(OTP_LETTERS) + secrets.choice(OTP_DIGITS)
        for _ in range(OTP_PAIRS)
    )


def otp_matches(stored: Optional[str], provided: Optional[str]) -> bool:
    """Case-insensitive, whitespace-tolerant comparison in constant time."""
    if not stored or not provided:
        return False
    return secrets.compare_digest(
        stored.strip().upper().encode(), provided.strip().upper().encode()
    )
