"""
Identifier and verification code generation.

WHAT: Produces proposal numbers and signature verification codes.

WHY: Verification codes gate who may sign a proposal, so they must not be
guessable. The ``secrets`` module draws from the OS CSPRNG, unlike the
``random`` module.
"""

import secrets
import string
from datetime import datetime
from typing import Optional

from proposal_engine.core.config import settings


# Uppercase alphanumerics only: codes are read out and typed by signers
VERIFICATION_ALPHABET = string.ascii_uppercase + string.digits

MIN_VERIFICATION_CODE_LENGTH = 8


def generate_verification_code(length: Optional[int] = None) -> str:
    """
    Generate a signature verification code.

    Args:
        length: Number of characters (defaults to settings, never below 8)

    Returns:
        Random uppercase alphanumeric code
    """
    length = max(length or settings.VERIFICATION_CODE_LENGTH, MIN_VERIFICATION_CODE_LENGTH)
    return "".join(secrets.choice(VERIFICATION_ALPHABET) for _ in range(length))


def generate_proposal_number(now: Optional[datetime] = None) -> str:
    """
    Generate a human-readable, unique-enough proposal number.

    Format: ``PROP-YYYYMMDD-XXXXXX``. Uniqueness is enforced by the
    database constraint; the random suffix makes collisions unlikely.

    Args:
        now: Timestamp used for the date part (defaults to utcnow)

    Returns:
        Proposal number string
    """
    now = now or datetime.utcnow()
    suffix = "".join(secrets.choice(VERIFICATION_ALPHABET) for _ in range(6))
    return f"PROP-{now:%Y%m%d}-{suffix}"


def verification_codes_match(expected: str, supplied: str) -> bool:
    """Constant-time, case-insensitive verification code comparison."""
    return secrets.compare_digest(
        expected.upper().encode("utf-8"),
        supplied.strip().upper().encode("utf-8"),
    )
