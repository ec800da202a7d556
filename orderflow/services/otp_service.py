"""Hand-off code generation and verification."""

import hmac
import secrets

from orderflow.core.config import settings

MIN_OTP_LENGTH: int = 4
MAX_OTP_LENGTH: int = 6


def generate(length: int | None = None) -> str:
    """Return a uniformly random numeric code without a leading zero."""
    size = length or settings.otp_length
    if not MIN_OTP_LENGTH <= size <= MAX_OTP_LENGTH:
        raise ValueError(f"OTP length must be between {MIN_OTP_LENGTH} and {MAX_OTP_LENGTH}")
    low = 10 ** (size - 1)
    return str(low + secrets.randbelow(9 * low))


def verify(expected: str, provided: str | None) -> bool:
    """Exact match after trimming surrounding whitespace from the provided code."""
    if provided is None:
        return False
    candidate = provided.strip()
    if not candidate:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), candidate.encode("utf-8"))


def attempts_exhausted(failed_attempts: int) -> bool:
    return settings.otp_max_attempts > 0 and failed_attempts >= settings.otp_max_attempts
