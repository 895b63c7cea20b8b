"""One-time passcode and referral code generation."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..config import Settings

REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def generate_otp(length: int = 4) -> str:
    """Return a numeric code of exactly ``length`` digits (no leading zero)."""
    if length < 1:
        raise ValueError("otp length must be positive")
    low = 10 ** (length - 1)
    high = 10**length - 1
    return str(low + secrets.randbelow(high - low + 1))


def generate_referral_code(length: int = 6) -> str:
    return "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(length))


@dataclass(frozen=True, slots=True)
class OtpPolicy:
    """Length and validity window shared by the signup and password-reset codes."""

    length: int = 4
    ttl: timedelta = timedelta(minutes=2)
    referral_code_length: int = 6

    @classmethod
    def from_settings(cls, settings: Settings) -> "OtpPolicy":
        return cls(
            length=settings.otp_length,
            ttl=timedelta(minutes=settings.otp_ttl_minutes),
            referral_code_length=settings.referral_code_length,
        )

    def new_code(self, now: datetime) -> tuple[str, datetime]:
        """Return a fresh plaintext code and the instant it stops being accepted."""
        return generate_otp(self.length), now + self.ttl

    def new_referral_code(self) -> str:
        return generate_referral_code(self.referral_code_length)
