from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class AccountStatus(str, Enum):
    """Email verification state; ``PENDING`` until the first OTP is verified."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"


@dataclass(slots=True)
class Account:
    """Aggregate root for a credential-backed user account.

    ``status`` tracks email verification while ``is_active`` tracks whether a
    session is live; login and logout only touch the latter.
    """

    account_id: str
    first_name: str
    last_name: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    status: AccountStatus = AccountStatus.PENDING
    is_active: bool = False
    otp_hash: str | None = None
    otp_expiry: datetime | None = None
    reset_otp_hash: str | None = None
    reset_otp_expiry: datetime | None = None
    refresh_token: str | None = None
    referral_code: str | None = None
    referred_by: str | None = None


SECRET_FIELDS = frozenset(
    {
        "password_hash",
        "otp_hash",
        "otp_expiry",
        "reset_otp_hash",
        "reset_otp_expiry",
        "refresh_token",
    }
)


def sanitize_account(account: Account) -> dict[str, Any]:
    """Return a plain mapping of the account without credential material."""
    data = asdict(account)
    for field_name in SECRET_FIELDS:
        data.pop(field_name, None)
    data["status"] = account.status.value
    return data
