"""Domain-level request contracts and collaborator interfaces shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Protocol

from .account import Account


@dataclass(slots=True)
class SignupInput:
    """Validated inputs required to register an account."""

    first_name: str
    last_name: str
    email: str
    password: str
    confirm_password: str
    referral_code: str | None = None


@dataclass(slots=True)
class VerifyOtpInput:
    email: str
    otp: str


@dataclass(slots=True)
class LoginInput:
    email: str
    password: str


@dataclass(slots=True)
class ResetPasswordInput:
    email: str
    reset_otp: str
    new_password: str
    confirm_password: str


@dataclass(slots=True)
class NewAccount:
    """Fields the store needs to insert a freshly registered, unverified account."""

    first_name: str
    last_name: str
    email: str
    password_hash: str
    otp_hash: str
    otp_expiry: datetime
    referred_by: str | None = None


@dataclass(slots=True)
class Recipient:
    name: str
    address: str


class AccountStore(Protocol):
    """Durable account persistence keyed by id and by (normalised) email."""

    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: str) -> Account | None: ...

    def create(self, new_account: NewAccount) -> Account:
        """Insert an account; raises ``AuthError(CONFLICT)`` when the email is taken."""
        ...

    def update(self, account_id: str, **changes: Any) -> Account:
        """Apply ``changes`` atomically; raises ``AuthError(NOT_FOUND)`` for unknown ids."""
        ...


class NotificationGateway(Protocol):
    """Outbound templated mail; ``True`` means the message was accepted for delivery."""

    def send(
        self,
        recipient: Recipient,
        subject: str,
        template_name: str,
        context: Mapping[str, Any],
    ) -> bool: ...
