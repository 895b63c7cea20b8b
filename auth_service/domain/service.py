"""Authentication service orchestrating the account state machine, OTPs and tokens."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from .account import Account, AccountStatus, sanitize_account
from .contracts import (
    AccountStore,
    LoginInput,
    NewAccount,
    NotificationGateway,
    Recipient,
    ResetPasswordInput,
    SignupInput,
    VerifyOtpInput,
)
from .errors import AuthError, ErrorKind
from ..metrics import instrumented
from ..security.hashing import SecretHasher
from ..security.otp import OtpPolicy
from ..security.tokens import TokenError, TokenIssuer, TokenPair, TokenType

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class AuthOutcome:
    """Result of a flow: a client message plus the sanitized account and any issued tokens."""

    message: str
    account: dict[str, Any] | None = None
    tokens: TokenPair | None = None
    created: bool = False


class AuthService:
    """Signup, verification, login, logout, password recovery and refresh-token rotation.

    Every collaborator is injected; the service holds no per-request state and
    performs one store update per flow so each mutation is a single
    read-modify-write on the account row.
    """

    def __init__(
        self,
        repository: AccountStore,
        hasher: SecretHasher,
        tokens: TokenIssuer,
        notifier: NotificationGateway,
        *,
        otp_policy: OtpPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Store the collaborators used by every flow; ``clock`` drives OTP expiry."""
        self._repository = repository
        self._hasher = hasher
        self._tokens = tokens
        self._notifier = notifier
        self._otp_policy = otp_policy or OtpPolicy()
        self._clock = clock

    @instrumented("signup")
    def signup(self, payload: SignupInput) -> AuthOutcome:
        """Register a PENDING account and mail it a verification code."""
        # Best-effort check; two concurrent signups can both pass it, in which
        # case the store's unique constraint makes the loser fail with CONFLICT.
        if self._repository.find_by_email(payload.email) is not None:
            raise AuthError(ErrorKind.CONFLICT, "Email already exists")
        if payload.password != payload.confirm_password:
            raise AuthError(ErrorKind.INVALID_ARGUMENT, "Passwords do not match")

        otp, otp_expiry = self._otp_policy.new_code(self._clock())
        account = self._repository.create(
            NewAccount(
                first_name=payload.first_name,
                last_name=payload.last_name,
                email=payload.email,
                password_hash=self._hasher.hash(payload.password),
                otp_hash=self._hasher.hash(otp),
                otp_expiry=otp_expiry,
                referred_by=payload.referral_code,
            )
        )
        logger.info("account %s registered, awaiting verification", account.account_id)

        self._notify(account, "activate_account", "Activate Account", otp_code=otp)
        return AuthOutcome("User Created Successfully", sanitize_account(account), created=True)

    @instrumented("resend_otp")
    def resend_otp(self, email: str) -> AuthOutcome:
        """Replace the pending verification code; earlier codes stop working."""
        account = self._require_by_email(email)
        otp, otp_expiry = self._otp_policy.new_code(self._clock())
        self._repository.update(
            account.account_id,
            otp_hash=self._hasher.hash(otp),
            otp_expiry=otp_expiry,
        )
        self._notify(account, "resend_otp", "OTP Request", otp_code=otp)
        return AuthOutcome("OTP resent successfully")

    @instrumented("verify_otp")
    def verify_otp(self, payload: VerifyOtpInput) -> AuthOutcome:
        """Check the emailed code, activate a PENDING account and start a session."""
        account = self._require_by_email(payload.email)
        if not account.otp_hash:
            raise AuthError(ErrorKind.INVALID_STATE, "No existing OTP saved for this account")
        if not self._hasher.verify(account.otp_hash, payload.otp):
            raise AuthError(ErrorKind.INVALID_ARGUMENT, "Wrong OTP")
        if account.otp_expiry is not None and account.otp_expiry < self._clock():
            raise AuthError(ErrorKind.EXPIRED, "OTP expired, please request for a new OTP")

        tokens = self._tokens.issue_pair(account.account_id, account.email)
        changes: dict[str, Any] = {
            "otp_hash": None,
            "otp_expiry": None,
            # Regenerated on every successful verification, including for
            # accounts that are already ACTIVE.
            "referral_code": self._otp_policy.new_referral_code(),
            "refresh_token": tokens.refresh_token,
        }
        if account.status is AccountStatus.PENDING:
            changes.update(status=AccountStatus.ACTIVE, is_active=True)
            logger.info("account %s verified and activated", account.account_id)

        updated = self._repository.update(account.account_id, **changes)
        return AuthOutcome("OTP verified successfully", sanitize_account(updated), tokens)

    @instrumented("login")
    def login(self, payload: LoginInput) -> AuthOutcome:
        """Exchange credentials for a token pair; unverified accounts get a fresh OTP instead."""
        account = self._require_by_email(payload.email)
        if not self._hasher.verify(account.password_hash, payload.password):
            raise AuthError(ErrorKind.FORBIDDEN, "Password incorrect")

        if account.status is AccountStatus.PENDING:
            logger.info("account %s tried to log in before verification; resending OTP", account.account_id)
            return self.resend_otp(account.email)

        tokens = self._tokens.issue_pair(account.account_id, account.email)
        updated = self._repository.update(
            account.account_id,
            refresh_token=tokens.refresh_token,
            is_active=True,
        )
        logger.info("account %s logged in", account.account_id)
        return AuthOutcome("Login successful", sanitize_account(updated), tokens)

    @instrumented("logout")
    def logout(self, account_id: str) -> AuthOutcome:
        """End the session by dropping the stored refresh token."""
        account = self._require_by_id(account_id)
        self._repository.update(account.account_id, refresh_token=None, is_active=False)
        logger.info("account %s logged out", account.account_id)
        return AuthOutcome("Logout successful")

    @instrumented("forgot_password")
    def forgot_password(self, email: str) -> AuthOutcome:
        """Mail a password reset code without touching the signup code."""
        account = self._require_by_email(email)
        reset_otp, reset_expiry = self._otp_policy.new_code(self._clock())
        self._repository.update(
            account.account_id,
            reset_otp_hash=self._hasher.hash(reset_otp),
            reset_otp_expiry=reset_expiry,
        )
        self._notify(account, "forgot_password", "Forgot Password Request", otp_code=reset_otp)
        return AuthOutcome("Password reset instructions sent to your email")

    @instrumented("reset_password")
    def reset_password(self, payload: ResetPasswordInput) -> AuthOutcome:
        """Replace the password once the reset code checks out."""
        account = self._require_by_email(payload.email)
        if not account.reset_otp_hash:
            raise AuthError(
                ErrorKind.INVALID_STATE,
                "No password reset request found for this account",
            )
        if not self._hasher.verify(account.reset_otp_hash, payload.reset_otp):
            raise AuthError(ErrorKind.INVALID_ARGUMENT, "Invalid reset OTP")
        if account.reset_otp_expiry is not None and account.reset_otp_expiry < self._clock():
            raise AuthError(
                ErrorKind.EXPIRED,
                "Reset OTP expired, please request a new password reset",
            )
        if payload.new_password != payload.confirm_password:
            raise AuthError(ErrorKind.INVALID_ARGUMENT, "New passwords do not match")

        self._repository.update(
            account.account_id,
            password_hash=self._hasher.hash(payload.new_password),
            reset_otp_hash=None,
            reset_otp_expiry=None,
        )
        logger.info("account %s reset its password", account.account_id)
        self._notify(account, "reset_password_confirmation", "Password Reset Successful")
        return AuthOutcome("Password reset successfully")

    @instrumented("refresh_token")
    def refresh_token(self, refresh_token: str) -> AuthOutcome:
        """Rotate the account's refresh token.

        Only the token currently stored on the account is accepted, so a token
        that has been rotated out or cleared by logout is rejected even while
        its signature and expiry still verify.
        """
        try:
            claims = self._tokens.verify(refresh_token, TokenType.REFRESH)
        except TokenError as exc:
            logger.info("rejected refresh token: %s", exc)
            raise AuthError(ErrorKind.UNAUTHORIZED, "Invalid or expired refresh token") from exc

        account = self._repository.find_by_id(str(claims["sub"]))
        if account is None or not _same_token(account.refresh_token, refresh_token):
            raise AuthError(ErrorKind.UNAUTHORIZED, "Invalid refresh token")
        if account.status is not AccountStatus.ACTIVE:
            raise AuthError(ErrorKind.FORBIDDEN, "Account is not active")

        tokens = self._tokens.issue_pair(account.account_id, account.email)
        updated = self._repository.update(account.account_id, refresh_token=tokens.refresh_token)
        return AuthOutcome("Token refreshed successfully", sanitize_account(updated), tokens)

    def authenticate(self, access_token: str) -> str:
        """Resolve a bearer access token to the id of a verified account with a live session."""
        try:
            claims = self._tokens.verify(access_token, TokenType.ACCESS)
        except TokenError as exc:
            raise AuthError(ErrorKind.UNAUTHORIZED, "Invalid or expired access token") from exc

        account = self._repository.find_by_id(str(claims["sub"]))
        if account is None:
            raise AuthError(ErrorKind.UNAUTHORIZED, "User not found")
        if account.status is not AccountStatus.ACTIVE:
            raise AuthError(ErrorKind.UNAUTHORIZED, "Account is not active")
        if not account.is_active:
            raise AuthError(ErrorKind.UNAUTHORIZED, "Session has been terminated")
        return account.account_id

    def get_account(self, account_id: str) -> AuthOutcome:
        """Return the sanitized account for ``account_id``."""
        account = self._require_by_id(account_id)
        return AuthOutcome("User found", sanitize_account(account))

    def _require_by_email(self, email: str) -> Account:
        """Fetch an account by email or raise NOT_FOUND."""
        account = self._repository.find_by_email(email)
        if account is None:
            raise AuthError(ErrorKind.NOT_FOUND, "Account not found")
        return account

    def _require_by_id(self, account_id: str) -> Account:
        """Fetch an account by identifier or raise NOT_FOUND."""
        account = self._repository.find_by_id(account_id)
        if account is None:
            raise AuthError(ErrorKind.NOT_FOUND, "Account not found")
        return account

    def _notify(self, account: Account, template: str, subject: str, **values: str) -> None:
        """Send a templated mail; a refused send is an error but earlier store writes stand."""
        context = {"name": f"{account.first_name} {account.last_name}", **values}
        recipient = Recipient(name=account.first_name, address=account.email)
        if not self._notifier.send(recipient, subject, template, context):
            logger.error("notification %s for account %s was not accepted", template, account.account_id)
            raise AuthError(ErrorKind.DELIVERY_FAILED, "Failed to send email")


def _same_token(stored: str | None, presented: str) -> bool:
    """Compare the presented refresh token with the stored one in constant time."""
    if stored is None:
        return False
    return secrets.compare_digest(stored.encode("utf-8"), presented.encode("utf-8"))
