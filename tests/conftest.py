from __future__ import annotations

import os

os.environ.setdefault("SECRET_KEY", "test-signing-key-0123456789abcdef0123456789")
os.environ.setdefault("EMAIL_PROVIDER", "console")
os.environ["RATE_LIMIT_BACKEND"] = "memory"

import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pwdlib import PasswordHash
from pwdlib.hashers.argon2 import Argon2Hasher

from auth_service.api import routes
from auth_service.api.errors import register_exception_handlers
from auth_service.domain.account import Account
from auth_service.domain.contracts import NewAccount, Recipient
from auth_service.domain.errors import AuthError, ErrorKind
from auth_service.domain.service import AuthService
from auth_service.security.hashing import SecretHasher
from auth_service.security.otp import OtpPolicy
from auth_service.security.rate_limiter import SlidingWindowRateLimiter
from auth_service.security.tokens import TokenIssuer

TEST_SECRET = os.environ["SECRET_KEY"]
_ACCOUNT_FIELDS = {f.name for f in fields(Account)}


class FakeRepository:
    """In-memory account store mimicking the Postgres repository's contract."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self.writes = 0

    def _by_email(self, email: str) -> Account | None:
        wanted = email.strip().lower()
        for account in self._accounts.values():
            if account.email == wanted:
                return account
        return None

    def find_by_email(self, email: str) -> Account | None:
        account = self._by_email(email)
        return replace(account) if account else None

    def find_by_id(self, account_id: str) -> Account | None:
        account = self._accounts.get(account_id)
        return replace(account) if account else None

    def create(self, new_account: NewAccount) -> Account:
        if self._by_email(new_account.email) is not None:
            raise AuthError(ErrorKind.CONFLICT, "Email already exists")
        now = datetime.now(timezone.utc)
        account = Account(
            account_id=str(uuid.uuid4()),
            first_name=new_account.first_name,
            last_name=new_account.last_name,
            email=new_account.email.strip().lower(),
            password_hash=new_account.password_hash,
            created_at=now,
            updated_at=now,
            otp_hash=new_account.otp_hash,
            otp_expiry=new_account.otp_expiry,
            referred_by=new_account.referred_by,
        )
        self._accounts[account.account_id] = account
        self.writes += 1
        return replace(account)

    def update(self, account_id: str, **changes: Any) -> Account:
        unknown = set(changes) - _ACCOUNT_FIELDS
        assert not unknown, f"unexpected fields {unknown}"
        account = self._accounts.get(account_id)
        if account is None:
            raise AuthError(ErrorKind.NOT_FOUND, "Account not found")
        updated = replace(account, **changes, updated_at=datetime.now(timezone.utc))
        assert (updated.otp_hash is None) == (updated.otp_expiry is None)
        assert (updated.reset_otp_hash is None) == (updated.reset_otp_expiry is None)
        self._accounts[account_id] = updated
        self.writes += 1
        return replace(updated)

    def stored(self, email: str) -> Account:
        account = self._by_email(email)
        assert account is not None, f"no account for {email}"
        return account


@dataclass
class SentMail:
    recipient: Recipient
    subject: str
    template_name: str
    context: dict[str, Any]


@dataclass
class FakeMailer:
    accept: bool = True
    sent: list[SentMail] = field(default_factory=list)

    def send(
        self,
        recipient: Recipient,
        subject: str,
        template_name: str,
        context: Mapping[str, Any],
    ) -> bool:
        self.sent.append(SentMail(recipient, subject, template_name, dict(context)))
        return self.accept

    def last_code(self) -> str:
        return self.sent[-1].context["otp_code"]


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def hasher() -> SecretHasher:
    """Argon2 with minimal cost so the suite stays fast."""
    return SecretHasher(PasswordHash((Argon2Hasher(time_cost=1, memory_cost=1024, parallelism=1),)))


@pytest.fixture
def token_issuer() -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, issuer="auth-service-test")


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(repository, hasher, token_issuer, mailer, clock) -> AuthService:
    return AuthService(
        repository,
        hasher,
        token_issuer,
        mailer,
        otp_policy=OtpPolicy(),
        clock=clock,
    )


@pytest.fixture
def api_client(service, monkeypatch):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    register_exception_handlers(app)
    app.state.auth_service = service

    monkeypatch.setattr(
        routes,
        "rate_limiter",
        SlidingWindowRateLimiter(max_requests=100, window_seconds=60),
    )

    with TestClient(app) as client:
        yield client
