"""Utilities for issuing and validating application JWTs."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

import jwt

from ..config import ConfigurationError, Settings


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    TEMP = "temp"


class TokenError(Exception):
    """Raised when a token is malformed, forged, expired, or of the wrong type."""


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Access/refresh pair handed to clients after a successful authentication."""

    access_token: str
    refresh_token: str


class TokenIssuer:
    """Signs and verifies HS256 tokens for the access, refresh and temp classes.

    All classes share one signing key and differ only in lifetime and the
    ``type`` claim.
    """

    def __init__(
        self,
        secret: str,
        *,
        issuer: str,
        access_ttl: timedelta = timedelta(hours=12),
        refresh_ttl: timedelta = timedelta(days=7),
        temp_ttl: timedelta = timedelta(hours=1),
        algorithm: str = "HS256",
    ) -> None:
        if not secret:
            raise ConfigurationError("SECRET_KEY is not defined in configuration")
        self._secret = secret
        self._issuer = issuer
        self._algorithm = algorithm
        self._ttls = {
            TokenType.ACCESS: access_ttl,
            TokenType.REFRESH: refresh_ttl,
            TokenType.TEMP: temp_ttl,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        return cls(
            settings.secret_key,
            issuer=settings.jwt_issuer,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            temp_ttl=settings.temp_token_ttl,
        )

    def ttl_for(self, token_type: TokenType) -> timedelta:
        return self._ttls[token_type]

    def issue(
        self,
        subject: str,
        claims: Mapping[str, Any] | None = None,
        ttl: timedelta | None = None,
        *,
        token_type: TokenType = TokenType.ACCESS,
    ) -> str:
        """Create a signed token for ``subject``.

        Parameters
        ----------
        subject:
            Account identifier embedded in the ``sub`` claim.
        claims:
            Extra public claims; registered claims set here are overridden.
        ttl:
            Lifetime of the token; defaults to the lifetime of ``token_type``.
        token_type:
            Token class recorded in the ``type`` claim.
        """
        now = datetime.now(timezone.utc)
        lifetime = self._ttls[token_type] if ttl is None else ttl
        payload: dict[str, Any] = dict(claims or {})
        payload.update(
            {
                "iss": self._issuer,
                "sub": subject,
                "type": token_type.value,
                "jti": secrets.token_hex(16),
                "iat": now,
                "exp": now + lifetime,
            }
        )
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str, expected_type: TokenType | None = None) -> dict[str, Any]:
        """Decode ``token`` and return its claims.

        Raises
        ------
        TokenError
            When the signature, issuer, expiry or ``type`` claim does not check out.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.PyJWTError as exc:
            raise TokenError(str(exc)) from exc
        if expected_type is not None and claims.get("type") != expected_type.value:
            raise TokenError(f"expected a {expected_type.value} token")
        return claims

    def issue_pair(self, account_id: str, email: str) -> TokenPair:
        claims = {"email": email}
        return TokenPair(
            access_token=self.issue(account_id, claims, token_type=TokenType.ACCESS),
            refresh_token=self.issue(account_id, claims, token_type=TokenType.REFRESH),
        )

    def issue_temp(self, account_id: str, email: str, ttl: timedelta | None = None) -> str:
        """Mint a short-lived bearer token outside the access/refresh pair."""
        return self.issue(account_id, {"email": email}, ttl, token_type=TokenType.TEMP)
