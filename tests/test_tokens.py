from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from auth_service.config import ConfigurationError, Settings
from auth_service.security.tokens import TokenError, TokenIssuer, TokenType


@pytest.fixture()
def issuer() -> TokenIssuer:
    return TokenIssuer("unit-test-signing-key-0123456789abcdef", issuer="unit")


def test_issue_and_verify_round_trip(issuer):
    token = issuer.issue("acct-1", {"email": "a@example.com"})

    claims = issuer.verify(token, TokenType.ACCESS)

    assert claims["sub"] == "acct-1"
    assert claims["email"] == "a@example.com"
    assert claims["type"] == "access"
    assert claims["iss"] == "unit"
    assert claims["exp"] - claims["iat"] == 12 * 3600


def test_tokens_minted_together_are_distinct(issuer):
    first = issuer.issue_pair("acct-1", "a@example.com")
    second = issuer.issue_pair("acct-1", "a@example.com")

    assert first.refresh_token != second.refresh_token
    assert first.access_token != first.refresh_token


def test_expired_token_is_rejected(issuer):
    token = issuer.issue("acct-1", ttl=timedelta(seconds=-1))

    with pytest.raises(TokenError):
        issuer.verify(token)


def test_wrong_token_type_is_rejected(issuer):
    pair = issuer.issue_pair("acct-1", "a@example.com")

    with pytest.raises(TokenError):
        issuer.verify(pair.access_token, TokenType.REFRESH)
    with pytest.raises(TokenError):
        issuer.verify(pair.refresh_token, TokenType.ACCESS)


def test_foreign_signature_is_rejected(issuer):
    other = TokenIssuer("another-signing-key-0123456789abcdef00", issuer="unit")

    with pytest.raises(TokenError):
        issuer.verify(other.issue("acct-1"))


def test_tampered_token_is_rejected(issuer):
    header, payload, signature = issuer.issue("acct-1").split(".")
    tampered = ".".join([header, payload, signature[::-1]])

    with pytest.raises(TokenError):
        issuer.verify(tampered)


def test_temp_token_lifetime(issuer):
    token = issuer.issue_temp("acct-1", "a@example.com")

    claims = issuer.verify(token, TokenType.TEMP)

    assert claims["exp"] - claims["iat"] == 3600


def test_missing_secret_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="SECRET_KEY"):
        TokenIssuer("", issuer="unit")


def test_from_settings_uses_configured_lifetimes():
    settings = replace(
        Settings(),
        secret_key="settings-signing-key-0123456789abcdef",
        access_token_expires_in="15m",
        refresh_token_expires_in="30d",
    )

    issuer = TokenIssuer.from_settings(settings)

    assert issuer.ttl_for(TokenType.ACCESS) == timedelta(minutes=15)
    assert issuer.ttl_for(TokenType.REFRESH) == timedelta(days=30)
    assert issuer.ttl_for(TokenType.TEMP) == timedelta(hours=1)
