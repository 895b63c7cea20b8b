"""One-way hashing for passwords and one-time passcodes."""

from __future__ import annotations

import logging

from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError

logger = logging.getLogger(__name__)


class SecretHasher:
    """Salted Argon2id hashing with constant-time verification.

    The same hasher protects passwords and OTP codes; digests embed their own
    salt and cost parameters so verification needs no extra state.
    """

    def __init__(self, password_hash: PasswordHash | None = None) -> None:
        self._password_hash = password_hash or PasswordHash.recommended()

    def hash(self, secret: str) -> str:
        return self._password_hash.hash(secret)

    def verify(self, digest: str | None, candidate: str) -> bool:
        """Return ``True`` when ``candidate`` matches ``digest``; malformed digests never match."""
        if not digest:
            return False
        try:
            return self._password_hash.verify(candidate, digest)
        except UnknownHashError:
            logger.warning("refusing to verify against an unrecognised digest format")
            return False
