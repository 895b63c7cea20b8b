"""Database repository for account credentials and session state."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from psycopg import errors, sql
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account, AccountStatus
from .domain.contracts import NewAccount
from .domain.errors import AuthError, ErrorKind

logger = logging.getLogger(__name__)

_COLUMNS = (
    "account_id",
    "first_name",
    "last_name",
    "email",
    "password_hash",
    "account_status",
    "is_active",
    "otp_hash",
    "otp_expiry",
    "reset_otp_hash",
    "reset_otp_expiry",
    "refresh_token",
    "referral_code",
    "referred_by",
    "created_at",
    "updated_at",
)

# Domain attribute -> column, for fields the service may change after creation.
_UPDATABLE = {
    "first_name": "first_name",
    "last_name": "last_name",
    "password_hash": "password_hash",
    "status": "account_status",
    "is_active": "is_active",
    "otp_hash": "otp_hash",
    "otp_expiry": "otp_expiry",
    "reset_otp_hash": "reset_otp_hash",
    "reset_otp_expiry": "reset_otp_expiry",
    "refresh_token": "refresh_token",
    "referral_code": "referral_code",
}

_SELECT = sql.SQL("SELECT {} FROM accounts").format(
    sql.SQL(", ").join(sql.Identifier(column) for column in _COLUMNS)
)
_RETURNING = sql.SQL("RETURNING {}").format(
    sql.SQL(", ").join(sql.Identifier(column) for column in _COLUMNS)
)


def normalise_email(email: str) -> str:
    """Trim and lower-case an email address so lookups and the unique index agree."""
    return email.strip().lower()


class AccountRepository:
    """Postgres-backed account store.

    Each call runs in its own transaction; ``update`` is a single ``UPDATE ...
    RETURNING`` so concurrent writers to one account resolve last-write-wins.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def find_by_email(self, email: str) -> Account | None:
        """Fetch an account by normalised email or return ``None``."""
        return self._fetch_one(
            sql.SQL("{} WHERE email = %s").format(_SELECT),
            (normalise_email(email),),
        )

    def find_by_id(self, account_id: str) -> Account | None:
        """Fetch an account by identifier or return ``None``."""
        return self._fetch_one(
            sql.SQL("{} WHERE account_id = %s").format(_SELECT),
            (account_id,),
        )

    def create(self, new_account: NewAccount) -> Account:
        """Insert a PENDING account, translating the email unique constraint into CONFLICT."""
        now = datetime.now(timezone.utc)
        query = sql.SQL(
            """
            INSERT INTO accounts (
                account_id, first_name, last_name, email, password_hash,
                account_status, is_active, otp_hash, otp_expiry, referred_by,
                created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            {}
            """
        ).format(_RETURNING)
        params = (
            str(uuid.uuid4()),
            new_account.first_name,
            new_account.last_name,
            normalise_email(new_account.email),
            new_account.password_hash,
            AccountStatus.PENDING.value,
            False,
            new_account.otp_hash,
            new_account.otp_expiry,
            new_account.referred_by,
            now,
            now,
        )
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(query, params)
                    row = cur.fetchone()
                    conn.commit()
        except errors.UniqueViolation as exc:
            logger.info("signup lost the race on a duplicate email")
            raise AuthError(ErrorKind.CONFLICT, "Email already exists") from exc
        return self._map_record(row)

    def update(self, account_id: str, **changes: Any) -> Account:
        """Apply whitelisted field changes in one statement and return the updated row."""
        unknown = set(changes) - set(_UPDATABLE)
        if unknown:
            raise ValueError(f"cannot update account fields: {sorted(unknown)}")

        assignments = [
            sql.SQL("{} = %s").format(sql.Identifier(_UPDATABLE[name])) for name in changes
        ]
        assignments.append(sql.SQL("updated_at = NOW()"))
        query = sql.SQL("UPDATE accounts SET {} WHERE account_id = %s {}").format(
            sql.SQL(", ").join(assignments),
            _RETURNING,
        )
        params = [_to_db(value) for value in changes.values()]
        params.append(account_id)

        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
                conn.commit()
        if row is None:
            raise AuthError(ErrorKind.NOT_FOUND, "Account not found")
        return self._map_record(row)

    def _fetch_one(self, query: sql.Composable, params: tuple[Any, ...]) -> Account | None:
        """Run a single-row SELECT and map the result, if any."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        if row is None:
            return None
        return self._map_record(row)

    def _map_record(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        record = dict(zip(_COLUMNS, row))
        record["status"] = AccountStatus(record.pop("account_status"))
        return Account(**record)


def _to_db(value: Any) -> Any:
    """Adapt domain values (enums) to their column representation."""
    if isinstance(value, Enum):
        return value.value
    return value
