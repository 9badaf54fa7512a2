from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from govlink.logging import get_logger
from govlink.storage.errors import ConstraintViolation, UnknownFieldError
from govlink.storage.models import AccountStatus, Principal, TokenKind

_IMMUTABLE_FIELDS = frozenset({"id", "partition", "created_at"})

_SCHEMA = """
CREATE TABLE IF NOT EXISTS principal (
    id UUID PRIMARY KEY,
    partition TEXT NOT NULL,
    email TEXT NOT NULL,
    password_hash TEXT,
    password_algo TEXT,
    role TEXT NOT NULL,
    status TEXT NOT NULL,
    email_verified BOOLEAN NOT NULL DEFAULT FALSE,
    failed_login_attempts INTEGER NOT NULL DEFAULT 0,
    locked_until TIMESTAMPTZ,
    last_login_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    password_reset_token_hash TEXT,
    password_reset_expires_at TIMESTAMPTZ,
    email_verification_token_hash TEXT,
    email_verification_expires_at TIMESTAMPTZ,
    profile JSONB NOT NULL DEFAULT '{}'::jsonb,
    UNIQUE (partition, email)
);
CREATE INDEX IF NOT EXISTS principal_reset_token_idx
    ON principal (partition, password_reset_token_hash)
    WHERE password_reset_token_hash IS NOT NULL;
CREATE INDEX IF NOT EXISTS principal_verification_token_idx
    ON principal (partition, email_verification_token_hash)
    WHERE email_verification_token_hash IS NOT NULL;
"""


class PostgresStore:
    """Postgres-backed principal store; one table shared by all partitions."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``principal`` table and token indexes if missing."""

        with self._connect() as conn:
            conn.execute(_SCHEMA)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _principal_from_row(row: Mapping[str, Any]) -> Principal:
        values = {name: row[name] for name in Principal.field_names() if name in row}
        values["id"] = str(row["id"])
        profile = values.get("profile")
        if isinstance(profile, str):
            values["profile"] = json.loads(profile)
        elif profile is None:
            values["profile"] = {}
        return Principal(**values)

    @staticmethod
    def _encode(name: str, value: Any) -> Any:
        if name == "profile":
            return json.dumps(value or {})
        if name == "status":
            return AccountStatus(value).value
        if name == "email":
            return str(value).strip().lower()
        return value

    def create_principal(
        self,
        partition: str,
        email: str,
        *,
        password_hash: Optional[str] = None,
        password_algo: Optional[str] = None,
        role: str = "user",
        status: str = AccountStatus.ACTIVE.value,
        email_verified: bool = False,
        profile: Optional[Dict[str, Any]] = None,
    ) -> Principal:
        principal_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO principal (
                        id, partition, email, password_hash, password_algo,
                        role, status, email_verified, profile
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb)
                    RETURNING *
                    """,
                    (
                        principal_id,
                        partition,
                        self._encode("email", email),
                        password_hash,
                        password_algo,
                        role,
                        self._encode("status", status),
                        email_verified,
                        self._encode("profile", profile),
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._principal_from_row(row)

    def get_principal(self, partition: str, principal_id: str) -> Optional[Principal]:
        try:
            uuid.UUID(principal_id)
        except ValueError:
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM principal WHERE partition = %s AND id = %s",
                (partition, principal_id),
            ).fetchone()
        return self._principal_from_row(row) if row else None

    def get_principal_by_email(self, partition: str, email: str) -> Optional[Principal]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM principal WHERE partition = %s AND email = %s",
                (partition, self._encode("email", email)),
            ).fetchone()
        return self._principal_from_row(row) if row else None

    def list_principals(
        self, partition: str, *, status: Optional[str] = None, limit: int = 100
    ) -> List[Principal]:
        query = "SELECT * FROM principal WHERE partition = %s"
        params: list[Any] = [partition]
        if status is not None:
            query += " AND status = %s"
            params.append(status)
        query += " ORDER BY created_at DESC LIMIT %s"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._principal_from_row(row) for row in rows]

    def _set_clause(self, changes: Mapping[str, Any]) -> tuple[str, list[Any]]:
        unknown = set(changes) - (Principal.field_names() - _IMMUTABLE_FIELDS)
        if unknown:
            raise UnknownFieldError(unknown)
        assignments: list[str] = []
        params: list[Any] = []
        for name, value in changes.items():
            if name == "profile":
                # shallow merge into the stored document
                assignments.append("profile = profile || %s::jsonb")
            else:
                assignments.append(f"{name} = %s")
            params.append(self._encode(name, value))
        assignments.append("updated_at = now()")
        return ", ".join(assignments), params

    def update_principal(
        self, partition: str, principal_id: str, changes: Mapping[str, Any]
    ) -> Optional[Principal]:
        set_clause, params = self._set_clause(changes)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"UPDATE principal SET {set_clause} WHERE partition = %s AND id = %s RETURNING *",
                    (*params, partition, principal_id),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._principal_from_row(row) if row else None

    def consume_token_hash(
        self,
        partition: str,
        kind: TokenKind | str,
        token_hash: str,
        now: datetime,
        changes: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Principal]:
        slot = TokenKind(kind).value
        hash_field = f"{slot}_token_hash"
        expiry_field = f"{slot}_expires_at"
        update: Dict[str, Any] = {hash_field: None, expiry_field: None}
        update.update(changes or {})
        set_clause, params = self._set_clause(update)
        # single statement: a concurrent redeem sees the cleared hash and matches nothing
        with self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE principal SET {set_clause}
                WHERE partition = %s AND {hash_field} = %s AND {expiry_field} > %s
                RETURNING *
                """,
                (*params, partition, token_hash, now),
            ).fetchone()
        return self._principal_from_row(row) if row else None
