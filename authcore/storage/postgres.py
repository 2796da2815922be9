from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from psycopg import OperationalError, errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from authcore.logging import get_logger
from authcore.storage.common import (
    build_secret_cipher,
    encrypt_secret,
    identity_from_row,
    normalize_email,
)
from authcore.storage.errors import ConstraintViolation, StoreUnavailableError
from authcore.storage.models import Identity, IdentityStatus, Role

_IDENTITY_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS app_identity (
    id UUID PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    name TEXT,
    role TEXT NOT NULL DEFAULT 'STUDENT',
    status TEXT NOT NULL DEFAULT 'ACTIVE',
    email_verified BOOLEAN NOT NULL DEFAULT FALSE,
    two_factor_enabled BOOLEAN NOT NULL DEFAULT FALSE,
    two_factor_secret TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CONSTRAINT two_factor_secret_iff_enabled
        CHECK (two_factor_enabled = (two_factor_secret IS NOT NULL))
)
"""


class PostgresIdentityStore:
    """Postgres-backed identity store; one row per identity, no cross-row transactions."""

    def __init__(
        self, dsn: str, *, mfa_encryption_key: str, ensure_schema: bool = True
    ) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self._cipher = build_secret_cipher(mfa_encryption_key)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=True,
        )
        if ensure_schema:
            self._ensure_schema()

    @contextmanager
    def _connect(self, operation: str) -> Iterator[Any]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except (OperationalError, PoolTimeout) as exc:
            self.logger.error(
                "postgres_unavailable", operation=operation, error=str(exc)
            )
            raise StoreUnavailableError("postgres", operation) from exc

    def _ensure_schema(self) -> None:
        with self._connect("ensure_schema") as conn:
            conn.execute(_IDENTITY_TABLE_DDL)

    def _fetch_one(self, operation: str, sql: str, params: tuple) -> Optional[Identity]:
        with self._connect(operation) as conn:
            row = conn.execute(sql, params).fetchone()
        if not row:
            return None
        return identity_from_row(row, self._cipher)

    def _update(self, operation: str, sql: str, params: tuple) -> None:
        with self._connect(operation) as conn:
            row = conn.execute(sql, params).fetchone()
        if not row:
            raise ConstraintViolation("identity not found", {"identity_id": params[-1]})

    def find_by_email(self, email: str) -> Optional[Identity]:
        return self._fetch_one(
            "find_by_email",
            "SELECT * FROM app_identity WHERE email = %s",
            (normalize_email(email),),
        )

    def find_by_id(self, identity_id: str) -> Optional[Identity]:
        try:
            uuid.UUID(str(identity_id))
        except ValueError:
            return None
        return self._fetch_one(
            "find_by_id", "SELECT * FROM app_identity WHERE id = %s", (identity_id,)
        )

    def create(
        self,
        email: str,
        password_hash: str,
        *,
        name: Optional[str] = None,
        role: Role = Role.STUDENT,
    ) -> Identity:
        identity = Identity.new(normalize_email(email), password_hash, name=name, role=role)
        try:
            with self._connect("create") as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_identity (id, email, password_hash, name, role, status, email_verified)
                    VALUES (%s, %s, %s, %s, %s, %s, FALSE)
                    RETURNING *
                    """,
                    (
                        identity.id,
                        identity.email,
                        identity.password_hash,
                        identity.name,
                        identity.role.value,
                        identity.status.value,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return identity_from_row(row, self._cipher)

    def update_credential(self, identity_id: str, password_hash: str) -> None:
        self._update(
            "update_credential",
            "UPDATE app_identity SET password_hash = %s, updated_at = now() WHERE id = %s RETURNING id",
            (password_hash, identity_id),
        )

    def update_two_factor(
        self, identity_id: str, enabled: bool, secret: Optional[str]
    ) -> None:
        if enabled and not secret:
            raise ConstraintViolation("enabled two-factor requires a secret")
        stored = encrypt_secret(self._cipher, secret) if enabled else None
        self._update(
            "update_two_factor",
            """
            UPDATE app_identity
            SET two_factor_enabled = %s, two_factor_secret = %s, updated_at = now()
            WHERE id = %s
            RETURNING id
            """,
            (enabled, stored, identity_id),
        )

    def update_status(self, identity_id: str, status: IdentityStatus) -> None:
        self._update(
            "update_status",
            "UPDATE app_identity SET status = %s, updated_at = now() WHERE id = %s RETURNING id",
            (IdentityStatus(status).value, identity_id),
        )

    def update_role(self, identity_id: str, role: Role) -> None:
        self._update(
            "update_role",
            "UPDATE app_identity SET role = %s, updated_at = now() WHERE id = %s RETURNING id",
            (Role(role).value, identity_id),
        )

    def mark_email_verified(self, identity_id: str) -> None:
        self._update(
            "mark_email_verified",
            "UPDATE app_identity SET email_verified = TRUE, updated_at = now() WHERE id = %s RETURNING id",
            (identity_id,),
        )

    def close(self) -> None:
        self.pool.close()
