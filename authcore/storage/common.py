"""Storage contracts and helpers shared between memory, Redis and Postgres backends."""

from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken

from authcore.logging import get_logger
from authcore.storage.models import Identity, IdentityStatus, Role

logger = get_logger(__name__)


class IdentityStore(Protocol):
    """Durable identity records. Single-row reads and writes only."""

    def find_by_email(self, email: str) -> Optional[Identity]: ...

    def find_by_id(self, identity_id: str) -> Optional[Identity]: ...

    def create(
        self,
        email: str,
        password_hash: str,
        *,
        name: Optional[str] = None,
        role: Role = Role.STUDENT,
    ) -> Identity: ...

    def update_credential(self, identity_id: str, password_hash: str) -> None: ...

    def update_two_factor(
        self, identity_id: str, enabled: bool, secret: Optional[str]
    ) -> None: ...

    def update_status(self, identity_id: str, status: IdentityStatus) -> None: ...

    def update_role(self, identity_id: str, role: Role) -> None: ...

    def mark_email_verified(self, identity_id: str) -> None: ...


class EphemeralStore(Protocol):
    """Key/value store with per-key TTL. Each call is atomic on its own."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def sadd(self, key: str, member: str) -> int: ...

    async def srem(self, key: str, member: str) -> int: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def build_secret_cipher(key_material: str) -> Fernet:
    """Derive a Fernet cipher for two-factor secrets from arbitrary key material."""
    digest = hashlib.sha256(key_material.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_secret(cipher: Fernet, secret: Optional[str]) -> Optional[str]:
    if not secret:
        return None
    return cipher.encrypt(secret.encode()).decode()


def decrypt_secret(cipher: Fernet, stored: Optional[str]) -> Optional[str]:
    if not stored:
        return None
    try:
        return cipher.decrypt(stored.encode()).decode()
    except InvalidToken:
        # A secret we cannot decrypt is useless for verification; treat as absent
        logger.error("two_factor_secret_decrypt_failed")
        return None


def _as_aware(value: Any) -> datetime:
    if not isinstance(value, datetime):
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def identity_from_row(row: Mapping[str, Any], cipher: Fernet) -> Identity:
    return Identity(
        id=str(row["id"]),
        email=row["email"],
        password_hash=row["password_hash"],
        name=row.get("name"),
        role=Role(row.get("role") or Role.STUDENT.value),
        status=IdentityStatus(row.get("status") or IdentityStatus.ACTIVE.value),
        email_verified=bool(row.get("email_verified", False)),
        two_factor_enabled=bool(row.get("two_factor_enabled", False)),
        two_factor_secret=decrypt_secret(cipher, row.get("two_factor_secret")),
        created_at=_as_aware(row.get("created_at")),
        updated_at=_as_aware(row.get("updated_at")),
    )
